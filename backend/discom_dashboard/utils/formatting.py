"""Display formatting helpers."""

import math
from typing import Any

# Indian numbering suffixes, largest first.
_SCALES = (
    (10_000_000, "Cr"),
    (100_000, "L"),
    (1_000, "K"),
)


def format_number(value: Any) -> str:
    """Compact Indian-notation string rounded to two decimals.

    ``None`` and anything non-numeric render as ``"N/A"``.

    >>> format_number(12_345_678)
    '1.23Cr'
    >>> format_number(0)
    '0.00'
    """

    if value is None or isinstance(value, bool):
        return "N/A"
    try:
        number = float(value)
    except (TypeError, ValueError):
        return "N/A"
    if math.isnan(number):
        return "N/A"

    rounded = round(number, 2)
    if rounded == 0:
        return "0.00"

    sign = "-" if rounded < 0 else ""
    magnitude = abs(rounded)
    for threshold, suffix in _SCALES:
        if magnitude >= threshold:
            return f"{sign}{magnitude / threshold:.2f}{suffix}"
    return f"{sign}{magnitude:.2f}"
