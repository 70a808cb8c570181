import pytest

from discom_dashboard.utils.formatting import format_number


@pytest.mark.parametrize(
    "value, expected",
    [
        (12_345_678, "1.23Cr"),
        (250_000, "2.50L"),
        (1_500, "1.50K"),
        (999.999, "1.00K"),
        (42.5, "42.50"),
        (-3_000, "-3.00K"),
        (0, "0.00"),
        (None, "N/A"),
        ("n/a", "N/A"),
        (float("nan"), "N/A"),
        (True, "N/A"),
    ],
)
def test_format_number(value, expected):
    assert format_number(value) == expected
