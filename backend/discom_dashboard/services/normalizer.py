"""Reshape backend row collections into per-chart series.

Pure functions only: nothing here performs I/O. Pivoting is done with pandas
``groupby``/``unstack`` and then reindexed against the complete bucket and
category sets, so every output row carries every column.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

import pandas as pd

from discom_dashboard.core.errors import MalformedResponse
from discom_dashboard.schemas.charts import PivotedSeries, SeriesCategory

SENTINEL_CATEGORY = "Others"
OVERALL_AVERAGE = "Overall Average"

INTERVAL_LABELS = (
    "12 AM - 2 AM",
    "2 AM - 4 AM",
    "4 AM - 6 AM",
    "6 AM - 8 AM",
    "8 AM - 10 AM",
    "10 AM - 12 PM",
    "12 PM - 2 PM",
    "2 PM - 4 PM",
    "4 PM - 6 PM",
    "6 PM - 8 PM",
    "8 PM - 10 PM",
    "10 PM - 12 AM",
)


class GapMode(str, Enum):
    """How a bucket without a value for some category is filled."""

    TREND = "trend"  # None: the line breaks
    STACKED = "stacked"  # 0: the bar segment is empty


def extract_rows(payload: Any) -> List[Dict[str, Any]]:
    """Pull the row collection out of any accepted response envelope.

    Accepts ``{data: {data: [...]}}``, ``{data: [...]}`` and a bare list; any
    other object is treated as empty.
    """

    if payload is None:
        return []
    if isinstance(payload, list):
        rows = payload
    elif isinstance(payload, dict):
        data = payload.get("data")
        if isinstance(data, list):
            rows = data
        elif isinstance(data, dict) and isinstance(data.get("data"), list):
            rows = data["data"]
        else:
            return []
    else:
        raise MalformedResponse(f"Unexpected graph payload type: {type(payload).__name__}")
    return [row for row in rows if isinstance(row, dict)]


_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9]")


def sanitize_key(name: Any) -> str:
    return _UNSAFE_KEY_CHARS.sub("_", str(name))


def order_categories(names: Iterable[Any], sentinel: str = SENTINEL_CATEGORY) -> List[Any]:
    """Distinct names, case-insensitively sorted, with the sentinel last."""
    distinct = list(dict.fromkeys(name for name in names if name is not None))
    return sorted(distinct, key=lambda name: (name == sentinel, str(name).casefold(), str(name)))


def _category_columns(labels: Sequence[Any]) -> List[SeriesCategory]:
    # Distinct labels may sanitise to the same key; suffix later ones.
    seen: Dict[str, int] = {}
    columns = []
    for label in labels:
        key = sanitize_key(label)
        if key in seen:
            seen[key] += 1
            key = f"{key}_{seen[key]}"
        else:
            seen[key] = 1
        columns.append(SeriesCategory(key=key, label=str(label)))
    return columns


def _native(value: Any, *, integral: bool = False) -> Any:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return None
    if hasattr(value, "item"):
        value = value.item()
    if integral and isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _as_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if pd.isna(number) else number


def pivot_by_category(
    rows: Sequence[Dict[str, Any]],
    *,
    bucket: str,
    category: str,
    value: str,
    mode: GapMode,
    sentinel: str = SENTINEL_CATEGORY,
    bucket_sort: Optional[Callable[[Any], Any]] = None,
    categories: Optional[Sequence[Any]] = None,
) -> PivotedSeries:
    """Pivot long rows into one row per bucket with a field per category.

    Buckets keep first-appearance order unless ``bucket_sort`` supplies a sort
    key. The category set is every distinct category seen anywhere in
    ``rows`` (ordered by :func:`order_categories`) unless ``categories`` is
    given. Stacked charts sum duplicate (bucket, category) pairs; trend charts
    keep the first value.
    """

    frame = pd.DataFrame.from_records(list(rows))
    if frame.empty or not {bucket, category}.issubset(frame.columns):
        return PivotedSeries(bucket_key=bucket)
    if value not in frame.columns:
        frame[value] = None

    frame = frame.dropna(subset=[bucket, category]).copy()
    frame[value] = pd.to_numeric(frame[value], errors="coerce")
    present = frame[value].dropna()
    integral = mode is GapMode.STACKED and bool((present % 1 == 0).all())

    buckets = list(dict.fromkeys(frame[bucket]))
    if bucket_sort is not None:
        buckets.sort(key=bucket_sort)
    labels = list(categories) if categories is not None else order_categories(frame[category], sentinel)
    columns = _category_columns(labels)

    aggregate = "sum" if mode is GapMode.STACKED else "first"
    table = (
        frame.groupby([bucket, category], sort=False)[value]
        .agg(aggregate)
        .unstack(category)
        .reindex(index=buckets, columns=labels)
    )
    if mode is GapMode.STACKED:
        table = table.fillna(0)

    pivoted = []
    for bucket_value in buckets:
        row: Dict[str, Any] = {bucket: _native(bucket_value)}
        for label, column in zip(labels, columns):
            row[column.key] = _native(table.at[bucket_value, label], integral=integral)
        pivoted.append(row)
    return PivotedSeries(bucket_key=bucket, categories=columns, rows=pivoted)


def _with_month_columns(frame: pd.DataFrame) -> pd.DataFrame:
    frame = frame.dropna(subset=["year", "month"]).copy()
    frame["year"] = frame["year"].astype(int)
    frame["month"] = frame["month"].astype(int)
    if "month_name" not in frame.columns:
        frame["month_name"] = None
    frame["month_name"] = frame["month_name"].where(
        frame["month_name"].notna(),
        frame["month"].map(lambda m: pd.Timestamp(year=2000, month=m, day=1).strftime("%b")),
    )
    frame["month_label"] = frame["month_name"].astype(str) + " " + frame["year"].astype(str)
    return frame


def _month_order(frame: pd.DataFrame) -> Dict[str, tuple]:
    return {
        label: (int(year), int(month))
        for label, year, month in frame[["month_label", "year", "month"]].itertuples(index=False)
    }


# ---- chart families ----


def daily_events_volume(rows: Sequence[Dict[str, Any]]) -> PivotedSeries:
    """Stacked monthly event counts, one column per event name."""
    frame = pd.DataFrame.from_records(list(rows))
    if frame.empty or not {"year", "month", "event_name"}.issubset(frame.columns):
        return PivotedSeries(bucket_key="month")
    frame = _with_month_columns(frame)
    order = _month_order(frame)
    series = pivot_by_category(
        frame.to_dict("records"),
        bucket="month_label",
        category="event_name",
        value="event_count",
        mode=GapMode.STACKED,
        bucket_sort=order.__getitem__,
    )
    for row in series.rows:
        label = row.pop("month_label")
        year, month = order[label]
        row.update({"month": label, "year": year, "month_number": month})
    return series.model_copy(update={"bucket_key": "month"})


def hourly_consumption(rows: Sequence[Dict[str, Any]]) -> PivotedSeries:
    """Two-hour interval lines per month plus the overall average line."""
    frame = pd.DataFrame.from_records(list(rows))
    if frame.empty or not {"hour_interval", "year", "month"}.issubset(frame.columns):
        skeleton = [
            {"interval": index * 2, "interval_label": label}
            for index, label in enumerate(INTERVAL_LABELS)
        ]
        return PivotedSeries(bucket_key="interval", rows=skeleton)

    frame = _with_month_columns(frame.dropna(subset=["hour_interval"]))
    frame["hour_interval"] = frame["hour_interval"].astype(int)
    order = _month_order(frame)
    months = sorted(order, key=order.__getitem__)
    if "consumption_kwh" not in frame.columns:
        frame["consumption_kwh"] = None

    series = pivot_by_category(
        frame.to_dict("records"),
        bucket="hour_interval",
        category="month_label",
        value="consumption_kwh",
        mode=GapMode.TREND,
        bucket_sort=lambda interval: interval,
        categories=months,
    )

    first = frame.drop_duplicates("hour_interval").set_index("hour_interval")
    overall_key = sanitize_key(OVERALL_AVERAGE)
    for row in series.rows:
        interval = row.pop("hour_interval")
        source = first.loc[interval]
        label = source.get("interval_label")
        if not isinstance(label, str) or not label:
            label = _interval_label(interval)
        row["interval"] = interval
        row["interval_label"] = label
        row[overall_key] = _as_float(source.get("overall_avg_kwh"))

    categories = series.categories + [SeriesCategory(key=overall_key, label=OVERALL_AVERAGE)]
    return PivotedSeries(bucket_key="interval", categories=categories, rows=series.rows)


def _interval_label(interval: int) -> str:
    if interval % 2 == 0 and 0 <= interval < 24:
        return INTERVAL_LABELS[interval // 2]
    return f"{interval}:00 - {interval + 2}:00"


def zero_consumption_trend(rows: Sequence[Dict[str, Any]]) -> PivotedSeries:
    """Daily zero-consumption counts with per-month average trendlines.

    A month's trendline field is None on every date outside that month.
    """

    frame = pd.DataFrame.from_records(list(rows))
    if frame.empty or "date" not in frame.columns:
        return PivotedSeries(bucket_key="date")

    frame = frame.dropna(subset=["date"]).copy()
    stamps = pd.to_datetime(frame["date"])
    if "year" not in frame.columns:
        frame["year"] = stamps.dt.year
    if "month" not in frame.columns:
        frame["month"] = stamps.dt.month
    frame = _with_month_columns(frame)
    order = _month_order(frame)
    months = sorted(order, key=order.__getitem__)

    overall = _as_float(frame["overall_avg"].iloc[0]) if "overall_avg" in frame.columns else None
    monthly = (
        frame.groupby("month_label")["monthly_avg"].first()
        if "monthly_avg" in frame.columns
        else pd.Series(dtype=float)
    )
    counts = (
        frame.groupby("date", sort=True)["consumer_count"].first()
        if "consumer_count" in frame.columns
        else pd.Series(0, index=sorted(frame["date"].unique()))
    )

    columns = _category_columns(months)
    out = []
    for day, count in counts.items():
        stamp = pd.Timestamp(day)
        row: Dict[str, Any] = {
            "date": str(day),
            "consumer_count": _native(count, integral=True) or 0,
            "overall_avg": overall,
        }
        for label, column in zip(months, columns):
            in_month = order[label] == (stamp.year, stamp.month)
            row[column.key] = _as_float(monthly.get(label)) if in_month else None
        out.append(row)

    categories = [
        SeriesCategory(key="consumer_count", label="Zero consumption users"),
        SeriesCategory(key="overall_avg", label="Overall average"),
    ] + columns
    return PivotedSeries(bucket_key="date", categories=categories, rows=out)


def events_by_weekday(rows: Sequence[Dict[str, Any]]) -> PivotedSeries:
    """Critical and non-critical counts per weekday, backend order kept."""
    out = []
    for row in rows:
        critical = int(_as_float(row.get("critical_count")) or 0)
        non_critical = int(_as_float(row.get("non_critical_count")) or 0)
        out.append(
            {
                "weekday": row.get("weekday"),
                "critical": critical,
                "non_critical": non_critical,
                "total": critical + non_critical,
            }
        )
    categories = [
        SeriesCategory(key="critical", label="Critical"),
        SeriesCategory(key="non_critical", label="Non-Critical"),
        SeriesCategory(key="total", label="Total"),
    ]
    return PivotedSeries(bucket_key="weekday", categories=categories, rows=out)


def top_events(rows: Sequence[Dict[str, Any]]) -> PivotedSeries:
    """Word-cloud entries sized 12-48 by count, most frequent first."""
    if not rows:
        return PivotedSeries(bucket_key="text")

    frame = pd.DataFrame.from_records(list(rows))
    if "count" not in frame.columns:
        frame["count"] = 0
    frame["count"] = pd.to_numeric(frame["count"], errors="coerce").fillna(0)
    frame = frame.sort_values("count", ascending=False, kind="stable").reset_index(drop=True)

    max_count = float(frame["count"].iloc[0]) or 1.0
    min_count = float(frame["count"].iloc[-1]) or 1.0
    spread = max_count - min_count

    out = []
    for index, record in enumerate(frame.to_dict("records")):
        count = _native(record["count"], integral=True)
        if spread > 0:
            font_size = max(12.0, min(48.0, 12 + (count - min_count) / spread * 36))
            percentage = round(float(count) / max_count * 100, 1)
        else:
            font_size = 24.0
            percentage = 0.0
        event_type = _native(record.get("event_type"))
        upper = str(event_type or "").upper()
        out.append(
            {
                "text": _native(record.get("event_name")) or "Unknown",
                "count": count,
                "font_size": round(float(font_size), 2),
                "is_critical": "CRITICAL" in upper and "NON-CRITICAL" not in upper,
                "event_type": event_type,
                "event_code": _native(record.get("event_code")),
                "rotation": (index % 7) * 5 - 15,
                "percentage": percentage,
            }
        )
    categories = [SeriesCategory(key="count", label="Occurrences")]
    return PivotedSeries(bucket_key="text", categories=categories, rows=out)


def consumption_anomalies(rows: Sequence[Dict[str, Any]]) -> PivotedSeries:
    """Scatter points of actual versus expected consumption."""
    out = []
    for row in rows:
        out.append(
            {
                "x": f"{row.get('date')} {row.get('hour')}:00",
                "date": row.get("date"),
                "hour": row.get("hour"),
                "consumption": _as_float(row.get("consumption")) or 0.0,
                "expected": _as_float(row.get("expected_consumption")) or 0.0,
                "deviation": _as_float(row.get("deviation")) or 0.0,
                "anomaly_type": row.get("anomaly_type"),
                "meter": row.get("meter_no"),
            }
        )
    categories = [
        SeriesCategory(key="consumption", label="Consumption"),
        SeriesCategory(key="expected", label="Expected"),
    ]
    return PivotedSeries(bucket_key="x", categories=categories, rows=out)


def solar_forecast(rows: Sequence[Dict[str, Any]]) -> PivotedSeries:
    """Actual and forecast generation with the confidence band."""
    out = []
    for row in rows:
        stamp = pd.to_datetime(row.get("date"), errors="coerce")
        day_label = "" if pd.isna(stamp) else f"{stamp.strftime('%b')} {stamp.day} "
        out.append(
            {
                "time": f"{day_label}{row.get('hour')}:00",
                "date": row.get("date"),
                "hour": row.get("hour"),
                "actual": _as_float(row.get("actual_generation_kwh")),
                "forecast": _as_float(row.get("forecasted_generation_kwh")),
                "low": _as_float(row.get("confidence_interval_low")),
                "high": _as_float(row.get("confidence_interval_high")),
                "is_forecast": row.get("forecasted_generation_kwh") is not None,
            }
        )
    categories = [
        SeriesCategory(key="actual", label="Actual"),
        SeriesCategory(key="forecast", label="Forecast"),
        SeriesCategory(key="low", label="Lower bound"),
        SeriesCategory(key="high", label="Upper bound"),
    ]
    return PivotedSeries(bucket_key="time", categories=categories, rows=out)


def anomaly_categories(rows: Sequence[Dict[str, Any]]) -> PivotedSeries:
    """Pie slices; share is computed when the backend omits it."""
    counts = [_as_float(row.get("user_count")) or 0.0 for row in rows]
    total = sum(counts)
    out = []
    for row, count in zip(rows, counts):
        share = _as_float(row.get("percentage"))
        if share is None:
            share = round(count / total * 100, 2) if total else 0.0
        out.append(
            {
                "name": row.get("category"),
                "value": int(count) if count.is_integer() else count,
                "percentage": share,
                "severity": row.get("severity"),
            }
        )
    categories = [SeriesCategory(key="value", label="Users")]
    return PivotedSeries(bucket_key="name", categories=categories, rows=out)


NORMALIZERS: Dict[str, Callable[[Sequence[Dict[str, Any]]], PivotedSeries]] = {
    "hourly-consumption": hourly_consumption,
    "zero-consumption-trend": zero_consumption_trend,
    "top-events": top_events,
    "daily-events-volume": daily_events_volume,
    "events-by-weekday": events_by_weekday,
    "consumption-anomalies": consumption_anomalies,
    "solar-forecast": solar_forecast,
    "anomaly-categories": anomaly_categories,
}
