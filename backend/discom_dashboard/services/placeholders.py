"""Locally synthesised chart rows and drill-down pages.

Used only when an upstream fetch fails or returns nothing for the charts in
``PLACEHOLDER_CHARTS``. Every consumer flags the result ``synthetic=True``.
"""

from __future__ import annotations

import random
from datetime import date, timedelta
from typing import Any, Dict, List, Mapping, Optional

PLACEHOLDER_CHARTS = frozenset(
    {"consumption-anomalies", "solar-forecast", "anomaly-categories"}
)

_ANOMALY_DATES = ("2025-01-15", "2025-01-16", "2025-01-17", "2025-01-18", "2025-01-19")
_ANOMALY_HOURS = (8, 12, 18, 20)
_ANOMALY_TYPES = ("spike", "drop", "irregular")

_CATEGORIES = (
    ("Voltage Fluctuation", 1250, "high"),
    ("Power Theft", 890, "high"),
    ("Meter Tampering", 650, "medium"),
    ("Irregular Consumption", 420, "medium"),
    ("Low Power Factor", 280, "low"),
    ("Connection Issues", 150, "low"),
)

_LEVEL_NAMES = {
    "discom": ("DISCOM-A", "DISCOM-B", "DISCOM-C"),
    "region": ("Region-1", "Region-2", "Region-3"),
    "feeder": ("FEEDER-101", "FEEDER-102", "FEEDER-103"),
}
_FALLBACK_NAMES = ("DTU-201", "DTU-202", "DTU-203")
_SEVERITIES = ("high", "medium", "low")


def consumption_anomaly_rows() -> List[Dict[str, Any]]:
    rows = []
    for date_index, day in enumerate(_ANOMALY_DATES):
        for hour_index, hour in enumerate(_ANOMALY_HOURS):
            anomaly_type = _ANOMALY_TYPES[(date_index + hour_index) % len(_ANOMALY_TYPES)]
            expected = 100 + date_index * 20 + hour_index * 15
            if anomaly_type == "spike":
                deviation = expected * 0.5
            elif anomaly_type == "drop":
                deviation = -expected * 0.4
            else:
                deviation = expected * 0.3
            rows.append(
                {
                    "date": day,
                    "hour": hour,
                    "consumption": expected + deviation,
                    "expected_consumption": expected,
                    "deviation": deviation,
                    "anomaly_type": anomaly_type,
                    "meter_no": f"METER-{1000 + date_index * 10 + hour_index}",
                    "discom_name": "DISCOM-A",
                    "region_name": "Region-1",
                    "feeder_meter_no": f"FEEDER-{100 + date_index}",
                }
            )
    return rows


def solar_forecast_rows(start: Optional[date] = None, days: int = 7) -> List[Dict[str, Any]]:
    """Hourly 6:00-18:00 forecast with a +/-20% band.

    The jitter is seeded from the start date so repeated calls agree.
    """

    start = start or date(2025, 1, 15)
    rng = random.Random(start.toordinal())
    rows = []
    for offset in range(days):
        day = (start + timedelta(days=offset)).isoformat()
        for hour in range(6, 19):
            forecast = 50 + (hour - 6) * 10 + (rng.random() * 20 - 10)
            rows.append(
                {
                    "date": day,
                    "hour": hour,
                    "forecasted_generation_kwh": max(0.0, forecast),
                    "confidence_interval_low": max(0.0, forecast * 0.8),
                    "confidence_interval_high": forecast * 1.2,
                    "discom_name": "DISCOM-A",
                    "region_name": "Region-1",
                }
            )
    return rows


def anomaly_category_rows() -> List[Dict[str, Any]]:
    total = sum(count for _, count, _ in _CATEGORIES)
    return [
        {
            "category": name,
            "user_count": count,
            "severity": severity,
            "percentage": round(count / total * 100, 2),
        }
        for name, count, severity in _CATEGORIES
    ]


def chart_rows(chart: str, *, start: Optional[date] = None, days: int = 7) -> List[Dict[str, Any]]:
    if chart == "consumption-anomalies":
        return consumption_anomaly_rows()
    if chart == "solar-forecast":
        return solar_forecast_rows(start, days)
    if chart == "anomaly-categories":
        return anomaly_category_rows()
    raise KeyError(chart)


def _metrics(graph_type: str, index: int) -> Dict[str, Any]:
    if graph_type == "consumption-anomalies":
        return {
            "anomaly_count": 10 + index * 5,
            "total_consumption": 500 + index * 100,
            "avg_deviation": 15 + index * 5,
            "meter_count": 20 + index * 10,
        }
    if graph_type == "solar-forecast":
        return {
            "forecasted_generation": 80 + index * 20,
            "capacity": 100 + index * 25,
            "efficiency": 75 + index * 5,
            "plant_count": 5 + index,
        }
    return {
        "user_count": 30 + index * 15,
        "percentage": round((30 + index * 15) / 100, 2),
        "severity": _SEVERITIES[index],
    }


def drilldown_page(graph_type: str, level: str, point: Mapping[str, Any]) -> Dict[str, Any]:
    """A detail-view shaped page: ``{data, summary, metadata}``."""

    names = _LEVEL_NAMES.get(level, _FALLBACK_NAMES)
    rows = [
        {f"{level}_name": name, **_metrics(graph_type, index)}
        for index, name in enumerate(names)
    ]
    return {
        "data": rows,
        "summary": dict(point),
        "metadata": {"detail_level": level, "total_records": len(rows)},
    }
