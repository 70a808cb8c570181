"""Pydantic models for chart view models."""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from discom_dashboard.schemas.filters import FilterSnapshot


class SeriesCategory(BaseModel):
    """One value column of a pivoted series."""

    key: str = Field(description="Sanitised field name used in every row")
    label: str = Field(description="Display label")


class PivotedSeries(BaseModel):
    """Rows keyed by the chart's grouping dimension with a stable column set."""

    bucket_key: str = Field(description="Row field holding the grouping value")
    categories: List[SeriesCategory] = Field(default_factory=list, description="Value columns, in display order")
    rows: List[Dict[str, Any]] = Field(default_factory=list, description="One row per bucket")


class ChartStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


class ChartResult(BaseModel):
    """What a chart loader publishes after each fetch."""

    model_config = ConfigDict(frozen=True)

    chart: str = Field(description="Chart identifier, e.g. 'daily-events-volume'")
    status: ChartStatus = Field(default=ChartStatus.IDLE)
    series: Optional[PivotedSeries] = Field(default=None, description="Normalised chart data")
    error_message: Optional[str] = Field(default=None)
    synthetic: bool = Field(default=False, description="True when the data is a local placeholder")
    snapshot: Optional[FilterSnapshot] = Field(default=None, description="Filters the data was fetched for")
