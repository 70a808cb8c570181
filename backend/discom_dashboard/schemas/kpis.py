"""Pydantic models for the KPI card row."""

from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

from discom_dashboard.schemas.filters import FilterSnapshot
from discom_dashboard.utils.formatting import format_number


class KPIStatus(str, Enum):
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


class KPIResult(BaseModel):
    """Outcome of one metric for one aggregation cycle."""

    model_config = ConfigDict(frozen=True)

    value: Optional[float] = Field(default=None, description="Metric value when ready")
    title: str = Field(default="", description="Card title")
    unit: str = Field(default="", description="Display unit, e.g. kWh")
    status: KPIStatus = Field(description="loading | ready | failed")
    error_message: Optional[str] = Field(default=None, description="Why the metric failed")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def display(self) -> Optional[str]:
        """Card text for a ready metric."""
        if self.status is not KPIStatus.READY:
            return None
        return format_number(self.value)


class KPIView(BaseModel):
    """Aggregate view model published to subscribers."""

    model_config = ConfigDict(frozen=True)

    cycle: int = Field(default=0, description="Aggregation cycle that produced this view")
    snapshot: Optional[FilterSnapshot] = Field(default=None, description="Filters the cycle ran for")
    results: Dict[str, KPIResult] = Field(default_factory=dict, description="Result per metric, in registry order")
