"""Pydantic models for the cascading filter hierarchy."""

from datetime import date
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from discom_dashboard.core.errors import ValidationGap


class FilterLevel(str, Enum):
    """Every field a user can edit in the filter bar."""

    DISCOM = "discom"
    REGION = "region"
    FEEDER = "feeder"
    DTU = "dtu"
    START_DATE = "start_date"
    END_DATE = "end_date"


# Organizational levels in parent -> child order.
HIERARCHY: Tuple[FilterLevel, ...] = (
    FilterLevel.DISCOM,
    FilterLevel.REGION,
    FilterLevel.FEEDER,
    FilterLevel.DTU,
)

# Query-string name of each organizational level on the upstream API.
WIRE_NAMES: Dict[FilterLevel, str] = {
    FilterLevel.DISCOM: "discom_name",
    FilterLevel.REGION: "region_name",
    FilterLevel.FEEDER: "feeder_meter_no",
    FilterLevel.DTU: "dtu_meter_no",
}


class _FilterFields(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    discom: Optional[str] = Field(default=None, alias="discom_name", description="Selected DISCOM")
    region: Optional[str] = Field(default=None, alias="region_name", description="Selected region")
    feeder: Optional[str] = Field(default=None, alias="feeder_meter_no", description="Selected feeder meter")
    dtu: Optional[str] = Field(default=None, alias="dtu_meter_no", description="Selected DTU meter")
    start_date: Optional[date] = Field(default=None, description="Inclusive range start")
    end_date: Optional[date] = Field(default=None, description="Inclusive range end")

    @field_validator("discom", "region", "feeder", "dtu", mode="before")
    @classmethod
    def _blank_is_unset(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def value_of(self, level: FilterLevel):
        return getattr(self, level.value)

    @property
    def has_dates(self) -> bool:
        return self.start_date is not None and self.end_date is not None

    def require_dates(self) -> None:
        missing = [name for name in ("start_date", "end_date") if getattr(self, name) is None]
        if missing:
            raise ValidationGap(f"missing {', '.join(missing)}")

    def deepest_level(self) -> Optional[FilterLevel]:
        """Deepest organizational level with a value, if any."""
        deepest = None
        for level in HIERARCHY:
            if self.value_of(level) is None:
                break
            deepest = level
        return deepest

    def to_query_params(self) -> Dict[str, str]:
        """Upstream query parameters; unset fields are omitted."""
        params: Dict[str, str] = {}
        for level, wire_name in WIRE_NAMES.items():
            value = self.value_of(level)
            if value is not None:
                params[wire_name] = value
        if self.start_date is not None:
            params["start_date"] = self.start_date.isoformat()
        if self.end_date is not None:
            params["end_date"] = self.end_date.isoformat()
        return params


class FilterDraft(_FilterFields):
    """Editable filter value; may be incomplete or inconsistent."""


class FilterSnapshot(_FilterFields):
    """Committed, immutable filter value shared with every consumer."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @model_validator(mode="after")
    def _check_invariants(self):
        for parent, child in zip(HIERARCHY, HIERARCHY[1:]):
            if self.value_of(child) is not None and self.value_of(parent) is None:
                raise ValueError(f"{child.value} requires {parent.value}")
        if self.has_dates and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


class OptionSets(BaseModel):
    """Selectable identifiers per level, scoped to the current parents."""

    discoms: List[str] = Field(default_factory=list, description="All DISCOMs")
    regions: List[str] = Field(default_factory=list, description="Regions of the selected DISCOM")
    feeders: List[str] = Field(default_factory=list, description="Feeders of the selected region")
    dtus: List[str] = Field(default_factory=list, description="DTUs of the selected feeder")


class FilterFieldIn(BaseModel):
    """Body of a single filter field edit."""

    value: Optional[str] = Field(default=None, description="New value; empty or null clears the field")


class FilterStateOut(BaseModel):
    """Everything a filter bar needs to render."""

    draft: FilterDraft
    options: OptionSets
    loading: Dict[str, bool] = Field(default_factory=dict, description="Option fetches in flight")
    committed: Optional[FilterSnapshot] = Field(default=None, description="Last applied filters")
