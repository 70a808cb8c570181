"""Pydantic models for the drill-down navigator."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class DrilldownState(BaseModel):
    """Immutable navigator state; ``is_open`` is False for the Closed state."""

    model_config = ConfigDict(frozen=True)

    graph_type: Optional[str] = Field(default=None, description="Chart the drill-down started from")
    is_open: bool = False
    loading: bool = False
    level_stack: List[str] = Field(default_factory=list, description="Breadcrumb of visited levels")
    current_level: Optional[str] = None
    next_level: Optional[str] = Field(default=None, description="None when no further drill is offered")
    rows: List[Dict[str, Any]] = Field(default_factory=list, description="Breakdown rows at the current level")
    summary: Dict[str, Any] = Field(default_factory=dict, description="Summary returned with the current page")
    context: Dict[str, Any] = Field(default_factory=dict, description="Accumulated drill scope")
    synthetic: bool = False
    error: Optional[str] = None


class DrilldownOpenIn(BaseModel):
    graph_type: str = Field(description="Chart type tag, or 'kpi:<metric>' for KPI breakdowns")
    point: Dict[str, Any] = Field(default_factory=dict, description="Clicked chart point")


class DrilldownDrillIn(BaseModel):
    row: Dict[str, Any] = Field(description="Clicked breakdown row")
