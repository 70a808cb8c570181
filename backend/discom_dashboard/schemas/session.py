"""Pydantic models for dashboard session endpoints."""

from typing import Optional

from pydantic import BaseModel, Field

from discom_dashboard.schemas.filters import FilterStateOut


class SessionOut(BaseModel):
    session_id: str = Field(description="Dashboard session identifier")
    filters: FilterStateOut
    assistant_session_id: Optional[str] = Field(
        default=None, description="Conversational assistant session, when restored or created"
    )
