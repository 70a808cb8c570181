from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status
from loguru import logger

from discom_dashboard.core.deps import get_dashboard_session, get_registry
from discom_dashboard.schemas.charts import ChartResult
from discom_dashboard.schemas.drilldown import DrilldownDrillIn, DrilldownOpenIn, DrilldownState
from discom_dashboard.schemas.filters import FilterFieldIn, FilterLevel, FilterSnapshot, FilterStateOut
from discom_dashboard.schemas.kpis import KPIView
from discom_dashboard.schemas.session import SessionOut
from discom_dashboard.services.session import DashboardSession, SessionRegistry

router = APIRouter(prefix="/sessions", tags=["dashboard"])


def _session_out(session: DashboardSession) -> SessionOut:
    return SessionOut(
        session_id=session.session_id,
        filters=session.filters.state(),
        assistant_session_id=session.assistant.session_id,
    )


# ---- sessions ----


@router.post("", response_model=SessionOut, status_code=status.HTTP_201_CREATED)
async def create_session(
    user_id: Optional[str] = None,
    registry: SessionRegistry = Depends(get_registry),
) -> SessionOut:
    session = await registry.create(user_id)
    return _session_out(session)


@router.get("/{session_id}", response_model=SessionOut)
async def read_session(session: DashboardSession = Depends(get_dashboard_session)) -> SessionOut:
    return _session_out(session)


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
) -> Response:
    if not await registry.close(session_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Dashboard session not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---- filters ----


@router.get("/{session_id}/filters", response_model=FilterStateOut)
async def read_filters(session: DashboardSession = Depends(get_dashboard_session)) -> FilterStateOut:
    return session.filters.state()


@router.put("/{session_id}/filters/{level}", response_model=FilterStateOut)
async def set_filter(
    level: FilterLevel,
    payload: FilterFieldIn,
    session: DashboardSession = Depends(get_dashboard_session),
) -> FilterStateOut:
    try:
        await session.filters.set_field(level, payload.value)
    except ValueError as exc:
        # HierarchyViolation and malformed dates both land here.
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    return session.filters.state()


@router.post("/{session_id}/filters/commit", response_model=FilterSnapshot)
async def commit_filters(session: DashboardSession = Depends(get_dashboard_session)) -> FilterSnapshot:
    snapshot = session.filters.commit()
    if snapshot is None:
        logger.bind(session_id=session.session_id).info("filter_commit_not_applied")
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Filters need both dates and a start date not after the end date",
        )
    return snapshot


# ---- KPIs and charts ----


@router.get("/{session_id}/kpis", response_model=KPIView)
async def read_kpis(
    wait: bool = False,
    session: DashboardSession = Depends(get_dashboard_session),
) -> KPIView:
    if wait:
        await session.settle()
    return session.kpis.view


@router.get("/{session_id}/charts/{chart}", response_model=ChartResult)
async def read_chart(
    chart: str,
    wait: bool = False,
    session: DashboardSession = Depends(get_dashboard_session),
) -> ChartResult:
    loader = session.charts.get(chart)
    if loader is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown chart '{chart}'")
    if wait:
        await session.settle()
    return loader.result


# ---- drill-down ----


@router.get("/{session_id}/drilldown", response_model=DrilldownState)
async def read_drilldown(session: DashboardSession = Depends(get_dashboard_session)) -> DrilldownState:
    return session.drilldown.state


@router.post("/{session_id}/drilldown/open", response_model=DrilldownState)
async def open_drilldown(
    payload: DrilldownOpenIn,
    session: DashboardSession = Depends(get_dashboard_session),
) -> DrilldownState:
    return await session.drilldown.open(payload.graph_type, payload.point)


@router.post("/{session_id}/drilldown/drill", response_model=DrilldownState)
async def drill_drilldown(
    payload: DrilldownDrillIn,
    session: DashboardSession = Depends(get_dashboard_session),
) -> DrilldownState:
    return await session.drilldown.drill(payload.row)


@router.delete("/{session_id}/drilldown", response_model=DrilldownState)
async def close_drilldown(session: DashboardSession = Depends(get_dashboard_session)) -> DrilldownState:
    return session.drilldown.close()
