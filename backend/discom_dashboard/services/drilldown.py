"""Drill-down navigator.

A chart point opens the navigator at the first level of the hierarchy mapped
to the chart type; each drill moves one level down the same hierarchy and
carries the accumulated scope (every earlier summary merged with the clicked
row) so the backend can restrict the breakdown to the full ancestor chain.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from loguru import logger

from discom_dashboard.core.concurrency import Generation, settle
from discom_dashboard.core.config import settings
from discom_dashboard.core.errors import MalformedResponse, NotFound
from discom_dashboard.schemas.drilldown import DrilldownState
from discom_dashboard.schemas.filters import WIRE_NAMES, FilterSnapshot
from discom_dashboard.services import placeholders
from discom_dashboard.services.api_client import DashboardApiClient

Hierarchy = Tuple[str, ...]

HIERARCHY_EVENTS: Hierarchy = ("event_type", "event_name", "discom", "feeder", "dtu")
HIERARCHY_ORGANIZATION: Hierarchy = ("discom", "region", "feeder", "dtu")
HIERARCHY_DEFAULT: Hierarchy = ("discom", "region", "feeder", "dtu", "consumer")

KPI_PREFIX = "kpi:"

HIERARCHIES: Dict[str, Hierarchy] = {
    "events-by-weekday": HIERARCHY_EVENTS,
    "daily-events-volume": HIERARCHY_EVENTS[1:],
    "top-events": HIERARCHY_ORGANIZATION,
    "hourly-consumption": HIERARCHY_ORGANIZATION,
    "consumption-anomalies": HIERARCHY_ORGANIZATION,
    "solar-forecast": HIERARCHY_ORGANIZATION,
    "anomaly-categories": HIERARCHY_ORGANIZATION,
    "zero-consumption-trend": HIERARCHY_DEFAULT,
}

# Level name -> filter level, for scoping KPI breakdowns by a clicked row.
_LEVEL_FILTERS = {level.value: level for level in WIRE_NAMES}


def hierarchy_for(graph_type: str) -> Hierarchy:
    """Level order for a chart type; unknown types and KPI breakdowns use the default."""
    return HIERARCHIES.get(graph_type, HIERARCHY_DEFAULT)


def next_level(hierarchy: Hierarchy, level: str) -> Optional[str]:
    position = hierarchy.index(level)
    return hierarchy[position + 1] if position + 1 < len(hierarchy) else None


def kpi_entry_level(snapshot: Optional[FilterSnapshot]) -> Optional[str]:
    """First level of a KPI breakdown, or None when nothing lies deeper.

    The committed filters place the dashboard one level below the deepest
    chosen organizational level (``discom`` when none is chosen); the
    breakdown opens at the level after that.
    """
    deepest = snapshot.deepest_level() if snapshot is not None else None
    current = HIERARCHY_DEFAULT.index(deepest.value) + 1 if deepest is not None else 0
    entry = current + 1
    return HIERARCHY_DEFAULT[entry] if entry < len(HIERARCHY_DEFAULT) else None


def _normalize_page(page: Mapping[str, Any]) -> Dict[str, Any]:
    """Rows and summary from a detail-view or KPI breakdown page."""
    summary = page.get("summary")
    rows: list = []
    for key in ("detailed_data", "breakdown_data", "data"):
        if page.get(key) is None:
            continue
        if not isinstance(page[key], list):
            raise MalformedResponse(f"'{key}' is not a list")
        rows = [row for row in page[key] if isinstance(row, dict)]
        break
    return {"rows": rows, "summary": summary if isinstance(summary, dict) else {}}


class DrilldownNavigator:
    """State machine ``Closed -> OpenAtLevel(level)``.

    Every open/drill advances a generation counter; a fetch that completes
    after a newer open, drill or close is discarded.
    """

    def __init__(
        self,
        client: DashboardApiClient,
        *,
        snapshot_provider: Callable[[], Optional[FilterSnapshot]],
        timeout: Optional[float] = None,
    ):
        self._client = client
        self._snapshot_provider = snapshot_provider
        self._timeout = timeout or settings.DETAIL_VIEW_TIMEOUT_SEC
        self._generation = Generation()
        self._state = DrilldownState()
        self._hierarchy: Hierarchy = ()
        self._origin: Dict[str, Any] = {}
        self._scope: Dict[str, str] = {}

    @property
    def state(self) -> DrilldownState:
        return self._state

    async def open(self, graph_type: str, point: Optional[Mapping[str, Any]] = None) -> DrilldownState:
        if self._state.is_open or self._state.loading:
            logger.bind(graph_type=graph_type, active=self._state.graph_type).info("drilldown_open_ignored")
            return self._state

        snapshot = self._snapshot_provider()
        hierarchy = hierarchy_for(graph_type)
        if graph_type.startswith(KPI_PREFIX):
            entry = kpi_entry_level(snapshot)
            if entry is None:
                logger.bind(graph_type=graph_type).info("drilldown_kpi_at_deepest_level")
                return self._state
            hierarchy = hierarchy[hierarchy.index(entry):]

        self._hierarchy = hierarchy
        self._origin = dict(point or {})
        self._scope = snapshot.to_query_params() if snapshot is not None else {}
        return await self._open_first(graph_type)

    async def drill(self, row: Mapping[str, Any]) -> DrilldownState:
        state = self._state
        if not state.is_open or state.loading or state.next_level is None:
            return state

        graph_type = state.graph_type
        level = state.next_level
        data_point = {**state.context, **row}
        scope = self._narrowed_scope(graph_type, state.current_level, row)
        token = self._generation.advance()
        self._state = state.model_copy(update={"loading": True})

        outcome = await settle(
            lambda: self._fetch(graph_type, level, data_point, scope),
            timeout=self._timeout,
            label=f"drilldown:{graph_type}:{level}",
        )
        if not self._generation.is_current(token):
            logger.bind(graph_type=graph_type, level=level).info("drilldown_result_discarded")
            return self._state

        if outcome.ok:
            self._scope = scope
            self._state = self._page_state(graph_type, level, data_point, outcome.value, state.level_stack)
            return self._state

        if isinstance(outcome.error, NotFound):
            logger.bind(graph_type=graph_type, level=level).info("drilldown_reinitialised")
            snapshot = self._snapshot_provider()
            self._scope = snapshot.to_query_params() if snapshot is not None else {}
            return await self._open_first(graph_type)

        if graph_type in placeholders.PLACEHOLDER_CHARTS:
            page = _normalize_page(placeholders.drilldown_page(graph_type, level, data_point))
            self._state = self._page_state(
                graph_type, level, data_point, page, state.level_stack, synthetic=True
            )
            return self._state

        self._state = state.model_copy(update={"loading": False, "error": outcome.error.message})
        return self._state

    def close(self) -> DrilldownState:
        self._generation.advance()
        self._state = DrilldownState()
        self._hierarchy = ()
        self._origin = {}
        self._scope = {}
        return self._state

    async def _open_first(self, graph_type: str) -> DrilldownState:
        level = self._hierarchy[0]
        point = dict(self._origin)
        token = self._generation.advance()
        self._state = DrilldownState(graph_type=graph_type, loading=True)

        outcome = await settle(
            lambda: self._fetch(graph_type, level, point, self._scope),
            timeout=self._timeout,
            label=f"drilldown:{graph_type}:{level}",
        )
        if not self._generation.is_current(token):
            logger.bind(graph_type=graph_type, level=level).info("drilldown_result_discarded")
            return self._state

        if outcome.ok:
            self._state = self._page_state(graph_type, level, point, outcome.value, [])
        elif graph_type in placeholders.PLACEHOLDER_CHARTS:
            page = _normalize_page(placeholders.drilldown_page(graph_type, level, point))
            self._state = self._page_state(graph_type, level, point, page, [], synthetic=True)
        else:
            logger.bind(graph_type=graph_type, error=outcome.error.message).warning("drilldown_open_failed")
            self._state = DrilldownState(graph_type=graph_type, error=outcome.error.message)
        return self._state

    def _page_state(
        self,
        graph_type: str,
        level: str,
        data_point: Mapping[str, Any],
        page: Mapping[str, Any],
        stack: List[str],
        *,
        synthetic: bool = False,
    ) -> DrilldownState:
        summary = page["summary"]
        logger.bind(
            graph_type=graph_type, level=level, rows=len(page["rows"]), synthetic=synthetic
        ).info("drilldown_page_loaded")
        return DrilldownState(
            graph_type=graph_type,
            is_open=True,
            level_stack=[*stack, level],
            current_level=level,
            next_level=next_level(self._hierarchy, level),
            rows=page["rows"],
            summary=summary,
            context={**data_point, **summary},
            synthetic=synthetic,
        )

    def _narrowed_scope(
        self, graph_type: str, level: Optional[str], row: Mapping[str, Any]
    ) -> Dict[str, str]:
        """Upstream filters for the next KPI breakdown, scoped to the clicked row."""
        if not graph_type.startswith(KPI_PREFIX) or level not in _LEVEL_FILTERS:
            return self._scope
        wire_name = WIRE_NAMES[_LEVEL_FILTERS[level]]
        for key in (wire_name, level, f"{level}_name"):
            value = row.get(key)
            if value not in (None, ""):
                return {**self._scope, wire_name: str(value)}
        return self._scope

    async def _fetch(
        self,
        graph_type: str,
        level: str,
        data_point: Mapping[str, Any],
        scope: Mapping[str, str],
    ) -> Dict[str, Any]:
        if graph_type.startswith(KPI_PREFIX):
            kpi_type = graph_type[len(KPI_PREFIX):]
            page = await self._client.get_kpi_breakdown(kpi_type, level, scope)
        else:
            page = await self._client.post_detail_view(graph_type, data_point, scope, level)
        return _normalize_page(page)
