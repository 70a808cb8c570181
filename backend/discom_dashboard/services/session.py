"""One dashboard session: filters, KPI cards, charts, drill-down and assistant.

A filter commit is the only thing that triggers a refresh; the session fans
it out to the KPI orchestrator and every chart loader as background tasks
and persists the committed snapshot so a restarted process can resume it.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from datetime import date
from typing import Callable, Dict, Optional, Set

from loguru import logger
from pydantic import ValidationError

from discom_dashboard.core.concurrency import settle
from discom_dashboard.core.config import settings
from discom_dashboard.core.store import SessionStore
from discom_dashboard.schemas.filters import FilterSnapshot
from discom_dashboard.services.api_client import DashboardApiClient
from discom_dashboard.services.assistant import AssistantSessionKeeper
from discom_dashboard.services.charts import CHART_SPECS, ChartLoader
from discom_dashboard.services.drilldown import DrilldownNavigator
from discom_dashboard.services.filters import FilterCascadeController
from discom_dashboard.services.kpis import (
    KPIAggregationOrchestrator,
    default_metric_specs,
    optional_metric_specs,
)

FILTERS_KEY = "committed_filters"


class DashboardSession:
    def __init__(
        self,
        session_id: str,
        client: DashboardApiClient,
        *,
        store: Optional[SessionStore] = None,
        user_id: Optional[str] = None,
        today: Callable[[], date] = date.today,
    ):
        self.session_id = session_id
        self.client = client
        self.store = store or SessionStore(session_id)
        self.filters = FilterCascadeController(client, today=today)
        metrics = default_metric_specs(client)
        if settings.KPI_INCLUDE_OPTIONAL_METRICS:
            metrics += optional_metric_specs(client)
        self.kpis = KPIAggregationOrchestrator(metrics)
        self.charts: Dict[str, ChartLoader] = {
            name: ChartLoader(client, spec) for name, spec in CHART_SPECS.items()
        }
        self.drilldown = DrilldownNavigator(client, snapshot_provider=lambda: self.filters.committed)
        self.assistant = AssistantSessionKeeper(client, self.store, user_id=user_id or session_id)
        self._tasks: Set[asyncio.Task] = set()
        self.filters.subscribe(self._on_commit)

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _on_commit(self, snapshot: FilterSnapshot) -> None:
        logger.bind(session_id=self.session_id).info("dashboard_refresh_scheduled")
        self._spawn(self.kpis.run_cycle(snapshot))
        for loader in self.charts.values():
            self._spawn(loader.load(snapshot))
        self._spawn(self.store.set(FILTERS_KEY, snapshot.model_dump(mode="json")))

    async def _restored_snapshot(self) -> Optional[FilterSnapshot]:
        saved = await self.store.get(FILTERS_KEY)
        if not saved:
            return None
        try:
            return FilterSnapshot.model_validate(saved)
        except ValidationError:
            logger.bind(session_id=self.session_id).warning("stored_filters_invalid")
            return None

    async def start(self) -> "DashboardSession":
        restored = await self._restored_snapshot()
        await self.filters.mount(restored)
        # Bounded like an option fetch; on failure assistant.session_id stays None.
        await settle(
            self.assistant.ensure,
            timeout=settings.FILTER_OPTIONS_TIMEOUT_SEC,
            label="assistant_session",
        )
        logger.bind(session_id=self.session_id, restored=restored is not None).info("dashboard_session_started")
        return self

    async def settle(self) -> None:
        """Wait for every refresh scheduled so far, including ones they trigger."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self, *, forget: bool = False) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self.drilldown.close()
        if forget:
            await self.store.clear()


class SessionRegistry:
    """Live sessions of this process; unknown ids are resumed from the store.

    Sessions untouched for ``SESSION_TTL_SEC`` are closed and dropped on the
    next create or lookup. Their persisted filters stay in the store, so a
    later request for the same id resumes them.
    """

    def __init__(
        self,
        client: DashboardApiClient,
        *,
        today: Callable[[], date] = date.today,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._client = client
        self._today = today
        self._clock = clock
        self._sessions: Dict[str, DashboardSession] = {}
        self._last_seen: Dict[str, float] = {}

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def _build(self, session_id: str, user_id: Optional[str] = None) -> DashboardSession:
        return DashboardSession(session_id, self._client, user_id=user_id, today=self._today)

    def _track(self, session: DashboardSession) -> None:
        self._sessions[session.session_id] = session
        self._last_seen[session.session_id] = self._clock()

    async def evict_idle(self) -> int:
        cutoff = self._clock() - settings.SESSION_TTL_SEC
        idle = [sid for sid, seen in self._last_seen.items() if seen < cutoff]
        for session_id in idle:
            self._last_seen.pop(session_id, None)
            session = self._sessions.pop(session_id, None)
            if session is not None:
                await session.aclose()
        if idle:
            logger.bind(evicted=len(idle), live=len(self._sessions)).info("dashboard_sessions_evicted")
        return len(idle)

    async def create(self, user_id: Optional[str] = None) -> DashboardSession:
        await self.evict_idle()
        session = self._build(uuid.uuid4().hex, user_id)
        self._track(session)
        return await session.start()

    async def get(self, session_id: str) -> Optional[DashboardSession]:
        await self.evict_idle()
        session = self._sessions.get(session_id)
        if session is not None:
            self._last_seen[session_id] = self._clock()
            return session
        if await SessionStore(session_id).get(FILTERS_KEY) is None:
            return None
        session = self._build(session_id)
        self._track(session)
        logger.bind(session_id=session_id).info("dashboard_session_resumed")
        return await session.start()

    async def close(self, session_id: str) -> bool:
        self._last_seen.pop(session_id, None)
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        await session.aclose(forget=True)
        return True

    async def aclose(self) -> None:
        for session in list(self._sessions.values()):
            await session.aclose()
        self._sessions.clear()
        self._last_seen.clear()
