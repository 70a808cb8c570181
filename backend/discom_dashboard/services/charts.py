"""Chart loaders: fetch, normalise and publish one chart per committed snapshot."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

from loguru import logger

from discom_dashboard.core.concurrency import Generation, settle
from discom_dashboard.core.config import settings
from discom_dashboard.core.errors import ValidationGap
from discom_dashboard.schemas.charts import ChartResult, ChartStatus, PivotedSeries
from discom_dashboard.schemas.filters import FilterSnapshot
from discom_dashboard.services import normalizer, placeholders
from discom_dashboard.services.api_client import DashboardApiClient

Normalize = Callable[[Sequence[Dict[str, Any]]], PivotedSeries]


@dataclass(frozen=True)
class ChartSpec:
    name: str
    normalize: Normalize
    params: Callable[[], Dict[str, Any]] = field(default=dict)
    placeholder: bool = False


def _top_events_params() -> Dict[str, Any]:
    event_type = settings.TOP_EVENTS_DEFAULT_TYPE
    return {
        "event_type": None if event_type == "All" else event_type,
        "limit": settings.TOP_EVENTS_LIMIT,
    }


def _spec(name: str, params: Callable[[], Dict[str, Any]] = dict) -> ChartSpec:
    return ChartSpec(
        name=name,
        normalize=normalizer.NORMALIZERS[name],
        params=params,
        placeholder=name in placeholders.PLACEHOLDER_CHARTS,
    )


CHART_SPECS: Dict[str, ChartSpec] = {
    spec.name: spec
    for spec in (
        _spec("hourly-consumption", lambda: {"drilldown_level": "discom"}),
        _spec("zero-consumption-trend", lambda: {"drilldown_level": "discom"}),
        _spec("top-events", _top_events_params),
        _spec("daily-events-volume"),
        _spec("events-by-weekday"),
        _spec("consumption-anomalies", lambda: {"anomaly_threshold": settings.ANOMALY_THRESHOLD}),
        _spec("solar-forecast", lambda: {"forecast_days": settings.SOLAR_FORECAST_DAYS}),
        _spec("anomaly-categories"),
    )
}


class ChartLoader:
    """Keeps the latest ``ChartResult`` for one chart.

    Placeholder-capable charts substitute synthetic rows when the fetch fails
    or comes back empty; every other chart reports the failure inline.
    """

    def __init__(
        self,
        client: DashboardApiClient,
        spec: ChartSpec,
        *,
        timeout: Optional[float] = None,
        params: Optional[Mapping[str, Any]] = None,
    ):
        self._client = client
        self.spec = spec
        self._timeout = timeout or settings.CHART_TIMEOUT_SEC
        self._overrides = dict(params or {})
        self._generation = Generation()
        self._result = ChartResult(chart=spec.name)

    @property
    def result(self) -> ChartResult:
        return self._result

    def request_params(self) -> Dict[str, Any]:
        return {**self.spec.params(), **self._overrides}

    async def _fetch_series(self, snapshot: FilterSnapshot) -> Optional[PivotedSeries]:
        payload = await self._client.get_graph(self.spec.name, snapshot, self.request_params())
        rows = normalizer.extract_rows(payload)
        if not rows and self.spec.placeholder:
            return None
        return self.spec.normalize(rows)

    def _placeholder_series(self, snapshot: FilterSnapshot) -> PivotedSeries:
        rows = placeholders.chart_rows(
            self.spec.name,
            start=snapshot.start_date,
            days=settings.SOLAR_FORECAST_DAYS,
        )
        return self.spec.normalize(rows)

    async def load(self, snapshot: FilterSnapshot) -> Optional[ChartResult]:
        """Fetch for ``snapshot``; returns None when skipped or superseded."""
        name = self.spec.name
        try:
            snapshot.require_dates()
        except ValidationGap as gap:
            logger.bind(chart=name, reason=str(gap)).info("chart_load_skipped")
            return None

        token = self._generation.advance()
        self._result = self._result.model_copy(
            update={"status": ChartStatus.LOADING, "snapshot": snapshot, "error_message": None}
        )
        outcome = await settle(
            lambda: self._fetch_series(snapshot),
            timeout=self._timeout,
            label=f"chart:{name}",
        )
        if not self._generation.is_current(token):
            logger.bind(chart=name).info("chart_result_discarded")
            return None

        if outcome.ok and outcome.value is not None:
            result = ChartResult(chart=name, status=ChartStatus.READY, series=outcome.value, snapshot=snapshot)
        elif self.spec.placeholder:
            logger.bind(
                chart=name, reason=outcome.error.message if outcome.error else "empty"
            ).warning("chart_using_placeholder")
            result = ChartResult(
                chart=name,
                status=ChartStatus.READY,
                series=self._placeholder_series(snapshot),
                synthetic=True,
                snapshot=snapshot,
            )
        else:
            result = ChartResult(
                chart=name,
                status=ChartStatus.FAILED,
                error_message=outcome.error.message,
                snapshot=snapshot,
            )
        self._result = result
        return result
