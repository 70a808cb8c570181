"""KPI aggregation orchestrator.

Each cycle resets every card to ``loading``, fans the metric fetches out
concurrently, waits for all of them to settle and publishes the complete
result set once. A newer cycle supersedes an older one; the older cycle's
results are dropped when they arrive.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from loguru import logger

from discom_dashboard.core.concurrency import Generation, settle_all
from discom_dashboard.core.config import settings
from discom_dashboard.core.errors import MalformedResponse, ValidationGap
from discom_dashboard.schemas.filters import FilterSnapshot
from discom_dashboard.schemas.kpis import KPIResult, KPIStatus, KPIView
from discom_dashboard.services.api_client import DashboardApiClient

KPIFetch = Callable[[FilterSnapshot], Awaitable[Optional[float]]]
ViewSubscriber = Callable[[KPIView], Any]


@dataclass(frozen=True)
class MetricSpec:
    """One registered KPI: its name, display metadata and how to fetch it."""

    name: str
    title: str
    fetch: KPIFetch
    unit: str = ""


def _numeric(name: str, field: str, payload: Dict[str, Any]) -> Optional[float]:
    value = payload.get(field)
    if value is None:
        return None
    if isinstance(value, bool):
        raise MalformedResponse(f"KPI '{name}' field '{field}' is not numeric")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise MalformedResponse(f"KPI '{name}' field '{field}' is not numeric") from exc


async def fetch_kpi_value(
    client: DashboardApiClient, name: str, field: str, snapshot: FilterSnapshot
) -> Optional[float]:
    payload = await client.get_kpi(name, snapshot)
    return _numeric(name, field, payload)


# (endpoint name, response field, title, unit)
DEFAULT_METRICS = (
    ("total-energy-consumed", "total_energy_kwh", "Total Energy Consumed", "kWh"),
    ("total-power-loss", "total_power_loss_kwh", "Total Power Loss", "kWh"),
    ("total-dtus", "total_dtus", "Total DTUs", ""),
    ("zero-energy-users", "zero_energy_users", "Zero Energy Users", ""),
    ("solar-consumers", "solar_consumers", "Solar Consumers", ""),
    ("total-solar-export", "total_solar_export_kwh", "Total Solar Export", "kWh"),
)

OPTIONAL_METRICS = (
    ("average-current", "average_current", "Average Current", "A"),
    ("average-voltage", "average_voltage", "Average Voltage", "V"),
)


def _specs(client: DashboardApiClient, table) -> List[MetricSpec]:
    return [
        MetricSpec(
            name=name,
            title=title,
            unit=unit,
            fetch=partial(fetch_kpi_value, client, name, field),
        )
        for name, field, title, unit in table
    ]


def default_metric_specs(client: DashboardApiClient) -> List[MetricSpec]:
    return _specs(client, DEFAULT_METRICS)


def optional_metric_specs(client: DashboardApiClient) -> List[MetricSpec]:
    return _specs(client, OPTIONAL_METRICS)


class KPIAggregationOrchestrator:
    def __init__(self, specs: Sequence[MetricSpec], *, timeout: Optional[float] = None):
        self.specs = list(specs)
        self.timeout = timeout or settings.KPI_TIMEOUT_SEC
        self._generation = Generation()
        self._view = KPIView()
        self._subscribers: List[ViewSubscriber] = []

    @property
    def view(self) -> KPIView:
        return self._view

    def subscribe(self, callback: ViewSubscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _publish(self, view: KPIView) -> None:
        self._view = view
        for callback in list(self._subscribers):
            callback(view)

    async def run_cycle(
        self,
        snapshot: FilterSnapshot,
        metric_specs: Optional[Sequence[MetricSpec]] = None,
    ) -> Optional[KPIView]:
        """Run one aggregation cycle; returns None when skipped or superseded."""

        specs = list(metric_specs) if metric_specs is not None else self.specs
        try:
            snapshot.require_dates()
        except ValidationGap as gap:
            logger.bind(reason=str(gap)).info("kpi_cycle_skipped")
            return None

        token = self._generation.advance()
        previous = self._view.results
        labels = {spec.name: {"title": spec.title, "unit": spec.unit} for spec in specs}
        self._publish(
            KPIView(
                cycle=token,
                snapshot=snapshot,
                results={
                    spec.name: KPIResult(
                        value=previous[spec.name].value if spec.name in previous else None,
                        status=KPIStatus.LOADING,
                        **labels[spec.name],
                    )
                    for spec in specs
                },
            )
        )

        outcomes = await settle_all(
            {spec.name: partial(spec.fetch, snapshot) for spec in specs},
            timeout=self.timeout,
        )

        if not self._generation.is_current(token):
            logger.bind(cycle=token, current=self._generation.current).info("kpi_cycle_superseded")
            return None

        results: Dict[str, KPIResult] = {}
        for name, outcome in outcomes.items():
            if outcome.ok:
                results[name] = KPIResult(value=outcome.value, status=KPIStatus.READY, **labels[name])
            else:
                results[name] = KPIResult(
                    status=KPIStatus.FAILED, error_message=outcome.error.message, **labels[name]
                )

        view = KPIView(cycle=token, snapshot=snapshot, results=results)
        failed = [name for name, result in results.items() if result.status is KPIStatus.FAILED]
        logger.bind(cycle=token, failed=failed, total=len(results)).info("kpi_cycle_completed")
        self._publish(view)
        return view
