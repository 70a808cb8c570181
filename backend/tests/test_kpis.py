import asyncio
from datetime import date

import pytest

from discom_dashboard.core.errors import NetworkFailure
from discom_dashboard.schemas.filters import FilterSnapshot
from discom_dashboard.schemas.kpis import KPIStatus
from discom_dashboard.services.kpis import (
    DEFAULT_METRICS,
    KPIAggregationOrchestrator,
    MetricSpec,
    default_metric_specs,
    optional_metric_specs,
)

SNAPSHOT = FilterSnapshot(start_date=date(2025, 1, 1), end_date=date(2025, 1, 31))


def _value(number):
    async def fetch(snapshot):
        return number

    return fetch


def _failure(message):
    async def fetch(snapshot):
        raise NetworkFailure(message)

    return fetch


@pytest.mark.anyio
async def test_partial_failure_is_published_once_after_all_settle():
    specs = [
        MetricSpec(name="m1", title="M1", fetch=_value(1.0)),
        MetricSpec(name="m2", title="M2", fetch=_value(2.0)),
        MetricSpec(name="m3", title="M3", fetch=_failure("Request failed with status code 500")),
        MetricSpec(name="m4", title="M4", fetch=_value(4.0)),
        MetricSpec(name="m5", title="M5", fetch=_failure("Warehouse offline")),
        MetricSpec(name="m6", title="M6", fetch=_value(6.0)),
    ]
    orchestrator = KPIAggregationOrchestrator(specs, timeout=1.0)
    views = []
    orchestrator.subscribe(views.append)

    view = await orchestrator.run_cycle(SNAPSHOT)

    assert len(views) == 2
    assert all(result.status is KPIStatus.LOADING for result in views[0].results.values())
    assert views[1] is view
    statuses = [result.status for result in view.results.values()]
    assert statuses.count(KPIStatus.READY) == 4
    assert statuses.count(KPIStatus.FAILED) == 2
    assert view.results["m5"].error_message == "Warehouse offline"
    assert list(view.results) == ["m1", "m2", "m3", "m4", "m5", "m6"]


@pytest.mark.anyio
async def test_superseded_cycle_never_overwrites_newer_results():
    started = asyncio.Event()
    release = asyncio.Event()

    async def slow(snapshot):
        if snapshot.discom == "OLD":
            started.set()
            await release.wait()
            return 1.0
        return 2.0

    orchestrator = KPIAggregationOrchestrator([MetricSpec(name="energy", title="Energy", fetch=slow)], timeout=1.0)
    old = SNAPSHOT.model_copy(update={"discom": "OLD"})
    new = SNAPSHOT.model_copy(update={"discom": "NEW"})

    first = asyncio.create_task(orchestrator.run_cycle(old))
    await started.wait()
    second = await orchestrator.run_cycle(new)
    release.set()

    assert await first is None
    assert orchestrator.view is second
    assert orchestrator.view.results["energy"].value == 2.0
    assert orchestrator.view.snapshot.discom == "NEW"


@pytest.mark.anyio
async def test_loading_view_keeps_previous_values():
    orchestrator = KPIAggregationOrchestrator([MetricSpec(name="energy", title="Energy", fetch=_value(5.0))], timeout=1.0)
    await orchestrator.run_cycle(SNAPSHOT)
    views = []
    orchestrator.subscribe(views.append)

    await orchestrator.run_cycle(SNAPSHOT)

    loading = views[0].results["energy"]
    assert loading.status is KPIStatus.LOADING
    assert loading.value == 5.0
    assert loading.display is None


@pytest.mark.anyio
async def test_missing_dates_skip_the_cycle():
    orchestrator = KPIAggregationOrchestrator([MetricSpec(name="energy", title="Energy", fetch=_value(5.0))])
    views = []
    orchestrator.subscribe(views.append)

    result = await orchestrator.run_cycle(FilterSnapshot(start_date=date(2025, 1, 1)))

    assert result is None
    assert views == []


@pytest.mark.anyio
async def test_slow_metric_times_out_without_affecting_others():
    async def hang(snapshot):
        await asyncio.sleep(5)

    specs = [
        MetricSpec(name="slow", title="Slow", fetch=hang),
        MetricSpec(name="fast", title="Fast", fetch=_value(12_345_678)),
    ]
    view = await KPIAggregationOrchestrator(specs, timeout=0.05).run_cycle(SNAPSHOT)

    assert view.results["slow"].status is KPIStatus.FAILED
    assert "timed out" in view.results["slow"].error_message
    assert view.results["fast"].display == "1.23Cr"


@pytest.mark.anyio
async def test_default_metrics_read_their_response_fields(upstream):
    for name, field, _, _ in DEFAULT_METRICS:
        upstream.json(f"/api/dashboard/kpis/{name}", {"data": {field: 1500}})
    upstream.json("/api/dashboard/kpis/total-dtus", {"data": {"total_dtus": "not-a-number"}})
    client = upstream.client()

    view = await KPIAggregationOrchestrator(default_metric_specs(client), timeout=1.0).run_cycle(SNAPSHOT)
    await client.aclose()

    assert len(view.results) == 6
    assert view.results["total-energy-consumed"].value == 1500.0
    assert view.results["total-energy-consumed"].display == "1.50K"
    assert view.results["total-dtus"].status is KPIStatus.FAILED
    assert upstream.requests[0].url.params["start_date"] == "2025-01-01"


@pytest.mark.anyio
async def test_results_carry_card_titles_and_units(upstream):
    upstream.json("/api/dashboard/kpis/average-voltage", {"data": {"average_voltage": 229.5}})
    client = upstream.client()
    specs = [spec for spec in optional_metric_specs(client) if spec.name == "average-voltage"]

    view = await KPIAggregationOrchestrator(specs, timeout=1.0).run_cycle(SNAPSHOT)
    await client.aclose()

    result = view.results["average-voltage"]
    assert (result.title, result.unit, result.display) == ("Average Voltage", "V", "229.50")
