import asyncio
from datetime import date

import pytest

from discom_dashboard.core.errors import NetworkFailure, NotFound
from discom_dashboard.schemas.filters import FilterSnapshot
from discom_dashboard.services.drilldown import DrilldownNavigator, hierarchy_for, kpi_entry_level

SNAPSHOT = FilterSnapshot(start_date=date(2025, 1, 1), end_date=date(2025, 1, 31))


class DummyClient:
    def __init__(self):
        self.detail_calls = []
        self.breakdown_calls = []
        self.fail_levels = {}

    async def post_detail_view(self, graph_type, data_point, filters, detail_level):
        self.detail_calls.append((graph_type, dict(data_point), dict(filters), detail_level))
        if detail_level in self.fail_levels:
            raise self.fail_levels[detail_level]
        return {
            "detailed_data": [{"name": f"{detail_level}-1", "value": 10}],
            "summary": {detail_level: f"{detail_level}-1"},
        }

    async def get_kpi_breakdown(self, kpi_type, breakdown_level, params):
        self.breakdown_calls.append((kpi_type, breakdown_level, dict(params)))
        return {
            "breakdown_data": [{f"{breakdown_level}_name": f"{breakdown_level}-X", "value": 1}],
            "summary": {"total": 1},
        }


def _navigator(client, snapshot=SNAPSHOT):
    return DrilldownNavigator(client, snapshot_provider=lambda: snapshot, timeout=1.0)


async def _walk(navigator, graph_type):
    state = await navigator.open(graph_type, {"weekday": "Monday"})
    levels = [state.current_level]
    while state.next_level is not None:
        state = await navigator.drill(state.rows[0])
        levels.append(state.current_level)
    return state, levels


@pytest.mark.anyio
async def test_events_by_weekday_drill_order():
    navigator = _navigator(DummyClient())

    state, levels = await _walk(navigator, "events-by-weekday")

    assert levels == ["event_type", "event_name", "discom", "feeder", "dtu"]
    assert state.next_level is None
    assert state.level_stack == levels


@pytest.mark.anyio
async def test_top_events_drill_order():
    _, levels = await _walk(_navigator(DummyClient()), "top-events")
    assert levels == ["discom", "region", "feeder", "dtu"]


@pytest.mark.anyio
async def test_daily_volume_starts_at_event_name():
    _, levels = await _walk(_navigator(DummyClient()), "daily-events-volume")
    assert levels[0] == "event_name"


def test_unknown_chart_uses_default_hierarchy():
    assert hierarchy_for("something-new") == ("discom", "region", "feeder", "dtu", "consumer")


@pytest.mark.anyio
async def test_drill_carries_accumulated_context_and_filters():
    client = DummyClient()
    navigator = _navigator(client)
    await navigator.open("top-events", {"event_name": "Power Fail"})

    await navigator.drill({"name": "DISCOM-A"})

    graph_type, data_point, filters, level = client.detail_calls[-1]
    assert (graph_type, level) == ("top-events", "region")
    assert data_point == {"event_name": "Power Fail", "discom": "discom-1", "name": "DISCOM-A"}
    assert filters == {"start_date": "2025-01-01", "end_date": "2025-01-31"}


@pytest.mark.anyio
async def test_open_while_open_is_ignored():
    client = DummyClient()
    navigator = _navigator(client)
    await navigator.open("top-events")

    state = await navigator.open("events-by-weekday")

    assert state.graph_type == "top-events"
    assert len(client.detail_calls) == 1


@pytest.mark.anyio
async def test_not_found_during_drill_reinitialises_at_first_level():
    client = DummyClient()
    navigator = _navigator(client)
    await navigator.open("top-events")
    await navigator.drill({"name": "DISCOM-A"})
    client.fail_levels["feeder"] = NotFound("Request failed with status code 404", status_code=404)

    state = await navigator.drill({"name": "North"})

    assert state.is_open
    assert state.current_level == "discom"
    assert state.level_stack == ["discom"]
    assert state.error is None


@pytest.mark.anyio
async def test_failed_drill_keeps_level_and_records_error():
    client = DummyClient()
    navigator = _navigator(client)
    await navigator.open("top-events")
    client.fail_levels["region"] = NetworkFailure("Warehouse offline")

    state = await navigator.drill({"name": "DISCOM-A"})

    assert state.current_level == "discom"
    assert state.loading is False
    assert state.error == "Warehouse offline"


@pytest.mark.anyio
async def test_failed_open_stays_closed_with_error():
    client = DummyClient()
    client.fail_levels["discom"] = NetworkFailure("Warehouse offline")

    state = await _navigator(client).open("top-events")

    assert state.is_open is False
    assert state.error == "Warehouse offline"


@pytest.mark.anyio
async def test_placeholder_chart_falls_back_to_synthetic_page():
    client = DummyClient()
    client.fail_levels["discom"] = NetworkFailure("Warehouse offline")

    state = await _navigator(client).open("solar-forecast", {"hour": 12})

    assert state.is_open and state.synthetic
    assert [row["discom_name"] for row in state.rows] == ["DISCOM-A", "DISCOM-B", "DISCOM-C"]
    assert state.next_level == "region"


@pytest.mark.anyio
async def test_close_discards_in_flight_result():
    release = asyncio.Event()

    class SlowClient(DummyClient):
        async def post_detail_view(self, graph_type, data_point, filters, detail_level):
            await release.wait()
            return await super().post_detail_view(graph_type, data_point, filters, detail_level)

    navigator = _navigator(SlowClient())
    opening = asyncio.create_task(navigator.open("top-events"))
    await asyncio.sleep(0)
    assert navigator.state.loading

    navigator.close()
    release.set()
    await opening

    assert navigator.state.is_open is False
    assert navigator.state.rows == []


@pytest.mark.anyio
async def test_drill_at_last_level_is_a_no_op():
    client = DummyClient()
    navigator = _navigator(client)
    state, _ = await _walk(navigator, "top-events")
    calls = len(client.detail_calls)

    again = await navigator.drill(state.rows[0])

    assert state.current_level == "dtu"
    assert again is state
    assert len(client.detail_calls) == calls


def test_kpi_entry_level_skips_the_level_the_filters_point_at():
    assert kpi_entry_level(SNAPSHOT) == "region"
    assert kpi_entry_level(SNAPSHOT.model_copy(update={"discom": "DISCOM-A"})) == "feeder"
    region = SNAPSHOT.model_copy(update={"discom": "A", "region": "R"})
    assert kpi_entry_level(region) == "dtu"
    feeder = region.model_copy(update={"feeder": "F"})
    assert kpi_entry_level(feeder) == "consumer"
    assert kpi_entry_level(feeder.model_copy(update={"dtu": "D"})) is None


@pytest.mark.anyio
async def test_kpi_breakdown_stays_closed_below_dtu_filter():
    client = DummyClient()
    dtu = SNAPSHOT.model_copy(update={"discom": "A", "region": "R", "feeder": "F", "dtu": "D"})

    state = await _navigator(client, dtu).open("kpi:total-energy-consumed")

    assert state.is_open is False
    assert state.loading is False
    assert client.breakdown_calls == []


@pytest.mark.anyio
async def test_kpi_breakdown_narrows_scope_by_clicked_row():
    client = DummyClient()
    scoped = SNAPSHOT.model_copy(update={"discom": "DISCOM-A"})
    navigator = _navigator(client, scoped)

    state = await navigator.open("kpi:total-energy-consumed")
    assert state.current_level == "feeder"
    assert client.breakdown_calls[0] == (
        "total-energy-consumed",
        "feeder",
        {"discom_name": "DISCOM-A", "start_date": "2025-01-01", "end_date": "2025-01-31"},
    )

    state = await navigator.drill(state.rows[0])

    assert state.current_level == "dtu"
    kpi_type, level, params = client.breakdown_calls[-1]
    assert level == "dtu"
    assert params["feeder_meter_no"] == "feeder-X"
    assert params["discom_name"] == "DISCOM-A"
