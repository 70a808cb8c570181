import asyncio
from datetime import date

import pytest

from discom_dashboard.core.errors import HierarchyViolation, NetworkFailure
from discom_dashboard.schemas.filters import FilterLevel, FilterSnapshot
from discom_dashboard.services.filters import FilterCascadeController

TODAY = date(2025, 3, 15)


class DummyClient:
    """Option lists keyed by kind; records the controller state at call time."""

    def __init__(self, options=None):
        self.options = options or {
            "discoms": ["DISCOM-A", "DISCOM-B"],
            "regions": ["North"],
            "feeders": ["F-1"],
            "dtus": ["D-1"],
        }
        self.controller = None
        self.calls = []
        self.seen = []

    async def get_filter_options(self, kind, params=None):
        self.calls.append((kind, dict(params or {})))
        if self.controller is not None:
            self.seen.append((kind, self.controller.draft, self.controller.options))
        return list(self.options[kind])


def _controller(client=None):
    client = client or DummyClient()
    controller = FilterCascadeController(client, today=lambda: TODAY)
    client.controller = controller
    return controller, client


async def _select_full_chain(controller):
    await controller.set_field(FilterLevel.DISCOM, "DISCOM-A")
    await controller.set_field(FilterLevel.REGION, "North")
    await controller.set_field(FilterLevel.FEEDER, "F-1")
    await controller.set_field(FilterLevel.DTU, "D-1")


@pytest.mark.anyio
async def test_discom_change_resets_descendants_before_fetch():
    controller, client = _controller()
    await _select_full_chain(controller)
    client.seen.clear()

    await controller.set_field(FilterLevel.DISCOM, "DISCOM-B")

    kind, draft, options = client.seen[0]
    assert kind == "regions"
    assert (draft.region, draft.feeder, draft.dtu) == (None, None, None)
    assert (options.regions, options.feeders, options.dtus) == ([], [], [])
    assert client.calls[-1] == ("regions", {"discom_name": "DISCOM-B"})
    assert controller.options.regions == ["North"]


@pytest.mark.anyio
async def test_child_fetch_carries_full_parent_chain():
    controller, client = _controller()
    await _select_full_chain(controller)

    assert client.calls[-1] == (
        "dtus",
        {"discom_name": "DISCOM-A", "region_name": "North", "feeder_meter_no": "F-1"},
    )


@pytest.mark.anyio
async def test_child_without_parent_is_rejected():
    controller, client = _controller()
    with pytest.raises(HierarchyViolation):
        await controller.set_field(FilterLevel.REGION, "North")
    assert controller.draft.region is None
    assert client.calls == []


@pytest.mark.anyio
async def test_clearing_a_level_resets_descendants_without_fetch():
    controller, client = _controller()
    await _select_full_chain(controller)
    fetches = len(client.calls)

    await controller.set_field(FilterLevel.REGION, "")

    assert controller.draft.discom == "DISCOM-A"
    assert (controller.draft.region, controller.draft.feeder, controller.draft.dtu) == (None, None, None)
    assert controller.options.feeders == []
    assert len(client.calls) == fetches


@pytest.mark.anyio
async def test_same_value_is_a_no_op():
    controller, client = _controller()
    await controller.set_field(FilterLevel.DISCOM, "DISCOM-A")
    await controller.set_field(FilterLevel.REGION, "North")

    await controller.set_field(FilterLevel.DISCOM, "DISCOM-A")

    assert controller.draft.region == "North"
    assert [kind for kind, _ in client.calls] == ["regions", "feeders"]


@pytest.mark.anyio
async def test_commit_without_dates_never_broadcasts():
    controller, _ = _controller()
    received = []
    controller.subscribe(received.append)

    await controller.set_field(FilterLevel.START_DATE, "2025-01-01")

    assert controller.commit() is None
    assert received == []
    assert controller.committed is None


@pytest.mark.anyio
async def test_commit_broadcasts_one_snapshot_equal_to_draft():
    controller, _ = _controller()
    received = []
    controller.subscribe(received.append)

    await controller.set_field(FilterLevel.DISCOM, "DISCOM-A")
    await controller.set_field(FilterLevel.START_DATE, "2025-01-01")
    await controller.set_field(FilterLevel.END_DATE, "2025-01-31")
    assert received == []

    snapshot = controller.commit()

    assert received == [snapshot]
    assert snapshot.model_dump() == controller.draft.model_dump()
    assert snapshot.to_query_params() == {
        "discom_name": "DISCOM-A",
        "start_date": "2025-01-01",
        "end_date": "2025-01-31",
    }


@pytest.mark.anyio
async def test_inverted_date_range_is_not_committed():
    controller, _ = _controller()
    received = []
    controller.subscribe(received.append)
    await controller.set_field(FilterLevel.START_DATE, "2025-02-01")
    await controller.set_field(FilterLevel.END_DATE, "2025-01-01")

    assert controller.commit() is None
    assert received == []


@pytest.mark.anyio
async def test_malformed_date_raises_value_error():
    controller, _ = _controller()
    with pytest.raises(ValueError):
        await controller.set_field(FilterLevel.START_DATE, "15/01/2025")


@pytest.mark.anyio
async def test_mount_commits_defaults_then_loads_discoms():
    controller, client = _controller()
    received = []
    controller.subscribe(received.append)

    snapshot = await controller.mount()

    assert snapshot.start_date == date(2025, 1, 1)
    assert snapshot.end_date == TODAY
    assert received == [snapshot]
    assert controller.options.discoms == ["DISCOM-A", "DISCOM-B"]
    assert [kind for kind, _ in client.calls] == ["discoms"]


@pytest.mark.anyio
async def test_mount_restores_snapshot_and_its_option_lists():
    controller, client = _controller()
    restored = FilterSnapshot(
        discom="DISCOM-A", region="North", start_date=date(2025, 2, 1), end_date=date(2025, 2, 28)
    )

    snapshot = await controller.mount(restored)

    assert snapshot == restored
    assert [kind for kind, _ in client.calls] == ["discoms", "regions", "feeders"]
    assert controller.options.feeders == ["F-1"]
    assert controller.options.dtus == []


@pytest.mark.anyio
async def test_stale_option_response_is_discarded():
    started = asyncio.Event()
    release = asyncio.Event()

    class GatedClient(DummyClient):
        async def get_filter_options(self, kind, params=None):
            self.calls.append((kind, dict(params or {})))
            if params and params.get("discom_name") == "DISCOM-A":
                started.set()
                await release.wait()
                return ["A-region"]
            return ["B-region"]

    controller, _ = _controller(GatedClient())
    first = asyncio.create_task(controller.set_field(FilterLevel.DISCOM, "DISCOM-A"))
    await started.wait()

    await controller.set_field(FilterLevel.DISCOM, "DISCOM-B")
    release.set()
    await first

    assert controller.draft.discom == "DISCOM-B"
    assert controller.options.regions == ["B-region"]
    assert controller.loading["regions"] is False


@pytest.mark.anyio
async def test_earlier_fetch_for_a_reselected_parent_is_discarded():
    started = [asyncio.Event(), asyncio.Event()]
    gates = [asyncio.Event(), asyncio.Event()]

    class GatedClient(DummyClient):
        async def get_filter_options(self, kind, params=None):
            self.calls.append((kind, dict(params or {})))
            if params and params.get("discom_name") == "DISCOM-A":
                attempt = sum(1 for _, p in self.calls if p.get("discom_name") == "DISCOM-A") - 1
                started[attempt].set()
                await gates[attempt].wait()
                return [f"A-region-{attempt + 1}"]
            return ["B-region"]

    controller, _ = _controller(GatedClient())
    first = asyncio.create_task(controller.set_field(FilterLevel.DISCOM, "DISCOM-A"))
    await started[0].wait()
    await controller.set_field(FilterLevel.DISCOM, "DISCOM-B")
    second = asyncio.create_task(controller.set_field(FilterLevel.DISCOM, "DISCOM-A"))
    await started[1].wait()

    gates[0].set()
    await first

    assert controller.options.regions == []
    assert controller.loading["regions"] is True

    gates[1].set()
    await second

    assert controller.options.regions == ["A-region-2"]
    assert controller.loading["regions"] is False

@pytest.mark.anyio
async def test_option_fetch_failure_leaves_list_empty():
    class FailingClient(DummyClient):
        async def get_filter_options(self, kind, params=None):
            raise NetworkFailure("Request failed with status code 500", status_code=500)

    controller, _ = _controller(FailingClient())
    await controller.set_field(FilterLevel.DISCOM, "DISCOM-A")

    assert controller.options.regions == []
    assert controller.loading["regions"] is False
