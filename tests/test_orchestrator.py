"""
Tests for the dashboard orchestrator.

These tests verify:
- Cold start: quick top-N load, then full load, persisted per month
- Warm start from the persistent cache with no quick request
- A second full-load trigger while one is in flight is a no-op
- Results for an abandoned selection are discarded
- Month switches render from memory or load that month
- Metadata lookups and bulk prefetch for both genders
- Load failures reach the renderer
"""

import asyncio
from typing import List

import pytest

from idolboard.client import (
    ClientPersistentCache,
    DashboardOrchestrator,
    LoadState,
    RankingView,
    WorkingSet,
)
from idolboard.models import MetricRecord


class RecordingRenderer:
    """Keeps every call the orchestrator makes."""

    def __init__(self):
        self.views: List[RankingView] = []
        self.loading: List[bool] = []
        self.errors: List[str] = []

    def render(self, view: RankingView) -> None:
        self.views.append(view)

    def show_loading(self, loading: bool) -> None:
        self.loading.append(loading)

    def show_error(self, message: str) -> None:
        self.errors.append(message)


async def no_sleep(seconds: float) -> None:
    return None


@pytest.fixture
def store(clock):
    store = ClientPersistentCache(":memory:", clock=clock)
    yield store
    store.close()


@pytest.fixture
def renderer():
    return RecordingRenderer()


@pytest.fixture
async def orchestrator(edge_client, store, renderer, cache_config):
    orchestrator = DashboardOrchestrator(edge_client, store, renderer, config=cache_config, sleep=no_sleep)
    yield orchestrator
    await orchestrator.wait_background()


def record(name, month, count):
    return MetricRecord(name=name, group="g", date=month, count=count)


# =============================================================================
# WORKING SET TESTS
# =============================================================================

class TestWorkingSet:
    """Test per-month slices."""

    def test_replace_month_is_wholesale(self):
        working = WorkingSet()
        working.replace_month("2025-03", [record("a", "2025-03", 1), record("b", "2025-03", 2)])
        working.replace_month("2025-03", [record("c", "2025-03", 3)])

        assert [r.name for r in working.records()] == ["c"]
        assert len(working) == 1

    def test_empty_slice_is_not_loaded(self):
        working = WorkingSet()
        working.replace_month("2025-03", [])
        assert not working.has_month("2025-03")
        assert not working.has_month(None)


# =============================================================================
# LOADING TESTS
# =============================================================================

@pytest.mark.asyncio
class TestProgressiveLoading:
    """Test the quick/full load sequence."""

    async def test_cold_start(self, orchestrator, edge_transport, renderer, store):
        await orchestrator.select("남자", "웨이보")

        metric_requests = edge_transport.metric_requests()
        assert metric_requests[0]["limit"] == "10"
        assert metric_requests[0]["sortByCount"] == "true"
        assert metric_requests[1] == {"gender": "남자", "sns": "웨이보", "init": "true"}

        assert orchestrator.state == LoadState.FULL_LOADED
        assert orchestrator.month == "2025-03"
        assert len(renderer.views) == 2
        assert renderer.views[-1].names == ["뷔", "지민", "강다니엘"]
        assert renderer.loading[0] is True
        assert renderer.loading[-1] is False

        assert await store.get_month_index("남자", "웨이보") == ["2025-01", "2025-02", "2025-03"]
        assert len(await store.get_month_data("남자", "웨이보", "2025-03")) == 3
        assert len(await store.get_month_data("남자", "웨이보", "2025-02")) == 2

    async def test_quick_view_is_limited(self, orchestrator, edge_transport, renderer, cache_config):
        cache_config.quick_load_limit = 1
        await orchestrator.select("남자", "웨이보")

        assert renderer.views[0].names == ["뷔", "강다니엘"]
        assert len(renderer.views[-1].items) == 3

    async def test_warm_start_skips_quick_load(self, orchestrator, edge_transport, renderer, store):
        await store.save_month_index("남자", "웨이보", ["2025-02", "2025-03"])
        await store.save_month_data("남자", "웨이보", "2025-02", [record("뷔", "2025-02", 10)])
        await store.save_month_data("남자", "웨이보", "2025-03", [record("뷔", "2025-03", 20)])

        await orchestrator.select("남자", "웨이보")

        first = renderer.views[0]
        assert first.names == ["뷔"]
        assert first.items[0].growth.display == "100.00"
        assert len(edge_transport.metric_requests()) == 1
        assert len(edge_transport.full_requests()) == 1
        assert orchestrator.state == LoadState.FULL_LOADED
        assert orchestrator.months == ["2025-01", "2025-02", "2025-03"]

    async def test_full_load_does_not_wait_for_top_metadata(self, orchestrator, edge_transport, renderer):
        gate = edge_transport.hold(action="metadata")
        await asyncio.wait_for(orchestrator.select("남자", "웨이보"), timeout=5)

        assert len(edge_transport.full_requests()) == 1
        assert orchestrator.state == LoadState.FULL_LOADED
        assert len(renderer.views) == 2
        await asyncio.wait_for(edge_transport.gate_reached.wait(), timeout=5)

        gate.set()
        await orchestrator.wait_background()
        lookups = [p for p in edge_transport.requests if p.get("action") == "metadata"]
        assert lookups

    async def test_bulk_metadata_for_both_genders(self, orchestrator, edge_transport):
        await orchestrator.select("남자", "웨이보")

        bulk = [p["gender"] for p in edge_transport.requests if p.get("action") == "allMetadata"]
        assert bulk == ["남자", "여자"]
        assert orchestrator.metadata_loaded_for == {"남자", "여자"}
        assert "장원영_여자" in orchestrator.metadata_cache

    async def test_bulk_metadata_fetched_once_per_gender(self, orchestrator, edge_transport):
        await orchestrator.select("남자", "웨이보")
        await orchestrator.select("여자", "웨이보")

        bulk = [p for p in edge_transport.requests if p.get("action") == "allMetadata"]
        assert len(bulk) == 2

    async def test_quick_load_failure_reaches_renderer(self, orchestrator, renderer, edge_service):
        edge_service.cache.source.metric_rows = None
        await orchestrator.select("남자", "웨이보")

        assert orchestrator.state == LoadState.IDLE
        assert len(renderer.errors) == 1
        assert "sns_data" in renderer.errors[0]
        assert renderer.loading[-1] is False


@pytest.mark.asyncio
class TestLoadGuards:
    """Test in-flight guards and stale result handling."""

    async def test_concurrent_full_loads_fetch_once(self, orchestrator, edge_transport):
        orchestrator.gender, orchestrator.platform = "남자", "웨이보"
        gate = edge_transport.hold(init="true", limit=None)

        async def release():
            await edge_transport.gate_reached.wait()
            await asyncio.sleep(0)
            gate.set()

        await asyncio.gather(orchestrator.load_full(), orchestrator.load_full(), release())

        assert len(edge_transport.full_requests()) == 1
        assert orchestrator.state == LoadState.FULL_LOADED

    async def test_full_load_can_run_again_after_finishing(self, orchestrator, edge_transport):
        orchestrator.gender, orchestrator.platform = "남자", "웨이보"
        await orchestrator.load_full()
        await orchestrator.load_full()
        assert len(edge_transport.full_requests()) == 2

    async def test_abandoned_selection_is_discarded(self, orchestrator, edge_transport, renderer):
        gate = edge_transport.hold(gender="남자", init="true", limit=None)
        first = asyncio.create_task(orchestrator.select("남자", "웨이보"))
        await edge_transport.gate_reached.wait()

        await orchestrator.select("여자", "웨이보")
        rendered_before_release = len(renderer.views)
        gate.set()
        await first

        assert orchestrator.gender == "여자"
        assert {r.name for r in orchestrator.working_set.records()} == {"장원영"}
        assert len(renderer.views) == rendered_before_release
        assert renderer.views[-1].names == ["장원영"]


@pytest.mark.asyncio
class TestMonthChange:
    """Test switching the displayed month."""

    async def test_loaded_months_render_without_requests(self, orchestrator, edge_transport, renderer):
        await orchestrator.select("남자", "웨이보")
        await orchestrator.handle_month_change("2025-02")
        requests_after_load = len(edge_transport.metric_requests())
        views_after_load = len(renderer.views)

        await orchestrator.handle_month_change("2025-03")

        assert len(edge_transport.metric_requests()) == requests_after_load
        assert len(renderer.views) == views_after_load + 1
        assert renderer.views[-1].target_month == "2025-03"

    async def test_missing_base_month_is_loaded(self, orchestrator, edge_transport, renderer, store):
        await orchestrator.select("남자", "웨이보")
        await orchestrator.handle_month_change("2025-02")

        month_requests = [p for p in edge_transport.metric_requests() if p.get("month") == "2025-02"]
        assert month_requests[0]["limit"] == "10"
        assert "limit" not in month_requests[1]

        view = renderer.views[-1]
        assert (view.target_month, view.base_month) == ("2025-02", "2025-01")
        assert view.items[0].name == "뷔"
        assert view.items[1].growth.display == "25.00"
        assert await store.get_month_data("남자", "웨이보", "2025-01") is not None

    async def test_overlapping_switches_fetch_month_once(self, orchestrator, edge_transport):
        await orchestrator.select("남자", "웨이보")
        gate = edge_transport.hold(month="2025-02", limit=None)

        first = asyncio.create_task(orchestrator.handle_month_change("2025-02"))
        second = asyncio.create_task(orchestrator.handle_month_change("2025-02"))
        await edge_transport.gate_reached.wait()

        done, pending = await asyncio.wait({first, second}, timeout=1)
        assert len(done) == 1
        assert len(pending) == 1

        gate.set()
        await asyncio.gather(first, second)

        month_full = [p for p in edge_transport.full_requests() if p.get("month") == "2025-02"]
        assert len(month_full) == 1
        assert orchestrator.working_set.has_month("2025-01")

    async def test_first_month_is_its_own_base(self, orchestrator, edge_transport, renderer):
        await orchestrator.select("남자", "웨이보")
        await orchestrator.handle_month_change("2025-01")

        view = renderer.views[-1]
        assert view.base_month == "2025-01"
        assert not view.items[0].growth.defined


@pytest.mark.asyncio
class TestMetadata:
    """Test per-subject metadata lookups."""

    async def test_memory_then_store_then_network(self, orchestrator, edge_transport, store):
        orchestrator.gender = "남자"

        profile = await orchestrator.get_metadata("강다니엘")
        assert profile.to_payload()["agency"] == "KONNECT"
        assert (await store.get_metadata("강다니엘", "남자")) is not None

        requests = len(edge_transport.requests)
        await orchestrator.get_metadata("강다니엘")
        assert len(edge_transport.requests) == requests

        orchestrator.metadata_cache.clear()
        await orchestrator.get_metadata("강다니엘")
        assert len(edge_transport.requests) == requests

    async def test_top_prefetch_tolerates_missing_subjects(self, orchestrator, edge_transport):
        orchestrator.gender = "남자"
        await orchestrator.prefetch_top_metadata(["강다니엘", "없는사람"])

        assert "강다니엘_남자" in orchestrator.metadata_cache
        assert "없는사람_남자" not in orchestrator.metadata_cache

    async def test_top_prefetch_is_bounded(self, orchestrator, edge_transport, cache_config):
        cache_config.top_metadata_count = 1
        orchestrator.gender = "남자"
        await orchestrator.prefetch_top_metadata(["강다니엘", "뷔"])

        lookups = [p for p in edge_transport.requests if p.get("action") == "metadata"]
        assert [p["name"] for p in lookups] == ["강다니엘"]

    async def test_search_rerenders(self, orchestrator, renderer):
        await orchestrator.select("남자", "웨이보")
        orchestrator.set_search("지민")
        assert renderer.views[-1].names == ["지민"]
