"""
Dashboard Orchestrator

Progressive loading for one dashboard view:
1. Persistent cache first: month index plus the latest two months
2. On a miss, a quick top-N request renders the first screen
3. A full request for the same months then replaces the quick slices,
   is saved month by month, and re-renders
4. Idol metadata is prefetched in the background for the visible subjects
   and, after a full load, in bulk for both genders

Loads are guarded by in-flight flags (a second trigger is a no-op, not
queued). Every load remembers the selection generation it started under and
drops its result if the user has moved to another gender or platform since.
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, Set, Tuple

from idolboard.cache.config import CacheConfig, get_cache_config
from idolboard.cache.entry import metadata_key
from idolboard.client.edge_client import EdgeAPIError, EdgeClient
from idolboard.client.ranking import RankingView, base_month_for, build_ranking
from idolboard.client.store import ClientPersistentCache
from idolboard.models import MetadataRecord, MetricRecord
from idolboard.sources.base import opposite_gender


logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class LoadState(Enum):
    """Load progress for the current (gender, platform) selection."""
    IDLE = "idle"
    QUICK_LOADING = "quick_loading"
    QUICK_LOADED = "quick_loaded"
    FULL_LOADING = "full_loading"
    FULL_LOADED = "full_loaded"


class Renderer(Protocol):
    """What the orchestrator needs from the view layer."""

    def render(self, view: RankingView) -> None: ...

    def show_loading(self, loading: bool) -> None: ...

    def show_error(self, message: str) -> None: ...


class WorkingSet:
    """
    Records loaded for the current selection, one slice per month.

    A slice is only ever replaced as a whole.
    """

    def __init__(self):
        self._months: Dict[str, List[MetricRecord]] = {}

    def replace_month(self, month: str, records: List[MetricRecord]):
        self._months[month] = list(records)

    def has_month(self, month: Optional[str]) -> bool:
        return bool(month and self._months.get(month))

    def month(self, month: str) -> List[MetricRecord]:
        return list(self._months.get(month, []))

    def months(self) -> List[str]:
        return list(self._months.keys())

    def records(self) -> List[MetricRecord]:
        return [record for records in self._months.values() for record in records]

    def clear(self):
        self._months.clear()

    def __len__(self) -> int:
        return sum(len(records) for records in self._months.values())


def bucket_by_month(records: List[MetricRecord]) -> Dict[str, List[MetricRecord]]:
    """Group records by month, months in first-seen order."""
    buckets: Dict[str, List[MetricRecord]] = {}
    for record in records:
        buckets.setdefault(record.date, []).append(record)
    return buckets


class DashboardOrchestrator:
    """
    Owns the working set, month index, selection and load state of one view.

    Usage:
        orchestrator = DashboardOrchestrator(EdgeClient(), store, renderer)
        await orchestrator.start("남자", "웨이보")
        await orchestrator.handle_month_change("2025-09")
    """

    def __init__(
        self,
        client: EdgeClient,
        store: ClientPersistentCache,
        renderer: Renderer,
        config: Optional[CacheConfig] = None,
        sleep: Optional[Sleep] = None,
    ):
        self.client = client
        self.store = store
        self.renderer = renderer
        self.config = config or get_cache_config()
        self.sleep = sleep or asyncio.sleep

        # Selection
        self.gender: Optional[str] = None
        self.platform: Optional[str] = None
        self.month: Optional[str] = None
        self.search: str = ""

        # Data
        self.months: List[str] = []
        self.working_set = WorkingSet()
        self.state = LoadState.IDLE
        self.generation = 0

        # Metadata
        self.metadata_cache: Dict[str, MetadataRecord] = {}
        self.metadata_loaded_for: Set[str] = set()

        # In-flight guards
        self._full_loading_generation: Optional[int] = None
        self._full_loading_months: Set[Tuple[int, str]] = set()
        self._prefetching_metadata = False
        self._prefetching_top = False
        self._background: Set[asyncio.Task] = set()

    # =========================================================================
    # Selection
    # =========================================================================

    async def start(self, gender: str, platform: str):
        """First load of the view; also schedules the delayed cache sweep."""
        self.store.schedule_cleanup()
        await self.select(gender, platform)

    def _is_stale(self, generation: int) -> bool:
        return generation != self.generation

    async def select(self, gender: str, platform: str):
        """
        Load a (gender, platform) selection.

        Persistent cache hit: render at once, refresh with a full load after a
        short delay. Miss: quick top-N request, render, then full load.
        """
        if (gender, platform) != (self.gender, self.platform):
            if self.gender is not None:
                logger.info("Filter changed, clearing working set")
            self.working_set.clear()
            self.months = []
            self.month = None
            self.state = LoadState.IDLE

        self.gender = gender
        self.platform = platform
        self.generation += 1
        generation = self.generation

        self.state = LoadState.QUICK_LOADING
        self.renderer.show_loading(True)

        try:
            if await self._load_from_store(generation):
                self.renderer.show_loading(False)
                self._start_top_prefetch()
                await self.sleep(self.config.full_load_delay_seconds)
                await self.load_full()
                return

            if self._is_stale(generation):
                return

            logger.info(f"Persistent cache miss for {gender}/{platform}, quick load")
            result = await self.client.fetch_metrics(
                gender,
                platform,
                init=True,
                limit=self.config.quick_load_limit,
                sort_by_count=True,
            )
            if self._is_stale(generation):
                logger.info(f"Discarding quick load for {gender}/{platform}: selection changed")
                return

            self.months = result.all_months
            if not await self.store.save_month_index(gender, platform, self.months):
                logger.warning(f"Month index not saved for {gender}/{platform}")

            for month, records in bucket_by_month(result.records).items():
                self.working_set.replace_month(month, records)
            self.month = self.months[-1] if self.months else None

            self.state = LoadState.QUICK_LOADED
            self._render()
            logger.info(
                f"Quick view loaded: {len(result.records)} records "
                f"({result.returned}/{result.total})"
            )
            self.renderer.show_loading(False)
            self._start_top_prefetch()

        except EdgeAPIError as e:
            logger.error(f"Quick load failed for {gender}/{platform}: {e}")
            self.state = LoadState.IDLE
            self.renderer.show_error(f"Failed to load data: {e}")
            return
        finally:
            self.renderer.show_loading(False)

        await self.load_full()

    async def _load_from_store(self, generation: int) -> bool:
        """Render the latest two months from the persistent cache. True on a hit."""
        months = await self.store.get_month_index(self.gender, self.platform)
        if not months:
            return False

        latest = months[-1]
        previous = months[-2] if len(months) > 1 else None
        latest_records = await self.store.get_month_data(self.gender, self.platform, latest)
        previous_records = None
        if previous:
            previous_records = await self.store.get_month_data(self.gender, self.platform, previous)

        if self._is_stale(generation) or not latest_records:
            return False

        logger.info(f"Persistent cache hit for {self.gender}/{self.platform}")
        self.months = months
        if previous_records:
            self.working_set.replace_month(previous, previous_records)
        self.working_set.replace_month(latest, latest_records)
        self.month = latest
        self.state = LoadState.QUICK_LOADED
        self._render()
        return True

    # =========================================================================
    # Full loads
    # =========================================================================

    async def load_full(self):
        """
        Full data for the latest two months of the current selection.

        A call while a full load for the same selection is in flight does
        nothing.
        """
        generation = self.generation
        if self._full_loading_generation == generation:
            logger.info("Full data loading already in progress")
            return

        self._full_loading_generation = generation
        gender, platform = self.gender, self.platform
        self.state = LoadState.FULL_LOADING
        logger.info(f"Loading full data for {gender}/{platform}")

        try:
            result = await self.client.fetch_metrics(gender, platform, init=True)
            if self._is_stale(generation):
                logger.info(f"Discarding full load for {gender}/{platform}: selection changed")
                return

            if result.all_months:
                self.months = result.all_months
            buckets = bucket_by_month(result.records)
            for month, records in buckets.items():
                self.working_set.replace_month(month, records)
            await self._persist_buckets(gender, platform, buckets)

            self.state = LoadState.FULL_LOADED
            logger.info(f"Full data loaded: {len(result.records)} records")
            self._render()
        except EdgeAPIError as e:
            logger.warning(f"Background loading failed for {gender}/{platform}: {e}")
            self.renderer.show_error(f"Background refresh failed: {e}")
            return
        finally:
            if self._full_loading_generation == generation:
                self._full_loading_generation = None

        await self.prefetch_all_metadata()

    async def _persist_buckets(
        self,
        gender: str,
        platform: str,
        buckets: Dict[str, List[MetricRecord]],
    ):
        # One write per month; a failed month does not stop the others
        for month, records in buckets.items():
            if not await self.store.save_month_data(gender, platform, month, records):
                logger.warning(f"Month data not saved ({month})")

    # =========================================================================
    # Month switch
    # =========================================================================

    async def handle_month_change(self, month: str):
        """
        Show another month of the current selection.

        Renders straight from the working set when the month and its base month
        are both loaded; otherwise loads that month (quick, then full).
        """
        self.month = month
        base = base_month_for(self.months, month)

        if self.working_set.has_month(month) and self.working_set.has_month(base):
            logger.debug(f"Using loaded data for {month}")
            self._render()
            self._start_top_prefetch()
            return

        await self._load_month(month)

    async def _load_month(self, month: str):
        generation = self.generation
        gender, platform = self.gender, self.platform
        self.state = LoadState.QUICK_LOADING
        self.renderer.show_loading(True)

        try:
            result = await self.client.fetch_metrics(
                gender,
                platform,
                month=month,
                limit=self.config.quick_load_limit,
                sort_by_count=True,
            )
            if self._is_stale(generation):
                return

            # The quick slice replaces the requested month but never a loaded base month
            for bucket_month, records in bucket_by_month(result.records).items():
                if bucket_month == month or not self.working_set.has_month(bucket_month):
                    self.working_set.replace_month(bucket_month, records)

            self.state = LoadState.QUICK_LOADED
            if self.month == month:
                self._render()
            self.renderer.show_loading(False)
            self._start_top_prefetch()

        except EdgeAPIError as e:
            logger.error(f"Loading {month} failed: {e}")
            self.renderer.show_error(f"Failed to load data: {e}")
            return
        finally:
            self.renderer.show_loading(False)

        await self._load_full_month(month, generation)

    async def _load_full_month(self, month: str, generation: int):
        loading_key = (generation, month)
        if loading_key in self._full_loading_months:
            logger.info(f"Full data loading for {month} already in progress")
            return

        self._full_loading_months.add(loading_key)
        gender, platform = self.gender, self.platform
        self.state = LoadState.FULL_LOADING

        try:
            result = await self.client.fetch_metrics(gender, platform, month=month)
            if self._is_stale(generation):
                return

            buckets = bucket_by_month(result.records)
            for bucket_month, records in buckets.items():
                self.working_set.replace_month(bucket_month, records)
            await self._persist_buckets(gender, platform, buckets)
        except EdgeAPIError as e:
            logger.warning(f"Background loading failed for {month}: {e}")
            self.renderer.show_error(f"Background refresh failed: {e}")
            return
        finally:
            self._full_loading_months.discard(loading_key)

        self.state = LoadState.FULL_LOADED
        logger.info(f"Full data loaded for {month}: {len(result.records)} records")
        if self.month == month:
            self._render()

        await self.prefetch_all_metadata()

    # =========================================================================
    # Metadata
    # =========================================================================

    async def get_metadata(self, name: str, gender: Optional[str] = None) -> MetadataRecord:
        """
        Metadata for one subject: memory, then persistent cache, then network.

        Raises:
            EdgeAPIError: if the subject is not cached and the request fails
        """
        gender = gender or self.gender
        key = metadata_key(name, gender)

        record = self.metadata_cache.get(key)
        if record is not None:
            return record

        record = await self.store.get_metadata(name, gender)
        if record is None:
            record = await self.client.fetch_metadata(name, gender)
            await self.store.save_metadata(name, gender, record)

        self.metadata_cache[key] = record
        return record

    async def prefetch_top_metadata(self, names: Optional[List[str]] = None):
        """Fetch metadata for the visible top subjects in parallel."""
        if self._prefetching_top:
            logger.debug("Top metadata prefetch already in progress")
            return

        if names is None:
            names = self.current_view().names
        names = names[:self.config.top_metadata_count]
        if not names:
            return

        gender = self.gender
        self._prefetching_top = True
        try:
            async def fetch_one(name: str):
                try:
                    await self.get_metadata(name, gender)
                except EdgeAPIError as e:
                    logger.warning(f"Failed to prefetch {name}: {e}")

            await asyncio.gather(*(fetch_one(name) for name in names))
            logger.info(f"Top metadata prefetch complete ({len(names)} idols)")
        finally:
            self._prefetching_top = False

    def _start_top_prefetch(self) -> Optional[asyncio.Task]:
        """Top-N prefetch in the background; loads never wait for it."""
        if self._prefetching_top:
            return None

        task = asyncio.create_task(self.prefetch_top_metadata())
        self._background.add(task)
        task.add_done_callback(self._background_done)
        return task

    def _background_done(self, task: asyncio.Task):
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Background metadata prefetch failed: {error}")

    async def wait_background(self):
        """Wait for background prefetches still running."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def prefetch_all_metadata(self):
        """Bulk metadata for the current gender, then (after a pause) the other."""
        if self._prefetching_metadata:
            logger.debug("Metadata prefetching already in progress")
            return

        self._prefetching_metadata = True
        try:
            current = self.gender
            other = opposite_gender(current)

            if current not in self.metadata_loaded_for:
                await self._fetch_bulk_metadata(current)

            await self.sleep(self.config.metadata_spacing_seconds)

            if other not in self.metadata_loaded_for:
                await self._fetch_bulk_metadata(other)
        finally:
            self._prefetching_metadata = False

    async def _fetch_bulk_metadata(self, gender: str):
        try:
            records = await self.client.fetch_all_metadata(gender)
        except EdgeAPIError as e:
            logger.warning(f"Metadata prefetch failed for {gender}: {e}")
            return

        for record in records:
            self.metadata_cache[metadata_key(record.name, gender)] = record
        self.metadata_loaded_for.add(gender)
        logger.info(f"Metadata cached: {len(records)} items for {gender}")

    # =========================================================================
    # Rendering
    # =========================================================================

    def current_view(self) -> RankingView:
        if not self.month:
            return RankingView(target_month="", base_month="")
        return build_ranking(self.working_set.records(), self.months, self.month, self.search)

    def set_search(self, term: str):
        self.search = term
        if self.month:
            self._render()

    def _render(self):
        self.renderer.render(self.current_view())
