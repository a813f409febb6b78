"""
Server Cache

Shared key-value cache in front of the origin spreadsheet:
- Month index per (gender, platform), 6 hour TTL
- Month data per (gender, platform, month), 24 hour TTL
- Bulk metadata per gender, 6 hour TTL

Read-through lookups scan the origin on a miss and write the result back.
Writes are best effort: a payload over the per-entry ceiling or a backend
failure is logged and counted, and the caller still gets the value.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from idolboard.cache.backends import EntryStore, MemoryEntryStore
from idolboard.cache.config import CacheConfig, CacheTTL, get_cache_config
from idolboard.cache.entry import (
    TTL,
    Clock,
    TTLCache,
    all_metadata_key,
    month_data_key,
    month_index_key,
    payload_size,
)
from idolboard.models import (
    MetadataRecord,
    MetricRecord,
    RecordValidationError,
    parse_metadata_records,
    parse_metric_records,
    parse_month_index,
)
from idolboard.sources.base import OriginDataSource
from idolboard.sources.tables import (
    extract_month_index,
    extract_month_records,
    metadata_for_gender,
)


logger = logging.getLogger(__name__)


@dataclass
class ServerCacheStats:
    """Read/write counters for the server tier."""
    hits: int = 0
    misses: int = 0
    writes: int = 0
    skipped_oversize: int = 0
    write_errors: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0


class ServerCache:
    """
    Month index / month data cache over an EntryStore.

    Usage:
        cache = ServerCache(source, RedisEntryStore())
        months = await cache.month_index("남자", "웨이보")
        records = await cache.month_data("남자", "웨이보", months[-1])
    """

    def __init__(
        self,
        source: OriginDataSource,
        store: Optional[EntryStore] = None,
        config: Optional[CacheConfig] = None,
        clock: Optional[Clock] = None,
    ):
        self.source = source
        self.store = store or MemoryEntryStore()
        self.config = config or get_cache_config()
        self.cache = TTLCache(self.store, clock=clock, name="server")
        self._stats = ServerCacheStats()

    # =========================================================================
    # Plain lookups
    # =========================================================================

    async def get_month_index(self, gender: str, platform: str) -> Optional[List[str]]:
        """Cached month index, or None on miss (including a corrupt entry)."""
        key = month_index_key(gender, platform)
        payload = await self.cache.get(key)
        if payload is None:
            return None
        try:
            return parse_month_index(payload)
        except RecordValidationError as e:
            logger.warning(f"Discarding invalid cache entry {key}: {e}")
            await self.cache.delete(key)
            return None

    async def get_month_data(
        self,
        gender: str,
        platform: str,
        month: str,
    ) -> Optional[List[MetricRecord]]:
        """Cached records for one month, or None on miss."""
        key = month_data_key(gender, platform, month)
        payload = await self.cache.get(key)
        if payload is None:
            return None
        try:
            return parse_metric_records(payload)
        except RecordValidationError as e:
            logger.warning(f"Discarding invalid cache entry {key}: {e}")
            await self.cache.delete(key)
            return None

    async def put(self, key: str, value: Any, ttl: TTL) -> bool:
        """
        Best-effort write.

        Returns:
            True if the entry was stored. False if the payload reached the
            per-entry ceiling, could not be serialized, or the store failed.
        """
        try:
            size = payload_size(value)
        except (TypeError, ValueError) as e:
            self._stats.write_errors += 1
            logger.error(f"Cache write failed: {key} - {e}")
            return False

        if size >= self.config.max_entry_bytes:
            self._stats.skipped_oversize += 1
            logger.warning(
                f"Cache write skipped: {key} ({size / 1024:.1f}KB >= "
                f"{self.config.max_entry_bytes / 1024:.1f}KB)"
            )
            return False

        try:
            stored = await self.cache.put(key, value, ttl)
        except Exception as e:
            self._stats.write_errors += 1
            logger.error(f"Cache write failed: {key} - {e}")
            return False

        if stored:
            self._stats.writes += 1
            logger.debug(f"Cached: {key} ({size / 1024:.1f}KB)")
        else:
            self._stats.write_errors += 1
            logger.warning(f"Cache write failed: {key}")
        return stored

    # =========================================================================
    # Read-through
    # =========================================================================

    async def month_index(self, gender: str, platform: str) -> List[str]:
        """
        Month index for (gender, platform), scanning the origin on a miss.

        Raises:
            SourceUnavailableError: if the origin cannot be read
        """
        key = month_index_key(gender, platform)
        months = await self.get_month_index(gender, platform)
        if months is not None:
            self._stats.hits += 1
            logger.info(f"Meta HIT: {key}")
            return months

        self._stats.misses += 1
        logger.info(f"Meta MISS: {key}")
        rows = await self.source.read_metric_rows()
        months = extract_month_index(rows, gender, platform)
        await self.put(key, months, CacheTTL.MONTH_INDEX)
        return months

    async def month_data(self, gender: str, platform: str, month: str) -> List[MetricRecord]:
        """
        Records for one month, scanning the origin on a miss.

        An oversize month is still returned; it just is not persisted.
        """
        key = month_data_key(gender, platform, month)
        records = await self.get_month_data(gender, platform, month)
        if records is not None:
            self._stats.hits += 1
            logger.info(f"Month HIT: {key}")
            return records

        self._stats.misses += 1
        logger.info(f"Month MISS: {key}")
        rows = await self.source.read_metric_rows()
        records = extract_month_records(rows, gender, platform, month)
        await self.put(key, [r.to_payload() for r in records], CacheTTL.MONTH_DATA)
        return records

    async def all_metadata(self, gender: str) -> List[MetadataRecord]:
        """Every metadata record for a gender, cached under all_metadata_{gender}."""
        key = all_metadata_key(gender)
        payload = await self.cache.get(key)
        if payload is not None:
            try:
                records = parse_metadata_records(payload)
                self._stats.hits += 1
                logger.info(f"Metadata Cache HIT: {key}")
                return records
            except RecordValidationError as e:
                logger.warning(f"Discarding invalid cache entry {key}: {e}")
                await self.cache.delete(key)

        self._stats.misses += 1
        rows = await self.source.read_metadata_rows(gender)
        records = metadata_for_gender(rows, gender)
        if await self.put(key, [r.to_payload() for r in records], CacheTTL.ALL_METADATA):
            logger.info(f"Metadata Cache PUT: {key} ({len(records)} items)")
        return records

    # =========================================================================
    # Observability
    # =========================================================================

    def stats(self) -> Dict[str, Any]:
        return {
            "hits": self._stats.hits,
            "misses": self._stats.misses,
            "hit_rate": round(self._stats.hit_rate, 4),
            "writes": self._stats.writes,
            "skipped_oversize": self._stats.skipped_oversize,
            "write_errors": self._stats.write_errors,
        }

    async def health_check(self) -> Dict[str, Any]:
        """Store reachability plus counters."""
        ping = getattr(self.store, "ping", None)
        if ping is None:
            return {"healthy": True, "status": "memory", "stats": self.stats()}

        healthy = await ping()
        result: Dict[str, Any] = {
            "healthy": healthy,
            "status": "connected" if healthy else "unavailable",
            "stats": self.stats(),
        }
        get_store_stats = getattr(self.store, "get_stats", None)
        if get_store_stats is not None:
            result["store"] = get_store_stats()
        return result
