"""
Idol SNS Caching Layer

Two independent tiers sharing one read-checked TTL policy:
- Server tier: Redis in front of the spreadsheet, read-through on a miss
  and pre-populated by scheduled warming jobs
- Client tier: SQLite on the dashboard side, so repeat visits skip the
  network entirely (see idolboard.client.store)

Neither tier pushes invalidations to the other; each checks expiry on read.

Key components:
- TTLCache: get/put/delete/sweep over any EntryStore
- MemoryEntryStore / RedisEntryStore: persistence backends
- ServerCache: month index, month data and bulk metadata lookups
- CacheWarmer: single-scan, deadline-bounded cache population
- CacheHeadersBuilder: HTTP Cache-Control for read endpoint responses

Usage:
    cache = ServerCache(source, RedisEntryStore())
    months = await cache.month_index("남자", "웨이보")

    warmer = CacheWarmer(source, cache)
    await warmer.warm(["웨이보"], ["남자"])
"""

from idolboard.cache.backends import EntryStore, MemoryEntryStore, RedisEntryStore
from idolboard.cache.config import CacheConfig, CacheTTL, get_cache_config
from idolboard.cache.entry import (
    CacheEntry,
    TTLCache,
    all_metadata_key,
    metadata_key,
    month_data_key,
    month_index_key,
)
from idolboard.cache.headers import CacheHeadersBuilder, headers_for
from idolboard.cache.server_cache import ServerCache
from idolboard.cache.warming import (
    PLATFORMS,
    WARMING_SCHEDULE,
    CacheWarmer,
    WarmingJob,
    WarmingSummary,
    run_scheduled_job,
    warm_all_sequential,
)

__all__ = [
    # Config
    "CacheConfig",
    "CacheTTL",
    "get_cache_config",
    # Entries
    "CacheEntry",
    "TTLCache",
    "all_metadata_key",
    "metadata_key",
    "month_data_key",
    "month_index_key",
    # Stores
    "EntryStore",
    "MemoryEntryStore",
    "RedisEntryStore",
    # Server tier
    "ServerCache",
    # Headers
    "CacheHeadersBuilder",
    "headers_for",
    # Warming
    "PLATFORMS",
    "WARMING_SCHEDULE",
    "CacheWarmer",
    "WarmingJob",
    "WarmingSummary",
    "run_scheduled_job",
    "warm_all_sequential",
]
