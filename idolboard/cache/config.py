"""
Cache Configuration

Centralized configuration for both cache tiers.

The server tier (Redis) sits in front of the spreadsheet and is limited by
the per-entry payload ceiling of the cache service it replaces. The client
tier (SQLite) lets repeat visits skip the network entirely.
"""

import os
from dataclasses import dataclass, field
from datetime import timedelta
from functools import lru_cache


@dataclass(frozen=True)
class CacheTTL:
    """
    Cache TTL configuration by data class.

    The set of available months only changes when a new month of data lands,
    while counts inside a month get corrected and backfilled more often.
    Idol metadata changes least of all.
    """

    # Server tier
    MONTH_INDEX: timedelta = timedelta(hours=6)
    MONTH_DATA: timedelta = timedelta(hours=24)
    ALL_METADATA: timedelta = timedelta(hours=6)

    # Client tier
    CLIENT_MONTH_DATA: timedelta = timedelta(hours=24)
    CLIENT_MONTH_INDEX: timedelta = timedelta(hours=6)
    CLIENT_METADATA: timedelta = timedelta(days=7)

    # HTTP responses from the read endpoint
    HTTP_RESPONSE: timedelta = timedelta(minutes=5)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class CacheConfig:
    """
    Main cache configuration.

    Settings can be overridden via environment variables:
    - CACHE_ENABLED: Enable/disable the server cache globally
    - REDIS_URL: Server cache location
    - CACHE_MAX_ENTRY_BYTES: Largest payload written to the server cache
    - WARMING_MAX_SECONDS: Wall-clock ceiling for one warming invocation
    """

    # Cache namespace (for key prefixes)
    namespace: str = field(default_factory=lambda: os.getenv(
        "CACHE_NAMESPACE",
        "idolsns"
    ))

    # Global cache toggle
    enabled: bool = field(default_factory=lambda: _env_bool("CACHE_ENABLED", "true"))

    # Redis connection
    redis_url: str = field(default_factory=lambda: os.getenv(
        "REDIS_URL",
        "redis://localhost:6379/0"
    ))
    redis_max_connections: int = field(default_factory=lambda: int(os.getenv(
        "REDIS_MAX_CONNECTIONS",
        "20"
    )))
    redis_socket_timeout: float = 5.0
    redis_connect_timeout: float = 5.0

    # Circuit breaker
    circuit_breaker_enabled: bool = True
    circuit_breaker_threshold: int = 5
    circuit_breaker_timeout: int = 60

    # Per-entry payload ceiling (bytes of serialized JSON)
    max_entry_bytes: int = field(default_factory=lambda: int(os.getenv(
        "CACHE_MAX_ENTRY_BYTES",
        "100000"
    )))

    # Warming: 5 minutes leaves margin under a 6 minute execution limit
    warming_max_seconds: float = field(default_factory=lambda: float(os.getenv(
        "WARMING_MAX_SECONDS",
        "300"
    )))

    # Client persistent cache
    client_schema_version: int = 1
    cleanup_delay_seconds: float = 10.0

    # Progressive loading
    quick_load_limit: int = 10
    full_load_delay_seconds: float = 0.1
    metadata_spacing_seconds: float = 1.0
    top_metadata_count: int = 10


@lru_cache(maxsize=1)
def get_cache_config() -> CacheConfig:
    """Get singleton cache configuration."""
    return CacheConfig()


# HTTP Cache-Control presets for read endpoint responses
HTTP_CACHE_PRESETS = {
    "metrics": {
        "max_age": int(CacheTTL.HTTP_RESPONSE.total_seconds()),
        "stale_while_revalidate": int(CacheTTL.HTTP_RESPONSE.total_seconds()) * 2,
        "public": True,
    },
    "error": {
        "max_age": 0,
        "no_store": True,
    },
}
