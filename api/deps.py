"""
Shared dependencies for the HTTP layer.

One ServerCache per process, built lazily from settings: the Google Sheets
origin behind a Redis entry store. Tests replace these through
app.dependency_overrides.
"""

import logging
from typing import Optional

from fastapi import Depends

from idolboard.cache import CacheWarmer, RedisEntryStore, ServerCache
from idolboard.edge import EdgeService
from idolboard.sources import GoogleSheetsSource


logger = logging.getLogger(__name__)

_server_cache: Optional[ServerCache] = None


def get_server_cache() -> ServerCache:
    """
    Process-wide server cache.

    Raises:
        SourceUnavailableError: if the origin spreadsheet is not configured
    """
    global _server_cache

    if _server_cache is None:
        source = GoogleSheetsSource.from_settings()
        _server_cache = ServerCache(source, RedisEntryStore())
        logger.info("Server cache created")
    return _server_cache


def get_edge_service(cache: ServerCache = Depends(get_server_cache)) -> EdgeService:
    return EdgeService(cache)


def get_cache_warmer(cache: ServerCache = Depends(get_server_cache)) -> CacheWarmer:
    return CacheWarmer(cache.source, cache)


async def close_server_cache():
    """Release the origin client and Redis pool."""
    global _server_cache

    if _server_cache is None:
        return
    await _server_cache.source.close()
    close_store = getattr(_server_cache.store, "close", None)
    if close_store is not None:
        await close_store()
    _server_cache = None
