"""
Cache Entry Stores

Persistence backends for TTL cache entries:
- MemoryEntryStore: process-local dict (single worker, tests)
- RedisEntryStore: shared Redis with circuit breaker and statistics

Stores never decide expiry; TTLCache does. The Redis store still sets a
native expiry equal to the entry TTL so Redis reclaims memory on its own.
Concurrent writes to one key are last-write-wins with no merge.
"""

import asyncio
import json
import logging
import math
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Optional

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError

from idolboard.cache.config import CacheConfig, get_cache_config

if TYPE_CHECKING:
    from idolboard.cache.entry import CacheEntry


logger = logging.getLogger(__name__)


class EntryStore(ABC):
    """Key -> CacheEntry persistence."""

    @abstractmethod
    async def load(self, key: str) -> Optional["CacheEntry"]:
        """Stored entry or None. Must not raise on backend failure."""

    @abstractmethod
    async def save(self, entry: "CacheEntry") -> bool:
        """Store an entry, replacing any previous one. False on failure."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a key. True if an entry was removed."""

    @abstractmethod
    async def keys(self) -> List[str]:
        """All stored keys."""

    async def entries(self) -> List["CacheEntry"]:
        result = []
        for key in await self.keys():
            entry = await self.load(key)
            if entry is not None:
                result.append(entry)
        return result

    async def clear(self) -> int:
        count = 0
        for key in await self.keys():
            if await self.delete(key):
                count += 1
        return count


class MemoryEntryStore(EntryStore):
    """Dict-backed store. Entries are shared by reference, not copied."""

    def __init__(self):
        self._entries: Dict[str, "CacheEntry"] = {}

    async def load(self, key: str) -> Optional["CacheEntry"]:
        return self._entries.get(key)

    async def save(self, entry: "CacheEntry") -> bool:
        self._entries[entry.key] = entry
        return True

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    async def keys(self) -> List[str]:
        return list(self._entries.keys())


# =============================================================================
# Redis
# =============================================================================

@dataclass
class StoreStats:
    loads: int = 0
    saves: int = 0
    errors: int = 0


class CircuitBreaker:
    """
    Stops calling Redis after `threshold` consecutive failures.

    While open every call fails fast; after `timeout` seconds the next call
    is let through and a success closes the breaker again.
    """

    def __init__(self, threshold: int = 5, timeout: int = 60):
        self.threshold = threshold
        self.timeout = timeout
        self.failures = 0
        self.opened_at: Optional[float] = None
        self._lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self.opened_at is not None

    async def is_available(self) -> bool:
        if self.opened_at is None:
            return True
        if time.time() - self.opened_at < self.timeout:
            return False

        async with self._lock:
            self.opened_at = None
            self.failures = 0
        logger.info("Circuit breaker timeout passed, retrying Redis")
        return True

    async def record_success(self):
        async with self._lock:
            self.failures = 0
            self.opened_at = None

    async def record_failure(self):
        async with self._lock:
            self.failures += 1
            if self.failures >= self.threshold and self.opened_at is None:
                self.opened_at = time.time()
                logger.warning(
                    f"Circuit breaker opened after {self.failures} failures, "
                    f"retrying in {self.timeout}s"
                )


class RedisEntryStore(EntryStore):
    """
    Redis-backed entry store.

    Entries are stored as a JSON envelope under `{namespace}:{key}` with a
    native expiry of ceil(ttl) seconds. Backend failures degrade to a miss on
    read and to False on write.
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        redis: Optional[Redis] = None,
    ):
        self.config = config or get_cache_config()
        self._pool: Optional[ConnectionPool] = None
        self._redis: Optional[Redis] = redis
        self._circuit_breaker = CircuitBreaker(
            threshold=self.config.circuit_breaker_threshold,
            timeout=self.config.circuit_breaker_timeout,
        ) if self.config.circuit_breaker_enabled else None
        self._stats = StoreStats()
        self._initialized = redis is not None
        self._lock = asyncio.Lock()

    async def initialize(self):
        """Initialize Redis connection pool."""
        if self._initialized:
            return

        async with self._lock:
            if self._initialized:
                return

            try:
                self._pool = ConnectionPool.from_url(
                    self.config.redis_url,
                    max_connections=self.config.redis_max_connections,
                    socket_timeout=self.config.redis_socket_timeout,
                    socket_connect_timeout=self.config.redis_connect_timeout,
                    decode_responses=False,
                )
                self._redis = Redis(connection_pool=self._pool)

                # Test connection
                await self._redis.ping()
                self._initialized = True
                logger.info(f"Redis cache initialized: {self.config.redis_url}")

            except Exception as e:
                logger.error(f"Failed to initialize Redis: {e}")
                self._initialized = False
                raise

    async def close(self):
        """Close Redis connection pool."""
        if self._redis:
            await self._redis.aclose()
        if self._pool:
            await self._pool.disconnect()
        self._initialized = False
        logger.info("Redis cache closed")

    @asynccontextmanager
    async def _with_circuit_breaker(self):
        """Context manager for circuit breaker pattern."""
        if self._circuit_breaker and not await self._circuit_breaker.is_available():
            raise RedisConnectionError("Circuit breaker is open")

        try:
            yield
            if self._circuit_breaker:
                await self._circuit_breaker.record_success()
        except (RedisError, RedisConnectionError):
            if self._circuit_breaker:
                await self._circuit_breaker.record_failure()
            raise

    def _make_key(self, key: str) -> str:
        """Create namespaced cache key."""
        return f"{self.config.namespace}:{key}"

    def _strip_key(self, raw: bytes) -> str:
        text = raw.decode("utf-8") if isinstance(raw, bytes) else str(raw)
        return text[len(self.config.namespace) + 1:]

    async def _ready(self) -> bool:
        if not self.config.enabled:
            return False
        if not self._initialized:
            try:
                await self.initialize()
            except Exception:
                return False
        return True

    async def load(self, key: str) -> Optional["CacheEntry"]:
        from idolboard.cache.entry import CacheEntry

        if not await self._ready():
            return None

        try:
            async with self._with_circuit_breaker():
                data = await self._redis.get(self._make_key(key))

            self._stats.loads += 1
            if data is None:
                return None
            return CacheEntry.from_dict(json.loads(data))

        except RedisConnectionError:
            self._stats.errors += 1
            logger.warning("Redis unavailable, returning None")
            return None
        except Exception as e:
            self._stats.errors += 1
            logger.error(f"Cache get error for {key}: {e}")
            return None

    async def save(self, entry: "CacheEntry") -> bool:
        if not await self._ready():
            return False

        try:
            serialized = json.dumps(
                entry.to_dict(), ensure_ascii=False, separators=(",", ":")
            ).encode("utf-8")

            async with self._with_circuit_breaker():
                await self._redis.setex(
                    self._make_key(entry.key),
                    max(1, math.ceil(entry.ttl)),
                    serialized,
                )

            self._stats.saves += 1
            return True

        except RedisConnectionError:
            self._stats.errors += 1
            logger.warning("Redis unavailable, cache set failed")
            return False
        except Exception as e:
            self._stats.errors += 1
            logger.error(f"Cache set error for {entry.key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        if not await self._ready():
            return False

        try:
            async with self._with_circuit_breaker():
                return await self._redis.delete(self._make_key(key)) > 0
        except Exception as e:
            self._stats.errors += 1
            logger.error(f"Cache delete error for {key}: {e}")
            return False

    async def keys(self) -> List[str]:
        if not await self._ready():
            return []

        try:
            async with self._with_circuit_breaker():
                return [
                    self._strip_key(raw)
                    async for raw in self._redis.scan_iter(
                        match=self._make_key("*"), count=100
                    )
                ]
        except Exception as e:
            self._stats.errors += 1
            logger.error(f"Cache key scan error: {e}")
            return []

    async def ping(self) -> bool:
        if not await self._ready():
            return False
        try:
            async with self._with_circuit_breaker():
                await self._redis.ping()
            return True
        except Exception:
            return False

    def get_stats(self) -> Dict:
        return {
            "backend": "redis",
            "enabled": self.config.enabled,
            "initialized": self._initialized,
            "loads": self._stats.loads,
            "saves": self._stats.saves,
            "errors": self._stats.errors,
            "circuit_breaker_open": (
                self._circuit_breaker.is_open
                if self._circuit_breaker else False
            ),
        }
