"""
TTL Cache Entries

One read-checked TTL policy shared by both cache tiers:
- Every entry carries its own write timestamp and TTL
- Expiry is checked lazily on read; an expired entry reads as a miss and is
  deleted on the spot
- Nothing is pushed between tiers; each tier resolves staleness on its own

Backing stores (Redis, in-memory, SQLite tables) only persist entries.
TTLCache owns the policy.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Union

from idolboard.cache.backends import EntryStore


logger = logging.getLogger(__name__)

Clock = Callable[[], float]
TTL = Union[timedelta, float, int]


def ttl_seconds(ttl: TTL) -> float:
    return ttl.total_seconds() if isinstance(ttl, timedelta) else float(ttl)


def serialize_payload(payload: Any) -> str:
    """Compact JSON, UTF-8 text kept as-is (Korean names stay readable)."""
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))


def payload_size(payload: Any) -> int:
    """Serialized size in bytes."""
    return len(serialize_payload(payload).encode("utf-8"))


@dataclass
class CacheEntry:
    """
    A cached payload with its write time and TTL (both in seconds).

    `fields` carries descriptive columns for stores that index them
    (gender, platform, month); it plays no part in expiry.
    """
    key: str
    payload: Any
    written_at: float
    ttl: float
    fields: Dict[str, Any] = field(default_factory=dict)

    def age(self, now: float) -> float:
        return now - self.written_at

    def expired(self, now: float) -> bool:
        return self.age(now) > self.ttl

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "payload": self.payload,
            "written_at": self.written_at,
            "ttl": self.ttl,
            "fields": self.fields,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        return cls(
            key=data["key"],
            payload=data["payload"],
            written_at=float(data["written_at"]),
            ttl=float(data["ttl"]),
            fields=dict(data.get("fields") or {}),
        )


# =============================================================================
# Key composition (same logical scheme on both tiers)
# =============================================================================

def month_index_key(gender: str, platform: str) -> str:
    return f"meta_{gender}_{platform}"


def month_data_key(gender: str, platform: str, month: str) -> str:
    return f"data_{gender}_{platform}_{month}"


def all_metadata_key(gender: str) -> str:
    return f"all_metadata_{gender}"


def metadata_key(name: str, gender: str) -> str:
    return f"{name}_{gender}"


# Client collections keep one table per data class, so keys drop the prefix

def client_month_index_key(gender: str, platform: str) -> str:
    return f"{gender}_{platform}"


def client_month_data_key(gender: str, platform: str, month: str) -> str:
    return f"{gender}_{platform}_{month}"


# =============================================================================
# TTL cache
# =============================================================================

class TTLCache:
    """
    get/put/delete over an EntryStore with read-checked TTL.

    Usage:
        cache = TTLCache(MemoryEntryStore())
        await cache.put("meta_남자_웨이보", ["2025-01"], timedelta(hours=6))
        months = await cache.get("meta_남자_웨이보")
    """

    def __init__(
        self,
        store: EntryStore,
        clock: Optional[Clock] = None,
        name: str = "cache",
    ):
        self.store = store
        self.clock = clock or time.time
        self.name = name

    async def get_entry(self, key: str) -> Optional[CacheEntry]:
        """Entry for key, or None on miss. Expired entries are deleted."""
        entry = await self.store.load(key)
        if entry is None:
            return None

        now = self.clock()
        if entry.expired(now):
            logger.debug(
                f"[{self.name}] expired: {key} "
                f"({entry.age(now) / 3600:.1f}h old, ttl {entry.ttl / 3600:.1f}h)"
            )
            await self.store.delete(key)
            return None
        return entry

    async def get(self, key: str) -> Optional[Any]:
        entry = await self.get_entry(key)
        return entry.payload if entry is not None else None

    async def put(self, key: str, payload: Any, ttl: TTL, **fields: Any) -> bool:
        """Write an entry stamped with the current time. Returns store success."""
        entry = CacheEntry(
            key=key,
            payload=payload,
            written_at=self.clock(),
            ttl=ttl_seconds(ttl),
            fields=fields,
        )
        return await self.store.save(entry)

    async def delete(self, key: str) -> bool:
        return await self.store.delete(key)

    async def sweep(self) -> int:
        """
        Delete every expired entry, oldest first.

        Returns:
            Number of entries deleted
        """
        now = self.clock()
        entries: List[CacheEntry] = sorted(
            await self.store.entries(),
            key=lambda e: e.written_at,
        )
        deleted = 0
        for entry in entries:
            if entry.expired(now):
                if await self.store.delete(entry.key):
                    deleted += 1
                    logger.debug(f"[{self.name}] swept: {entry.key}")
        return deleted

    async def count(self) -> int:
        return len(await self.store.keys())
