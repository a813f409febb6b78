"""
Client Persistent Cache

Dashboard-local durable cache on SQLite, so repeat visits can render without
any network round-trip.

Three independent collections, each entry stamped with its own write time
and TTL:
- sns_data: one month of records per (gender, platform, month), 24 hours
- months: month index per (gender, platform), 6 hours
- metadata: one idol profile per (name, gender), 7 days

Reads check expiry and delete an expired entry on the spot. A one-off sweep
shortly after start-up reclaims the rest. A schema_version row gates table
creation: on a version mismatch all three collections are dropped and
recreated, nothing is migrated.
"""

import asyncio
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Type

from sqlalchemy import Column, Float, Integer, String, JSON, create_engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from idolboard.cache.backends import EntryStore
from idolboard.cache.config import CacheConfig, CacheTTL, get_cache_config
from idolboard.cache.entry import (
    CacheEntry,
    Clock,
    TTLCache,
    client_month_data_key,
    client_month_index_key,
    metadata_key,
)
from idolboard.models import (
    MetadataRecord,
    MetricRecord,
    RecordValidationError,
    parse_metadata_record,
    parse_metric_records,
    parse_month_index,
)
from idolboard.utils.config import get_settings


logger = logging.getLogger(__name__)

Base = declarative_base()


# =============================================================================
# TABLES
# =============================================================================

class SnsDataEntry(Base):
    __tablename__ = "sns_data"

    key = Column(String, primary_key=True)
    gender = Column(String)
    sns = Column(String)
    month = Column(String)
    payload = Column(JSON, nullable=False)
    timestamp = Column(Float, nullable=False, index=True)
    ttl = Column(Float, nullable=False)


class MonthIndexEntry(Base):
    __tablename__ = "months"

    key = Column(String, primary_key=True)
    gender = Column(String)
    sns = Column(String)
    payload = Column(JSON, nullable=False)
    timestamp = Column(Float, nullable=False, index=True)
    ttl = Column(Float, nullable=False)


class MetadataEntry(Base):
    __tablename__ = "metadata"

    key = Column(String, primary_key=True)
    name = Column(String)
    gender = Column(String)
    payload = Column(JSON, nullable=False)
    timestamp = Column(Float, nullable=False, index=True)
    ttl = Column(Float, nullable=False)


class SchemaVersion(Base):
    __tablename__ = "schema_version"

    id = Column(Integer, primary_key=True)
    version = Column(Integer, nullable=False)


COLLECTION_TABLES = [SnsDataEntry, MonthIndexEntry, MetadataEntry]


# =============================================================================
# ENTRY STORE
# =============================================================================

class SqlEntryStore(EntryStore):
    """
    EntryStore over one collection table.

    Each call runs in its own session (one transaction per collection) on a
    worker thread, so the event loop is free while SQLite works. Stores on
    one database share a lock, one session at a time.
    """

    def __init__(
        self,
        session_factory: Callable,
        model: Type,
        lock: Optional[threading.Lock] = None,
    ):
        self.session_factory = session_factory
        self.model = model
        self.lock = lock or threading.Lock()

    def _to_entry(self, row) -> CacheEntry:
        return CacheEntry(
            key=row.key,
            payload=row.payload,
            written_at=row.timestamp,
            ttl=row.ttl,
        )

    def _load(self, key: str) -> Optional[CacheEntry]:
        with self.lock, self.session_factory() as session:
            row = session.get(self.model, key)
            return self._to_entry(row) if row is not None else None

    def _save(self, entry: CacheEntry) -> bool:
        columns = {
            name: value for name, value in entry.fields.items()
            if hasattr(self.model, name)
        }
        with self.lock, self.session_factory() as session:
            session.merge(self.model(
                key=entry.key,
                payload=entry.payload,
                timestamp=entry.written_at,
                ttl=entry.ttl,
                **columns,
            ))
            session.commit()
        return True

    def _delete(self, key: str) -> bool:
        with self.lock, self.session_factory() as session:
            row = session.get(self.model, key)
            if row is None:
                return False
            session.delete(row)
            session.commit()
            return True

    def _keys(self) -> List[str]:
        with self.lock, self.session_factory() as session:
            return list(session.scalars(select(self.model.key)))

    def _entries(self) -> List[CacheEntry]:
        with self.lock, self.session_factory() as session:
            rows = session.scalars(select(self.model).order_by(self.model.timestamp))
            return [self._to_entry(row) for row in rows]

    async def load(self, key: str) -> Optional[CacheEntry]:
        try:
            return await asyncio.to_thread(self._load, key)
        except SQLAlchemyError as e:
            logger.error(f"{self.model.__tablename__} read failed for {key}: {e}")
            return None

    async def save(self, entry: CacheEntry) -> bool:
        try:
            return await asyncio.to_thread(self._save, entry)
        except (SQLAlchemyError, TypeError, ValueError) as e:
            logger.error(f"{self.model.__tablename__} write failed for {entry.key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        try:
            return await asyncio.to_thread(self._delete, key)
        except SQLAlchemyError as e:
            logger.error(f"{self.model.__tablename__} delete failed for {key}: {e}")
            return False

    async def keys(self) -> List[str]:
        return await asyncio.to_thread(self._keys)

    async def entries(self) -> List[CacheEntry]:
        return await asyncio.to_thread(self._entries)


# =============================================================================
# CLIENT CACHE
# =============================================================================

class ClientPersistentCache:
    """
    Month data, month index and metadata collections on one SQLite file.

    Usage:
        store = ClientPersistentCache("idol_sns_cache.db")
        await store.save_month_index("남자", "웨이보", months)
        records = await store.get_month_data("남자", "웨이보", "2025-11")
        store.schedule_cleanup()
    """

    def __init__(
        self,
        path: Optional[str] = None,
        config: Optional[CacheConfig] = None,
        clock: Optional[Clock] = None,
    ):
        path = path or get_settings().CLIENT_CACHE_PATH
        self.path = path
        self.config = config or get_cache_config()
        self.clock = clock or time.time

        if path == ":memory:":
            # One shared connection, or each thread would see its own empty database
            self.engine = create_engine(
                "sqlite://",
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self.engine = create_engine(
                f"sqlite:///{path}",
                connect_args={"check_same_thread": False},
            )
        self.session_factory = sessionmaker(
            bind=self.engine,
            autoflush=False,
            expire_on_commit=False,
        )
        self._lock = threading.Lock()
        self._ensure_schema()

        self.month_data = self._collection(SnsDataEntry, "sns_data")
        self.month_index = self._collection(MonthIndexEntry, "months")
        self.metadata = self._collection(MetadataEntry, "metadata")
        self._cleanup_task: Optional[asyncio.Task] = None

    def _collection(self, model: Type, name: str) -> TTLCache:
        store = SqlEntryStore(self.session_factory, model, lock=self._lock)
        return TTLCache(store, clock=self.clock, name=name)

    def _ensure_schema(self):
        """Create tables, or drop and recreate them when the schema version changed."""
        SchemaVersion.__table__.create(self.engine, checkfirst=True)
        wanted = self.config.client_schema_version

        with self.session_factory() as session:
            row = session.get(SchemaVersion, 1)
            current = row.version if row is not None else None

        if current is not None and current != wanted:
            logger.info(f"Client cache schema {current} -> {wanted}, recreating collections")
            Base.metadata.drop_all(
                self.engine, tables=[t.__table__ for t in COLLECTION_TABLES]
            )

        Base.metadata.create_all(self.engine, tables=[t.__table__ for t in COLLECTION_TABLES])

        if current != wanted:
            with self.session_factory() as session:
                session.merge(SchemaVersion(id=1, version=wanted))
                session.commit()

    # =========================================================================
    # Month data
    # =========================================================================

    async def save_month_data(
        self,
        gender: str,
        platform: str,
        month: str,
        records: List[MetricRecord],
    ) -> bool:
        key = client_month_data_key(gender, platform, month)
        stored = await self.month_data.put(
            key,
            [record.to_payload() for record in records],
            CacheTTL.CLIENT_MONTH_DATA,
            gender=gender,
            sns=platform,
            month=month,
        )
        if stored:
            logger.debug(f"Saved {key} ({len(records)} records)")
        return stored

    async def get_month_data(
        self,
        gender: str,
        platform: str,
        month: str,
    ) -> Optional[List[MetricRecord]]:
        key = client_month_data_key(gender, platform, month)
        payload = await self.month_data.get(key)
        if payload is None:
            return None
        try:
            return parse_metric_records(payload)
        except RecordValidationError as e:
            logger.warning(f"Dropping invalid sns_data entry {key}: {e}")
            await self.month_data.delete(key)
            return None

    async def delete_month_data(self, gender: str, platform: str, month: str) -> bool:
        return await self.month_data.delete(client_month_data_key(gender, platform, month))

    # =========================================================================
    # Month index
    # =========================================================================

    async def save_month_index(self, gender: str, platform: str, months: List[str]) -> bool:
        return await self.month_index.put(
            client_month_index_key(gender, platform),
            list(months),
            CacheTTL.CLIENT_MONTH_INDEX,
            gender=gender,
            sns=platform,
        )

    async def get_month_index(self, gender: str, platform: str) -> Optional[List[str]]:
        key = client_month_index_key(gender, platform)
        payload = await self.month_index.get(key)
        if payload is None:
            return None
        try:
            return parse_month_index(payload)
        except RecordValidationError as e:
            logger.warning(f"Dropping invalid months entry {key}: {e}")
            await self.month_index.delete(key)
            return None

    # =========================================================================
    # Metadata
    # =========================================================================

    async def save_metadata(self, name: str, gender: str, record: MetadataRecord) -> bool:
        return await self.metadata.put(
            metadata_key(name, gender),
            record.to_payload(),
            CacheTTL.CLIENT_METADATA,
            name=name,
            gender=gender,
        )

    async def get_metadata(self, name: str, gender: str) -> Optional[MetadataRecord]:
        key = metadata_key(name, gender)
        payload = await self.metadata.get(key)
        if payload is None:
            return None
        try:
            return parse_metadata_record(payload)
        except RecordValidationError as e:
            logger.warning(f"Dropping invalid metadata entry {key}: {e}")
            await self.metadata.delete(key)
            return None

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def cleanup_expired(self) -> int:
        """
        Delete every expired entry in all three collections.

        Returns:
            Number of entries deleted
        """
        logger.info("Cleaning up expired client cache entries...")
        deleted = 0
        for collection in (self.month_data, self.metadata, self.month_index):
            deleted += await collection.sweep()
        logger.info(f"Cleanup complete: {deleted} entries deleted")
        return deleted

    def schedule_cleanup(self, delay: Optional[float] = None) -> asyncio.Task:
        """Run cleanup_expired once after `delay` seconds (default from config)."""
        delay = self.config.cleanup_delay_seconds if delay is None else delay

        async def delayed_cleanup():
            await asyncio.sleep(delay)
            try:
                return await self.cleanup_expired()
            except SQLAlchemyError as e:
                logger.error(f"Client cache cleanup failed: {e}")
                return 0

        self._cleanup_task = asyncio.create_task(delayed_cleanup())
        return self._cleanup_task

    async def clear_all(self):
        """Drop every collection and start from an empty database."""
        def reset():
            with self._lock:
                Base.metadata.drop_all(self.engine)
                self._ensure_schema()

        await asyncio.to_thread(reset)
        logger.info("Client cache cleared")

    async def stats(self) -> Dict[str, int]:
        return {
            "month_data": await self.month_data.count(),
            "month_index": await self.month_index.count(),
            "metadata": await self.metadata.count(),
        }

    def close(self):
        if self._cleanup_task is not None and not self._cleanup_task.done():
            self._cleanup_task.cancel()
        self.engine.dispose()
