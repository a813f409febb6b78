"""
Cache Warming Service

Pre-populates the server cache ahead of user demand so the read endpoint
rarely has to scan the spreadsheet.

Rules:
1. The origin is read exactly once per invocation and filtered in memory
2. Work is split into (gender, platform) units; the wall-clock ceiling is
   checked before each unit and before each month, and remaining work is
   skipped once it is reached
3. A year-scoped run only refreshes that year's months and never writes the
   month index (a partial index must not replace the full one)
4. A failing unit aborts the invocation; the next scheduled run retries it

Scheduling is sharded into many small jobs (one platform x one gender, and
for high-volume platforms one year) so each fits the ceiling.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from idolboard.cache.config import CacheConfig, CacheTTL, get_cache_config
from idolboard.cache.entry import Clock, month_data_key, month_index_key, payload_size
from idolboard.cache.server_cache import ServerCache
from idolboard.delivery.alerts import AlertNotifier
from idolboard.sources.base import FEMALE, MALE, OriginDataSource
from idolboard.sources.normalize import memoized_month_normalizer
from idolboard.sources.tables import (
    extract_month_index,
    filter_rows,
    group_records_by_month,
)


logger = logging.getLogger(__name__)

PLATFORMS = [
    "웨이보",
    "차오화",
    "X(트위터)",
    "유튜브",
    "QQ뮤직",
    "스포티파이",
    "빌리빌리",
]


@dataclass
class UnitResult:
    """Outcome of one (gender, platform) unit."""
    gender: str
    platform: str
    months: int = 0
    rows: int = 0
    cached_items: int = 0
    seconds: float = 0.0


@dataclass
class WarmingSummary:
    """Totals for one warming invocation."""
    genders: List[str]
    platforms: List[str]
    year: Optional[str] = None
    cached_items: int = 0
    records_processed: int = 0
    elapsed_seconds: float = 0.0
    scan_seconds: float = 0.0
    units: List[UnitResult] = field(default_factory=list)
    skipped_units: List[str] = field(default_factory=list)
    skipped_months: List[str] = field(default_factory=list)

    @property
    def scan_fraction(self) -> float:
        if self.elapsed_seconds <= 0:
            return 0.0
        return self.scan_seconds / self.elapsed_seconds

    @property
    def avg_ms_per_record(self) -> float:
        if self.records_processed <= 0:
            return 0.0
        return self.elapsed_seconds / self.records_processed * 1000

    def to_dict(self) -> Dict[str, Any]:
        return {
            "genders": self.genders,
            "platforms": self.platforms,
            "year": self.year,
            "cached_items": self.cached_items,
            "records_processed": self.records_processed,
            "elapsed_seconds": round(self.elapsed_seconds, 2),
            "scan_seconds": round(self.scan_seconds, 2),
            "scan_fraction": round(self.scan_fraction, 4),
            "skipped_units": self.skipped_units,
            "skipped_months": self.skipped_months,
            "units": [u.__dict__ for u in self.units],
        }

    def log(self):
        logger.info("=" * 40)
        logger.info("Cache warming complete")
        logger.info(
            f"  - gender/platform/year: {', '.join(self.genders)} / "
            f"{', '.join(self.platforms)} / {self.year or 'ALL'}"
        )
        logger.info(f"  - cached items: {self.cached_items}")
        logger.info(f"  - records processed: {self.records_processed}")
        logger.info(f"  - elapsed: {self.elapsed_seconds:.2f}s")
        logger.info(f"  - avg per record: {self.avg_ms_per_record:.2f}ms")
        logger.info(
            f"  - sheet read: {self.scan_seconds:.2f}s "
            f"({self.scan_fraction * 100:.1f}%)"
        )
        logger.info(f"  - processing: {self.elapsed_seconds - self.scan_seconds:.2f}s")
        if self.skipped_units:
            logger.info(f"  - skipped (time limit): {', '.join(self.skipped_units)}")
        logger.info("=" * 40)


class CacheWarmer:
    """
    Writes month indexes and month data into the server cache.

    Usage:
        warmer = CacheWarmer(source, server_cache)
        summary = await warmer.warm(["유튜브"], ["남자"], year="2025")
    """

    def __init__(
        self,
        source: OriginDataSource,
        cache: ServerCache,
        config: Optional[CacheConfig] = None,
        clock: Optional[Clock] = None,
    ):
        self.source = source
        self.cache = cache
        self.config = config or get_cache_config()
        self.clock = clock or time.monotonic

    async def warm(
        self,
        platforms: List[str],
        genders: List[str],
        year: Optional[str] = None,
    ) -> WarmingSummary:
        """
        Warm every (gender, platform) pair from a single origin scan.

        Args:
            platforms: Platforms to warm
            genders: Gender buckets to warm
            year: Only refresh months of this year and skip the index write

        Returns:
            WarmingSummary

        Raises:
            SourceUnavailableError: if the metric sheet cannot be read
            Exception: the first unit failure, after logging it
        """
        start = self.clock()
        summary = WarmingSummary(genders=list(genders), platforms=list(platforms), year=year)

        rows = await self.source.read_metric_rows()
        summary.scan_seconds = self.clock() - start
        logger.info(f"Sheet read: {summary.scan_seconds:.2f}s ({len(rows)} rows)")

        normalize = memoized_month_normalizer()

        for gender in genders:
            for platform in platforms:
                if self._time_limit_reached(start):
                    logger.warning(f"Time limit reached, skipping {gender}/{platform}")
                    summary.skipped_units.append(f"{gender}/{platform}")
                    continue

                try:
                    unit = await self._warm_unit(
                        rows, gender, platform, year, normalize, start, summary
                    )
                except Exception as e:
                    logger.error(f"{gender}/{platform} failed: {e}")
                    raise

                if unit is not None:
                    summary.units.append(unit)
                    summary.cached_items += unit.cached_items

        summary.elapsed_seconds = self.clock() - start
        summary.log()
        return summary

    async def _warm_unit(
        self,
        rows: List[List[Any]],
        gender: str,
        platform: str,
        year: Optional[str],
        normalize,
        start: float,
        summary: WarmingSummary,
    ) -> Optional[UnitResult]:
        unit_start = self.clock()
        filtered = filter_rows(rows, gender, platform)
        months = extract_month_index(filtered, gender, platform, year=year, normalize=normalize)

        if not months:
            logger.warning(f"{gender}/{platform}/{year or 'ALL'}: no data")
            return None

        unit = UnitResult(gender=gender, platform=platform, months=len(months), rows=len(filtered))

        if not year:
            if await self.cache.put(month_index_key(gender, platform), months, CacheTTL.MONTH_INDEX):
                unit.cached_items += 1

        buckets = group_records_by_month(filtered, months, normalize=normalize)
        for month in months:
            if self._time_limit_reached(start):
                logger.warning(f"Time limit reached, skipping {month}")
                summary.skipped_months.append(f"{gender}/{platform}/{month}")
                continue

            key = month_data_key(gender, platform, month)
            payload = [record.to_payload() for record in buckets[month]]
            size = payload_size(payload)
            if size >= self.config.max_entry_bytes:
                logger.warning(f"Skipping oversize month {key} ({size} bytes)")
                summary.skipped_months.append(f"{gender}/{platform}/{month}")
                continue

            if await self.cache.put(key, payload, CacheTTL.MONTH_DATA):
                unit.cached_items += 1
                summary.records_processed += len(payload)

        unit.seconds = self.clock() - unit_start
        logger.info(
            f"{gender}/{platform}/{year or 'ALL'}: {len(months)} months, "
            f"{len(filtered)} rows ({unit.seconds:.2f}s)"
        )
        return unit

    def _time_limit_reached(self, start: float) -> bool:
        return self.clock() - start > self.config.warming_max_seconds


# =============================================================================
# Daily schedule
# =============================================================================

@dataclass(frozen=True)
class WarmingJob:
    """One scheduled warming invocation."""
    name: str
    label: str
    platform: str
    gender: str
    year: Optional[str] = None
    hour: int = 3
    minute: int = 0

    @property
    def start_time(self) -> str:
        return f"{self.hour}:{self.minute:02d}"


def _job(platform: str, slug: str, gender: str, hour: int, minute: int,
         year: Optional[str] = None) -> WarmingJob:
    gender_slug = "male" if gender == MALE else "female"
    gender_label = "남" if gender == MALE else "여"
    name = f"{slug}_{gender_slug}" + (f"_{year}" if year else "")
    label = f"{platform} {gender_label}" + (f" {year}" if year else "")
    return WarmingJob(name=name, label=label, platform=platform, gender=gender,
                      year=year, hour=hour, minute=minute)


WARMING_SCHEDULE: List[WarmingJob] = [
    _job("웨이보", "weibo", MALE, 3, 0),
    _job("웨이보", "weibo", FEMALE, 3, 5),
    _job("차오화", "chaohua", MALE, 3, 10),
    _job("차오화", "chaohua", FEMALE, 3, 15),
    _job("X(트위터)", "twitter", MALE, 3, 20),
    _job("X(트위터)", "twitter", FEMALE, 3, 25),
    # YouTube split by year
    _job("유튜브", "youtube", MALE, 3, 30, "2024"),
    _job("유튜브", "youtube", MALE, 3, 32, "2025"),
    _job("유튜브", "youtube", MALE, 3, 34, "2026"),
    _job("유튜브", "youtube", FEMALE, 3, 36, "2024"),
    _job("유튜브", "youtube", FEMALE, 3, 38, "2025"),
    _job("유튜브", "youtube", FEMALE, 3, 40, "2026"),
    _job("QQ뮤직", "qqmusic", MALE, 3, 42),
    _job("QQ뮤직", "qqmusic", FEMALE, 3, 45),
    # Spotify split by year
    _job("스포티파이", "spotify", MALE, 3, 50, "2024"),
    _job("스포티파이", "spotify", MALE, 3, 52, "2025"),
    _job("스포티파이", "spotify", MALE, 3, 54, "2026"),
    _job("스포티파이", "spotify", FEMALE, 3, 56, "2024"),
    _job("스포티파이", "spotify", FEMALE, 3, 58, "2025"),
    _job("스포티파이", "spotify", FEMALE, 4, 0, "2026"),
    _job("빌리빌리", "bilibili", MALE, 4, 2),
    _job("빌리빌리", "bilibili", FEMALE, 4, 5),
]


def get_job(name: str) -> WarmingJob:
    for job in WARMING_SCHEDULE:
        if job.name == name:
            return job
    raise KeyError(f"Unknown warming job: {name}")


async def run_scheduled_job(
    job: WarmingJob,
    warmer: CacheWarmer,
    notifier: Optional[AlertNotifier] = None,
) -> WarmingSummary:
    """
    Run one scheduled job, alerting the operator on failure.

    The failure is re-raised after the alert so the scheduler records it.
    """
    logger.info(f"Starting {job.label} cache refresh...")
    try:
        summary = await warmer.warm(
            [job.platform], [job.gender], year=job.year
        )
    except Exception as e:
        logger.error(f"{job.label} cache refresh failed: {e}")
        notifier = notifier or AlertNotifier()
        await notifier.send_failure_alert(f"{job.label} 캐시 갱신", e)
        raise

    logger.info(f"{job.label} cache refresh completed successfully")
    return summary


async def warm_all_sequential(
    warmer: CacheWarmer,
    jobs: Optional[List[WarmingJob]] = None,
    notifier: Optional[AlertNotifier] = None,
) -> Dict[str, int]:
    """
    Run every scheduled job in order (manual operator run).

    A failing job is counted and does not stop the rest.

    Returns:
        {"success": n, "failed": n}
    """
    jobs = WARMING_SCHEDULE if jobs is None else jobs
    success = 0
    failed = 0

    for index, job in enumerate(jobs, start=1):
        logger.info(f"[{index}/{len(jobs)}] {job.label} warming...")
        try:
            await run_scheduled_job(job, warmer, notifier)
            success += 1
            logger.info(f"[{index}/{len(jobs)}] {job.label} done")
        except Exception as e:
            failed += 1
            logger.error(f"[{index}/{len(jobs)}] {job.label} failed: {e}")

    logger.info(f"Sequential warming complete: {success} succeeded, {failed} failed")
    return {"success": success, "failed": failed}
