#!/usr/bin/env python3
"""
Cache Warming Runner

Fills the server cache from the origin spreadsheet, either ad hoc or as one
entry of the daily schedule.

Usage:
    # Set environment variables first:
    export GOOGLE_SHEETS_API_KEY=your_key
    export METRICS_SPREADSHEET_ID=your_sheet
    export REDIS_URL=redis://localhost:6379/0
    export RESEND_API_KEY=your_key   # failure alerts for --job / --all

    # Warm every platform for both genders:
    python scripts/warm_cache.py

    # One platform, one gender, one year:
    python scripts/warm_cache.py --platforms 유튜브 --genders 남자 --year 2025

    # One scheduled job, or the whole schedule in order:
    python scripts/warm_cache.py --job youtube_male_2025
    python scripts/warm_cache.py --all

    # List the schedule:
    python scripts/warm_cache.py --list
"""

import asyncio
import argparse
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def run_warming(
    platforms=None,
    genders=None,
    year=None,
    job_name=None,
    run_all=False,
) -> int:
    """Run the requested warming and return a process exit code."""

    load_dotenv()

    from idolboard.cache import (
        PLATFORMS,
        WARMING_SCHEDULE,
        CacheWarmer,
        RedisEntryStore,
        ServerCache,
        run_scheduled_job,
        warm_all_sequential,
    )
    from idolboard.cache.warming import get_job
    from idolboard.sources import GENDERS, GoogleSheetsSource, SourceUnavailableError

    if job_name:
        try:
            job = get_job(job_name)
        except KeyError as e:
            print(f"ERROR: {e}")
            print(f"Known jobs: {', '.join(j.name for j in WARMING_SCHEDULE)}")
            return 2

    try:
        source = GoogleSheetsSource.from_settings()
    except SourceUnavailableError as e:
        print(f"ERROR: {e}")
        return 2

    store = RedisEntryStore()
    cache = ServerCache(source, store)
    warmer = CacheWarmer(source, cache)

    try:
        if run_all:
            result = await warm_all_sequential(warmer)
            print(f"\nSequential warming: {result['success']} succeeded, {result['failed']} failed")
            return 0 if result["failed"] == 0 else 1

        if job_name:
            summary = await run_scheduled_job(job, warmer)
        else:
            summary = await warmer.warm(
                platforms or list(PLATFORMS),
                genders or list(GENDERS),
                year=year,
            )

        print(f"\nCached {summary.cached_items} items in {summary.elapsed_seconds:.1f}s")
        if summary.skipped_units or summary.skipped_months:
            print(f"Skipped: {', '.join(summary.skipped_units + summary.skipped_months)}")
        return 0

    except Exception as e:
        logger.error(f"Cache warming failed: {e}")
        return 1

    finally:
        await source.close()
        await store.close()


def list_schedule():
    from idolboard.cache import WARMING_SCHEDULE

    for job in WARMING_SCHEDULE:
        print(f"{job.start_time:>5}  {job.name:<24} {job.label}")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Warm the server cache from the origin spreadsheet"
    )
    parser.add_argument(
        "--platforms",
        nargs="+",
        default=None,
        help="Platforms to warm (default: all)"
    )
    parser.add_argument(
        "--genders",
        nargs="+",
        default=None,
        choices=["남자", "여자"],
        help="Gender buckets to warm (default: both)"
    )
    parser.add_argument(
        "--year",
        default=None,
        help="Only refresh months of this year (month index is left alone)"
    )
    parser.add_argument(
        "--job",
        default=None,
        help="Run one scheduled job by name (e.g. youtube_male_2025)"
    )
    parser.add_argument(
        "--all",
        action="store_true",
        help="Run every scheduled job in order"
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="Print the daily schedule and exit"
    )

    args = parser.parse_args()

    if args.list:
        list_schedule()
        return

    sys.exit(asyncio.run(run_warming(
        platforms=args.platforms,
        genders=args.genders,
        year=args.year,
        job_name=args.job,
        run_all=args.all,
    )))


if __name__ == "__main__":
    main()
