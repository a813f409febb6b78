"""
Sheet Table Helpers

Pure functions over raw sheet rows, shared by the read-through server cache
and the cache warmer so both derive identical month keys and records.
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from idolboard.models import MetadataRecord, MetricRecord
from idolboard.sources.base import (
    COL_COUNT,
    COL_DATE,
    COL_GENDER,
    COL_GROUP,
    COL_NAME,
    COL_PLATFORM,
)
from idolboard.sources.normalize import is_month_key, normalize_month, parse_count


logger = logging.getLogger(__name__)

Normalizer = Callable[[Any], str]


def _cell(row: List[Any], index: int) -> Any:
    return row[index] if index < len(row) else ""


def filter_rows(rows: Iterable[List[Any]], gender: str, platform: str) -> List[List[Any]]:
    """Rows for one (gender, platform) pair. Exact match, as the sheet stores it."""
    return [
        row for row in rows
        if _cell(row, COL_GENDER) == gender and _cell(row, COL_PLATFORM) == platform
    ]


def extract_month_index(
    rows: Iterable[List[Any]],
    gender: str,
    platform: str,
    year: Optional[str] = None,
    normalize: Normalizer = normalize_month,
) -> List[str]:
    """
    Sorted, duplicate-free list of YYYY-MM months for a (gender, platform) pair.

    Args:
        rows: Metric rows, header removed
        gender: Gender bucket
        platform: Platform (SNS) name
        year: Only keep months starting with this year
        normalize: Date normalizer (pass a memoized one for large scans)
    """
    months = set()
    for row in filter_rows(rows, gender, platform):
        month = normalize(_cell(row, COL_DATE))
        if not is_month_key(month):
            continue
        if year and not month.startswith(year):
            continue
        months.add(month)
    return sorted(months)


def extract_month_records(
    rows: Iterable[List[Any]],
    gender: str,
    platform: str,
    month: str,
    normalize: Normalizer = normalize_month,
) -> List[MetricRecord]:
    """Records of one (gender, platform, month), in sheet order."""
    records = []
    for row in filter_rows(rows, gender, platform):
        if normalize(_cell(row, COL_DATE)) != month:
            continue
        records.append(MetricRecord(
            name=_cell(row, COL_NAME),
            group=_cell(row, COL_GROUP),
            date=month,
            count=parse_count(_cell(row, COL_COUNT)),
        ))
    return records


def group_records_by_month(
    rows: Iterable[List[Any]],
    months: Iterable[str],
    normalize: Normalizer = normalize_month,
) -> Dict[str, List[MetricRecord]]:
    """
    Bucket pre-filtered rows into per-month record lists in a single pass.

    Rows whose month is not in `months` are dropped.
    """
    wanted = set(months)
    buckets: Dict[str, List[MetricRecord]] = {month: [] for month in sorted(wanted)}
    for row in rows:
        month = normalize(_cell(row, COL_DATE))
        if month not in wanted:
            continue
        buckets[month].append(MetricRecord(
            name=_cell(row, COL_NAME),
            group=_cell(row, COL_GROUP),
            date=month,
            count=parse_count(_cell(row, COL_COUNT)),
        ))
    return buckets


# =============================================================================
# Metadata sheet
# =============================================================================

def _row_to_metadata(headers: List[Any], row: List[Any]) -> MetadataRecord:
    fields: Dict[str, Any] = {}
    for index, header in enumerate(headers):
        value = _cell(row, index)
        # Empty cells surface as "" rather than None/0
        fields[str(header)] = value if value not in (None, "", 0, False) else ""
    return MetadataRecord.model_validate(fields)


def metadata_for_gender(rows: List[List[Any]], gender: str) -> List[MetadataRecord]:
    """Every metadata row of the given gender. Header row first in `rows`."""
    if len(rows) < 2:
        return []
    headers = rows[0]
    return [
        _row_to_metadata(headers, row)
        for row in rows[1:]
        if str(_cell(row, 2)).strip() == gender
    ]


def find_metadata(rows: List[List[Any]], name: str, gender: str) -> Optional[MetadataRecord]:
    """First metadata row whose trimmed name and gender match."""
    if len(rows) < 2:
        return None
    headers = rows[0]
    for row in rows[1:]:
        if str(_cell(row, 0)).strip() == name and str(_cell(row, 2)).strip() == gender:
            return _row_to_metadata(headers, row)
    return None
