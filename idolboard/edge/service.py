"""
Read Endpoint Service

Translates query parameters into server cache lookups and shapes the
response:
- Month selection (specific month + predecessor, latest two, or all)
- Optional stable sort by the reference month's count
- Optional top-N limiting applied per month independently

Any failure aborts the whole request; there is no partial-success shape.
"""

import logging
import re
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, field_validator

from idolboard.cache.server_cache import ServerCache
from idolboard.models import (
    AllMetadataResponse,
    ErrorResponse,
    MetadataResponse,
    MetricRecord,
    MetricsResponse,
    ResponseMeta,
)
from idolboard.sources.base import FEMALE, MALE
from idolboard.sources.tables import find_metadata


logger = logging.getLogger(__name__)

DEFAULT_PLATFORM = "웨이보"
ACTION_METADATA = "metadata"
ACTION_ALL_METADATA = "allMetadata"

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


class MetadataLookupError(Exception):
    """Metadata sheet has no rows or no row matches the subject."""


class EdgeQuery(BaseModel):
    """
    Query parameters of the read endpoint.

    Empty strings count as absent. Booleans are true only for the literal
    "true". `limit` is honored only when it parses to a positive integer.
    """

    action: Optional[str] = None
    name: Optional[str] = None
    gender: Optional[str] = None
    sns: str = DEFAULT_PLATFORM
    init: bool = False
    month: Optional[str] = None
    sortByCount: bool = False
    limit: Optional[int] = None

    @field_validator("action", "name", "gender", "month", mode="before")
    @classmethod
    def _blank_as_none(cls, value: Any) -> Optional[str]:
        if value is None or value == "":
            return None
        return str(value)

    @field_validator("sns", mode="before")
    @classmethod
    def _default_platform(cls, value: Any) -> str:
        return str(value) if value else DEFAULT_PLATFORM

    @field_validator("init", "sortByCount", mode="before")
    @classmethod
    def _literal_true(cls, value: Any) -> bool:
        return value is True or value == "true"

    @field_validator("limit", mode="before")
    @classmethod
    def _positive_int(cls, value: Any) -> Optional[int]:
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, int):
            number = value
        else:
            match = _LEADING_INT.match(str(value))
            if not match:
                return None
            number = int(match.group(1))
        return number if number > 0 else None

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "EdgeQuery":
        return cls.model_validate(dict(params))

    def resolved_gender(self) -> str:
        """Gender with the route default: female for single lookups, male otherwise."""
        if self.gender:
            return self.gender
        return FEMALE if self.action == ACTION_METADATA else MALE


# =============================================================================
# Response shaping
# =============================================================================

def select_months(all_months: List[str], month: Optional[str], init: bool) -> List[str]:
    """
    Months to load for a request.

    - month given: [previous, month], or [month] if it is the first, or []
      if it is not in the index
    - init: the last two months
    - otherwise: every month
    """
    if month:
        if month not in all_months:
            return []
        position = all_months.index(month)
        if position == 0:
            return [month]
        return [all_months[position - 1], month]
    if init:
        return all_months[-2:]
    return list(all_months)


def sort_by_reference_month(
    records: List[MetricRecord],
    reference_month: Optional[str],
) -> List[MetricRecord]:
    """
    Stable sort, descending by count in the reference month.

    Records of other months sort as count 0, so they keep their relative order.
    """
    return sorted(
        records,
        key=lambda r: r.count if r.date == reference_month else 0,
        reverse=True,
    )


def limit_per_month(records: List[MetricRecord], limit: int) -> List[MetricRecord]:
    """First `limit` records of each month, months in first-seen order."""
    by_month: Dict[str, List[MetricRecord]] = {}
    for record in records:
        bucket = by_month.setdefault(record.date, [])
        if len(bucket) < limit:
            bucket.append(record)
    return [record for bucket in by_month.values() for record in bucket]


# =============================================================================
# Service
# =============================================================================

class EdgeService:
    """
    Stateless read endpoint logic over a ServerCache.

    Usage:
        service = EdgeService(server_cache)
        payload = await service.handle({"gender": "남자", "init": "true"})
    """

    def __init__(self, cache: ServerCache):
        self.cache = cache

    async def query(self, query: EdgeQuery) -> MetricsResponse:
        """
        Metrics lookup.

        Raises:
            SourceUnavailableError: if the origin is needed and unreachable
        """
        gender = query.resolved_gender()
        platform = query.sns

        all_months = await self.cache.month_index(gender, platform)
        requested = select_months(all_months, query.month, query.init)
        if query.month:
            logger.info(
                f"Specific month request: {query.month}, loading: {', '.join(requested)}"
            )

        records: List[MetricRecord] = []
        for month in requested:
            records.extend(await self.cache.month_data(gender, platform, month))

        data = records
        if query.sortByCount and records:
            reference = query.month or (all_months[-1] if all_months else None)
            data = sort_by_reference_month(data, reference)
            logger.info(f"Sorted by {reference} count")

        if query.limit:
            data = limit_per_month(data, query.limit)
            logger.info(f"Limiting to {query.limit} records per month, total: {len(data)}")

        return MetricsResponse(
            meta=ResponseMeta(allMonths=all_months, total=len(records), returned=len(data)),
            data=data,
        )

    async def metadata(self, name: Optional[str], gender: str) -> MetadataResponse:
        """
        Single subject lookup (name and gender compared after trimming).

        Raises:
            MetadataLookupError: if the sheet is empty or nothing matches
            SourceUnavailableError: if the metadata sheet is missing
        """
        rows = await self.cache.source.read_metadata_rows(gender)
        if len(rows) < 2:
            raise MetadataLookupError("idol_metadata sheet has no data")

        record = find_metadata(rows, (name or "").strip(), gender)
        if record is None:
            raise MetadataLookupError(f"'{name}' not found")

        logger.info(f"Metadata found for {name} ({gender})")
        return MetadataResponse(data=record)

    async def all_metadata(self, gender: str) -> AllMetadataResponse:
        return AllMetadataResponse(data=await self.cache.all_metadata(gender))

    async def handle(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Dispatch a request and serialize the result.

        Never raises: any failure becomes {"status": "error", "message"}.
        """
        try:
            query = EdgeQuery.from_params(params)
            gender = query.resolved_gender()

            if query.action == ACTION_METADATA:
                response = await self.metadata(query.name, gender)
                return {"status": response.status, "data": response.data.to_payload()}

            if query.action == ACTION_ALL_METADATA:
                response = await self.all_metadata(gender)
                return {
                    "status": response.status,
                    "data": [record.to_payload() for record in response.data],
                }

            return (await self.query(query)).to_payload()

        except Exception as e:
            logger.error(f"Read request failed: {e}")
            return ErrorResponse(message=str(e)).model_dump()
