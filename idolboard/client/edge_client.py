"""
Read Endpoint Client

Async HTTP client the dashboard uses to reach the read endpoint:
- Metrics by (gender, platform) with init/month/limit/sortByCount
- Single and bulk idol metadata

Every failure (network, non-2xx, {"status": "error"}, schema mismatch)
surfaces as EdgeAPIError. There is no retry; the next user action or
scheduled load is the retry.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from idolboard.models import (
    MetadataRecord,
    MetricRecord,
    RecordValidationError,
    parse_metadata_record,
    parse_metadata_records,
    parse_metric_records,
    parse_month_index,
)
from idolboard.utils.config import get_settings


logger = logging.getLogger(__name__)


class EdgeAPIError(Exception):
    """Read endpoint call failed; safe to retry later."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class MetricsResult:
    """Validated metrics response."""
    all_months: List[str]
    total: int
    returned: int
    records: List[MetricRecord] = field(default_factory=list)


class EdgeClient:
    """
    Async client for the read endpoint.

    Usage:
        client = EdgeClient()
        result = await client.fetch_metrics("남자", "웨이보", init=True, limit=10,
                                            sort_by_count=True)
        await client.close()
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url or get_settings().EDGE_API_URL
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    async def _get(self, params: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self._client.get(self.base_url, params=params)
        except httpx.HTTPError as e:
            raise EdgeAPIError(f"Request failed: {e}") from e

        if response.status_code >= 400:
            raise EdgeAPIError(
                f"HTTP {response.status_code} from read endpoint",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise EdgeAPIError(f"Invalid JSON from read endpoint: {e}") from e

        if not isinstance(payload, dict):
            raise EdgeAPIError("Unexpected response shape")
        if payload.get("status") != "success":
            raise EdgeAPIError(payload.get("message") or "Unknown error")
        return payload

    async def fetch_metrics(
        self,
        gender: str,
        platform: str,
        init: bool = False,
        month: Optional[str] = None,
        limit: Optional[int] = None,
        sort_by_count: bool = False,
    ) -> MetricsResult:
        """
        Metrics lookup.

        Raises:
            EdgeAPIError
        """
        params: Dict[str, Any] = {"gender": gender, "sns": platform}
        if init:
            params["init"] = "true"
        if month:
            params["month"] = month
        if limit:
            params["limit"] = limit
        if sort_by_count:
            params["sortByCount"] = "true"

        payload = await self._get(params)
        meta = payload.get("meta") or {}
        try:
            records = parse_metric_records(payload.get("data"))
            all_months = parse_month_index(meta.get("allMonths", []))
        except RecordValidationError as e:
            logger.warning(f"Rejected metrics response for {gender}/{platform}: {e}")
            raise EdgeAPIError(str(e)) from e

        return MetricsResult(
            all_months=all_months,
            total=int(meta.get("total", len(records))),
            returned=int(meta.get("returned", len(records))),
            records=records,
        )

    async def fetch_metadata(self, name: str, gender: str) -> MetadataRecord:
        payload = await self._get({"action": "metadata", "name": name, "gender": gender})
        try:
            return parse_metadata_record(payload.get("data"))
        except RecordValidationError as e:
            raise EdgeAPIError(str(e)) from e

    async def fetch_all_metadata(self, gender: str) -> List[MetadataRecord]:
        payload = await self._get({"action": "allMetadata", "gender": gender})
        try:
            return parse_metadata_records(payload.get("data"))
        except RecordValidationError as e:
            raise EdgeAPIError(str(e)) from e

    async def close(self):
        if self._owns_client:
            await self._client.aclose()
