"""
Google Sheets Origin Source

Reads the origin spreadsheets through the Sheets v4 `values` endpoint:
- One full-range read per call (the source has no delta reads)
- Date cells read as serial numbers and converted to datetimes, numbers
  unformatted
- Missing sheets/spreadsheets surface as SourceUnavailableError
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import httpx

from idolboard.sources.base import (
    BOYGROUP_SHEET,
    COL_DATE,
    GIRLGROUP_SHEET,
    OriginDataSource,
    SourceUnavailableError,
    metadata_sheet_for,
)
from idolboard.utils.config import Settings, get_settings


logger = logging.getLogger(__name__)

# Day zero of spreadsheet serial dates
SERIAL_EPOCH = datetime(1899, 12, 30)


def serial_to_datetime(value: Any) -> Any:
    """Spreadsheet serial number -> datetime; anything else passes through."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return value
    return SERIAL_EPOCH + timedelta(days=value)


class GoogleSheetsSource(OriginDataSource):
    """
    Async reader for the metric and metadata spreadsheets.

    Usage:
        source = GoogleSheetsSource.from_settings()
        rows = await source.read_metric_rows()
        await source.close()
    """

    BASE_URL = "https://sheets.googleapis.com/v4/spreadsheets"

    def __init__(
        self,
        api_key: str,
        metrics_spreadsheet_id: str,
        metadata_spreadsheet_ids: Dict[str, str],
        metrics_sheet: str = "sns_data",
        metadata_sheet: str = "idol_metadata",
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__()
        self.api_key = api_key
        self.metrics_spreadsheet_id = metrics_spreadsheet_id
        self.metadata_spreadsheet_ids = metadata_spreadsheet_ids
        self.metrics_sheet = metrics_sheet
        self.metadata_sheet = metadata_sheet
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self.BASE_URL,
            timeout=httpx.Timeout(timeout),
        )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "GoogleSheetsSource":
        settings = settings or get_settings()
        if not settings.GOOGLE_SHEETS_API_KEY:
            raise SourceUnavailableError("GOOGLE_SHEETS_API_KEY is not configured")
        return cls(
            api_key=settings.GOOGLE_SHEETS_API_KEY,
            metrics_spreadsheet_id=settings.METRICS_SPREADSHEET_ID,
            metadata_spreadsheet_ids={
                GIRLGROUP_SHEET: settings.GIRLGROUP_SPREADSHEET_ID,
                BOYGROUP_SHEET: settings.BOYGROUP_SPREADSHEET_ID,
            },
            metrics_sheet=settings.METRICS_SHEET_NAME,
            metadata_sheet=settings.METADATA_SHEET_NAME,
            timeout=float(settings.API_TIMEOUT),
        )

    async def _get_values(self, spreadsheet_id: str, sheet: str) -> List[List[Any]]:
        """Fetch every populated row of a sheet, padded to the widest row."""
        url = f"/{spreadsheet_id}/values/{sheet}"
        params = {
            "key": self.api_key,
            "valueRenderOption": "UNFORMATTED_VALUE",
            "dateTimeRenderOption": "SERIAL_NUMBER",
            "majorDimension": "ROWS",
        }
        logger.debug(f"GET {url}")

        try:
            response = await self._client.get(url, params=params)
        except httpx.HTTPError as e:
            raise SourceUnavailableError(f"Sheet read failed for {sheet}: {e}", sheet=sheet) from e

        if response.status_code in (400, 404):
            raise SourceUnavailableError(f"{sheet} sheet not found", sheet=sheet)
        if response.status_code != 200:
            raise SourceUnavailableError(
                f"Sheet read failed for {sheet}: HTTP {response.status_code}",
                sheet=sheet,
            )

        rows = response.json().get("values", [])
        width = max((len(row) for row in rows), default=0)
        return [row + [""] * (width - len(row)) for row in rows]

    async def read_metric_rows(self) -> List[List[Any]]:
        rows = await self._get_values(self.metrics_spreadsheet_id, self.metrics_sheet)
        self.reads += 1
        logger.info(f"Read {max(len(rows) - 1, 0)} rows from {self.metrics_sheet}")
        body = rows[1:]
        for row in body:
            if len(row) > COL_DATE:
                row[COL_DATE] = serial_to_datetime(row[COL_DATE])
        return body

    async def read_metadata_rows(self, gender: str) -> List[List[Any]]:
        sheet_key = metadata_sheet_for(gender)
        spreadsheet_id = self.metadata_spreadsheet_ids.get(sheet_key)
        if not spreadsheet_id:
            raise SourceUnavailableError(f"Spreadsheet id not found: {sheet_key}", sheet=sheet_key)
        return await self._get_values(spreadsheet_id, self.metadata_sheet)

    async def close(self):
        if self._owns_client:
            await self._client.aclose()
