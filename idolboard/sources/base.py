"""
Origin Data Source

The spreadsheet is the sole source of truth. It is read in full on every
cache-miss scan; no incremental read exists.

Metric rows have a fixed column order:
    name, group, gender, platform, date, count

Metadata lives in a separate spreadsheet per gender bucket, in a sheet whose
header row names the columns.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional


logger = logging.getLogger(__name__)

FEMALE = "여자"
MALE = "남자"
GENDERS = [MALE, FEMALE]

GIRLGROUP_SHEET = "girlgroup"
BOYGROUP_SHEET = "boygroup"

# Column positions in the metric sheet
COL_NAME = 0
COL_GROUP = 1
COL_GENDER = 2
COL_PLATFORM = 3
COL_DATE = 4
COL_COUNT = 5


class SourceUnavailableError(Exception):
    """The origin spreadsheet or a required sheet is missing or unreachable."""

    def __init__(self, message: str, sheet: Optional[str] = None):
        super().__init__(message)
        self.sheet = sheet


def metadata_sheet_for(gender: str) -> str:
    """Girl-group spreadsheet for the female bucket, boy-group otherwise."""
    return GIRLGROUP_SHEET if gender == FEMALE else BOYGROUP_SHEET


def opposite_gender(gender: str) -> str:
    return FEMALE if gender == MALE else MALE


class OriginDataSource(ABC):
    """
    Read-only access to the origin spreadsheet.

    Implementations count full reads in `reads` so callers (and tests) can
    verify the one-scan-per-invocation discipline of the cache warmer.
    """

    def __init__(self):
        self.reads = 0

    @abstractmethod
    async def read_metric_rows(self) -> List[List[Any]]:
        """
        Read every metric row, header removed.

        Raises:
            SourceUnavailableError: if the metric sheet is missing
        """

    @abstractmethod
    async def read_metadata_rows(self, gender: str) -> List[List[Any]]:
        """
        Read the metadata sheet for a gender bucket, header row first.

        Raises:
            SourceUnavailableError: if the spreadsheet or sheet is missing
        """

    async def close(self):
        """Release any held resources."""


class InMemoryOriginSource(OriginDataSource):
    """
    Origin source backed by lists of rows.

    Used for local runs from exported data and for tests. `metric_rows`
    excludes the header; each metadata sheet includes its header row.
    Passing None for metric_rows simulates a missing metric sheet.
    """

    def __init__(
        self,
        metric_rows: Optional[List[List[Any]]] = None,
        metadata_sheets: Optional[Dict[str, List[List[Any]]]] = None,
    ):
        super().__init__()
        self.metric_rows = metric_rows
        self.metadata_sheets = metadata_sheets or {}

    async def read_metric_rows(self) -> List[List[Any]]:
        if self.metric_rows is None:
            raise SourceUnavailableError("sns_data sheet not found", sheet="sns_data")
        self.reads += 1
        return [list(row) for row in self.metric_rows]

    async def read_metadata_rows(self, gender: str) -> List[List[Any]]:
        sheet_key = metadata_sheet_for(gender)
        rows = self.metadata_sheets.get(sheet_key)
        if rows is None:
            raise SourceUnavailableError(
                f"idol_metadata sheet not found ({sheet_key})",
                sheet=sheet_key,
            )
        return [list(row) for row in rows]
