"""Origin data sources: the spreadsheet the dashboard reads from."""

from idolboard.sources.base import (
    FEMALE,
    GENDERS,
    MALE,
    InMemoryOriginSource,
    OriginDataSource,
    SourceUnavailableError,
    metadata_sheet_for,
    opposite_gender,
)
from idolboard.sources.google_sheets import GoogleSheetsSource
from idolboard.sources.normalize import normalize_month, parse_count

__all__ = [
    "FEMALE",
    "GENDERS",
    "MALE",
    "GoogleSheetsSource",
    "InMemoryOriginSource",
    "OriginDataSource",
    "SourceUnavailableError",
    "metadata_sheet_for",
    "normalize_month",
    "opposite_gender",
    "parse_count",
]
