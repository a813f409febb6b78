"""
Record Schemas

Tagged record types that cross the network and storage boundaries:
- MetricRecord: one subject's count for one calendar month
- MetadataRecord: one subject's profile row from the metadata sheet
- MetricsResponse / ErrorResponse: read endpoint payloads

Payloads are validated on the way in (deserialize) so a malformed entry is
rejected and logged instead of leaking missing fields into rendering.
"""

import logging
import re
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


logger = logging.getLogger(__name__)

MONTH_PATTERN = re.compile(r"^\d{4}-\d{2}$")


class RecordValidationError(ValueError):
    """Raised when a payload does not match its record schema."""

    def __init__(self, message: str, kind: str = "record"):
        super().__init__(message)
        self.kind = kind


class MetricRecord(BaseModel):
    """A subject's count for one month. Immutable once produced."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["metric"] = "metric"
    name: str
    group: str = ""
    date: str = Field(..., description="Calendar month, YYYY-MM")
    count: float = Field(default=0, ge=0)

    @field_validator("name", "group", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("count")
    @classmethod
    def _integral_count(cls, value: float) -> float:
        # Keep integral counts as ints so they serialize the way they were read
        return int(value) if float(value).is_integer() else value

    def to_payload(self) -> Dict[str, Any]:
        """Wire shape: {name, group, date, count}."""
        return {
            "name": self.name,
            "group": self.group,
            "date": self.date,
            "count": self.count,
        }


class MetadataRecord(BaseModel):
    """
    Profile row for one subject.

    The metadata sheet is free-form (its header row names the columns), so
    every extra column is kept as-is.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    kind: Literal["metadata"] = "metadata"
    name: str
    group: str = ""
    gender: str = ""

    @field_validator("name", "group", "gender", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> str:
        return "" if value is None else str(value)

    def to_payload(self) -> Dict[str, Any]:
        """Wire shape: header name -> cell value."""
        return self.model_dump(exclude={"kind"})


class ResponseMeta(BaseModel):
    allMonths: List[str] = Field(default_factory=list)
    total: int = 0
    returned: int = 0


class MetricsResponse(BaseModel):
    """Successful read endpoint response."""

    status: Literal["success"] = "success"
    meta: ResponseMeta
    data: List[MetricRecord] = Field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "meta": self.meta.model_dump(),
            "data": [record.to_payload() for record in self.data],
        }


class MetadataResponse(BaseModel):
    """Single-subject metadata lookup response."""

    status: Literal["success"] = "success"
    data: MetadataRecord


class AllMetadataResponse(BaseModel):
    """Bulk metadata lookup response."""

    status: Literal["success"] = "success"
    data: List[MetadataRecord] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    status: Literal["error"] = "error"
    message: str


# =============================================================================
# Boundary helpers
# =============================================================================

def parse_metric_records(payload: Any) -> List[MetricRecord]:
    """
    Validate a list of raw dicts into MetricRecords.

    Raises:
        RecordValidationError: if the payload is not a list or any item is
            malformed. The whole batch is rejected; partial batches would
            replace a month's slice with incomplete data.
    """
    if not isinstance(payload, list):
        raise RecordValidationError(
            f"Expected a list of metric records, got {type(payload).__name__}",
            kind="metric",
        )
    try:
        records = [MetricRecord.model_validate(item) for item in payload]
    except ValidationError as e:
        raise RecordValidationError(f"Invalid metric record: {e}", kind="metric") from e

    for record in records:
        if not MONTH_PATTERN.match(record.date):
            raise RecordValidationError(
                f"Invalid month '{record.date}' for {record.name}",
                kind="metric",
            )
    return records


def parse_month_index(payload: Any) -> List[str]:
    """Validate a month index: ascending, distinct YYYY-MM strings."""
    if not isinstance(payload, list) or not all(isinstance(m, str) for m in payload):
        raise RecordValidationError("Month index must be a list of strings", kind="months")
    for month in payload:
        if not MONTH_PATTERN.match(month):
            raise RecordValidationError(f"Invalid month '{month}' in index", kind="months")
    if any(a >= b for a, b in zip(payload, payload[1:])):
        raise RecordValidationError("Month index is not strictly ascending", kind="months")
    return list(payload)


def parse_metadata_record(payload: Any) -> MetadataRecord:
    if not isinstance(payload, dict):
        raise RecordValidationError("Metadata record must be an object", kind="metadata")
    try:
        return MetadataRecord.model_validate(payload)
    except ValidationError as e:
        raise RecordValidationError(f"Invalid metadata record: {e}", kind="metadata") from e


def parse_metadata_records(payload: Any) -> List[MetadataRecord]:
    if not isinstance(payload, list):
        raise RecordValidationError("Metadata list must be an array", kind="metadata")
    return [parse_metadata_record(item) for item in payload]
