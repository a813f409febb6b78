"""Read endpoint logic: query parsing, month selection and response shaping."""

from idolboard.edge.service import (
    EdgeQuery,
    EdgeService,
    MetadataLookupError,
    limit_per_month,
    select_months,
    sort_by_reference_month,
)

__all__ = [
    "EdgeQuery",
    "EdgeService",
    "MetadataLookupError",
    "limit_per_month",
    "select_months",
    "sort_by_reference_month",
]
