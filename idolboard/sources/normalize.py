"""
Cell Normalization

Spreadsheet cells arrive in whatever shape the scraper wrote them:
- dates as real date objects, "2025.03", "2025/3", "2025-03", or strings
  that already start with "YYYY-MM"
- counts as numbers or strings with thousands separators

Everything is normalized here so both cache tiers agree on month keys.
"""

import math
import re
from datetime import date, datetime
from typing import Any, Callable, Dict, Tuple, Union
from zoneinfo import ZoneInfo


# Spreadsheet dates are formatted in KST (GMT+9)
SHEET_TIMEZONE = ZoneInfo("Asia/Seoul")

_MONTH_IN_TEXT = re.compile(r"(\d{4})[./\-](\d{1,2})")
MONTH_KEY = re.compile(r"^\d{4}-\d{2}$")


def normalize_month(value: Any) -> str:
    """
    Normalize a date cell into a "YYYY-MM" month key.

    Falls back to the first 7 characters, then to the raw text, so callers
    must still check the result against MONTH_KEY.
    """
    if value is None or value == "":
        return ""

    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(SHEET_TIMEZONE)
        return value.strftime("%Y-%m")
    if isinstance(value, date):
        return value.strftime("%Y-%m")

    text = str(value)
    match = _MONTH_IN_TEXT.search(text)
    if match:
        return f"{match.group(1)}-{match.group(2).zfill(2)}"
    if len(text) >= 7:
        return text[:7]
    return text


def is_month_key(value: str) -> bool:
    return bool(value) and bool(MONTH_KEY.match(value))


def memoized_month_normalizer() -> Callable[[Any], str]:
    """
    Return a normalize_month with a per-call memo.

    A full sheet scan repeats the same few dozen date values across
    thousands of rows.
    """
    memo: Dict[Tuple[type, str], str] = {}

    def normalize(value: Any) -> str:
        key = (type(value), str(value))
        cached = memo.get(key)
        if cached is None:
            cached = normalize_month(value)
            memo[key] = cached
        return cached

    return normalize


def parse_count(value: Any) -> Union[int, float]:
    """
    Parse a count cell, stripping thousands separators.

    Empty or non-numeric cells count as 0. Negative values are clamped to 0.
    """
    if value is None or value == "" or isinstance(value, bool):
        return 0

    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).replace(",", "").strip()
        if not text:
            return 0
        try:
            number = float(text)
        except ValueError:
            return 0

    if math.isnan(number) or math.isinf(number) or number < 0:
        return 0
    return int(number) if number.is_integer() else number
