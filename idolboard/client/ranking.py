"""
Ranking View

Turns the working set into the ranked list the dashboard renders:
per-subject current/base counts, growth against the base month, search
filtering and competition ranks.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from idolboard.models import MetricRecord


GROWTH_UNDEFINED = "-"

_WHITESPACE = re.compile(r"\s")


@dataclass(frozen=True)
class Growth:
    """Growth rate as displayed ("12.50", "-100", "-") plus its numeric value."""
    display: str
    value: float = 0.0

    @property
    def defined(self) -> bool:
        return self.display != GROWTH_UNDEFINED


def compute_growth(current: float, base: float, same_month: bool = False) -> Growth:
    """
    Month-over-month growth in percent.

    Undefined when there is no earlier month to compare with or the base
    count is 0. A subject that dropped to 0 from a positive base is -100.
    """
    if same_month or base == 0:
        return Growth(GROWTH_UNDEFINED)
    if current > 0 and base > 0:
        value = (current - base) / base * 100
        return Growth(f"{value:.2f}", value)
    if current == 0 and base > 0:
        return Growth("-100", -100.0)
    return Growth(GROWTH_UNDEFINED)


def base_month_for(months: List[str], target_month: str) -> str:
    """The month before target_month in the index, or target_month itself."""
    if target_month in months:
        position = months.index(target_month)
        if position > 0:
            return months[position - 1]
    return target_month


def format_year_month(month: Optional[str]) -> str:
    """'2025-11' -> '25년11월'. Anything else is returned unchanged."""
    if not month:
        return ""
    parts = month.split("-")
    if len(parts) != 2 or not parts[1].isdigit():
        return month
    return f"{parts[0][2:]}년{int(parts[1])}월"


def _squash(text: str) -> str:
    return _WHITESPACE.sub("", text.lower())


@dataclass
class RankedItem:
    name: str
    group: str
    current: float = 0
    base: float = 0
    growth: Growth = field(default_factory=lambda: Growth(GROWTH_UNDEFINED))
    rank: int = 0


@dataclass
class RankingView:
    """Everything the renderer needs for one month of one selection."""
    target_month: str
    base_month: str
    items: List[RankedItem] = field(default_factory=list)

    @property
    def base_label(self) -> str:
        return format_year_month(self.base_month)

    @property
    def names(self) -> List[str]:
        return [item.name for item in self.items]


def build_ranking(
    records: List[MetricRecord],
    months: List[str],
    target_month: str,
    search: str = "",
) -> RankingView:
    """
    Rank subjects by their count in target_month.

    Subjects with neither a current nor a base count are dropped. Search
    ignores whitespace and case and matches name or group. Equal counts share
    a rank and the next distinct count skips ahead (1, 2, 2, 4).
    """
    base_month = base_month_for(months, target_month)
    same_month = base_month == target_month

    by_name: Dict[str, RankedItem] = {}
    for record in records:
        item = by_name.get(record.name)
        if item is None:
            item = by_name[record.name] = RankedItem(name=record.name, group=record.group)
        if record.date == target_month:
            item.current = record.count
        if record.date == base_month:
            item.base = record.count

    term = _squash(search.strip())
    items = []
    for item in by_name.values():
        if not (item.current > 0 or item.base > 0):
            continue
        if term and term not in _squash(item.name) and term not in _squash(item.group):
            continue
        item.growth = compute_growth(item.current, item.base, same_month)
        items.append(item)

    items.sort(key=lambda i: i.current, reverse=True)

    for index, item in enumerate(items):
        if index > 0 and item.current == items[index - 1].current:
            item.rank = items[index - 1].rank
        else:
            item.rank = index + 1

    return RankingView(target_month=target_month, base_month=base_month, items=items)
