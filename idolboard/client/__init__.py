"""
Dashboard client

Everything on the dashboard side of the read endpoint:
- EdgeClient: HTTP client for the read endpoint
- ClientPersistentCache: SQLite cache with per-collection TTLs
- DashboardOrchestrator: progressive loading and metadata prefetch
- build_ranking: growth rates, search and ranks for rendering
"""

from idolboard.client.edge_client import EdgeAPIError, EdgeClient, MetricsResult
from idolboard.client.orchestrator import (
    DashboardOrchestrator,
    LoadState,
    Renderer,
    WorkingSet,
)
from idolboard.client.ranking import (
    Growth,
    RankedItem,
    RankingView,
    build_ranking,
    compute_growth,
    format_year_month,
)
from idolboard.client.store import ClientPersistentCache

__all__ = [
    "ClientPersistentCache",
    "DashboardOrchestrator",
    "EdgeAPIError",
    "EdgeClient",
    "Growth",
    "LoadState",
    "MetricsResult",
    "RankedItem",
    "RankingView",
    "Renderer",
    "WorkingSet",
    "build_ranking",
    "compute_growth",
    "format_year_month",
]
