"""
Pytest Configuration and Shared Fixtures

Provides a small origin dataset, a controllable clock, and a read endpoint
wired to an in-memory server cache through httpx.MockTransport so client
tests exercise the real request/response path.
"""

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
import pytest

from idolboard.cache import CacheConfig, MemoryEntryStore, ServerCache
from idolboard.edge import EdgeService
from idolboard.sources import InMemoryOriginSource


EDGE_URL = "http://edge.test/exec"


# ============================================================================
# Clock
# ============================================================================

class FakeClock:
    """Callable clock whose time only moves when a test says so."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ============================================================================
# Origin data
# ============================================================================

METADATA_HEADER = ["name", "group", "gender", "agency"]


@pytest.fixture
def metric_rows() -> List[List[Any]]:
    """Metric sheet rows (header removed) with mixed date and count formats."""
    return [
        ["강다니엘", "솔로", "남자", "웨이보", "2025-01-15", "1,200"],
        ["강다니엘", "솔로", "남자", "웨이보", datetime(2025, 2, 3), 1500],
        ["뷔", "BTS", "남자", "웨이보", "2025-02", 2000],
        ["뷔", "BTS", "남자", "웨이보", "2025.03", 3000],
        ["강다니엘", "솔로", "남자", "웨이보", "2025/3/1", 1000],
        ["지민", "BTS", "남자", "웨이보", "2025-03", 3000],
        ["장원영", "IVE", "여자", "웨이보", "2025-02", 4000],
        ["장원영", "IVE", "여자", "웨이보", "2025-03", 5000],
        ["강다니엘", "솔로", "남자", "유튜브", "2024-12", 800],
        ["강다니엘", "솔로", "남자", "유튜브", "2025-01", 900],
    ]


@pytest.fixture
def metadata_sheets() -> Dict[str, List[List[Any]]]:
    return {
        "boygroup": [
            METADATA_HEADER,
            ["강다니엘", "솔로", "남자", "KONNECT"],
            [" 뷔 ", "BTS", "남자", "BIGHIT"],
        ],
        "girlgroup": [
            METADATA_HEADER,
            ["장원영", "IVE", "여자", "Starship"],
        ],
    }


@pytest.fixture
def source(metric_rows, metadata_sheets) -> InMemoryOriginSource:
    return InMemoryOriginSource(metric_rows, metadata_sheets)


@pytest.fixture
def cache_config() -> CacheConfig:
    return CacheConfig(circuit_breaker_enabled=False)


@pytest.fixture
def server_cache(source, cache_config, clock) -> ServerCache:
    return ServerCache(source, MemoryEntryStore(), config=cache_config, clock=clock)


@pytest.fixture
def edge_service(server_cache) -> EdgeService:
    return EdgeService(server_cache)


# ============================================================================
# Read endpoint over MockTransport
# ============================================================================

class EdgeTransport:
    """
    Routes httpx requests to an EdgeService and records their parameters.

    `gate` holds back matching requests until released, so tests can
    interleave concurrent loads deterministically.
    """

    def __init__(self, service: EdgeService):
        self.service = service
        self.requests: List[Dict[str, str]] = []
        self.gate: Optional[asyncio.Event] = None
        self.gate_match: Dict[str, str] = {}
        self.gate_reached = asyncio.Event()

    def hold(self, **match: str) -> asyncio.Event:
        self.gate = asyncio.Event()
        self.gate_match = match
        self.gate_reached = asyncio.Event()
        return self.gate

    def _gated(self, params: Dict[str, str]) -> bool:
        if self.gate is None:
            return False
        for name, value in self.gate_match.items():
            if value is None and name in params:
                return False
            if value is not None and params.get(name) != value:
                return False
        return True

    async def handler(self, request: httpx.Request) -> httpx.Response:
        params = dict(request.url.params)
        self.requests.append(params)
        if self._gated(params):
            self.gate_reached.set()
            await self.gate.wait()
        payload = await self.service.handle(params)
        return httpx.Response(200, json=payload)

    def metric_requests(self) -> List[Dict[str, str]]:
        return [p for p in self.requests if "action" not in p]

    def full_requests(self) -> List[Dict[str, str]]:
        return [p for p in self.metric_requests() if "limit" not in p]


@pytest.fixture
def edge_transport(edge_service) -> EdgeTransport:
    return EdgeTransport(edge_service)


@pytest.fixture
async def edge_client(edge_transport):
    from idolboard.client import EdgeClient

    http = httpx.AsyncClient(transport=httpx.MockTransport(edge_transport.handler))
    client = EdgeClient(base_url=EDGE_URL, client=http)
    yield client
    await http.aclose()
