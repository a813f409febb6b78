"""
Cache Management API

Provides endpoints for cache monitoring and manual warming.

Endpoints:
- Health check for monitoring/alerting
- Statistics for hit rate and skipped writes
- Manual warming for a set of platforms/genders (optionally one year)
- Manual run of one scheduled warming job
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel, Field

from api.deps import get_cache_warmer, get_server_cache
from idolboard.cache import PLATFORMS, CacheWarmer, ServerCache, run_scheduled_job
from idolboard.cache.warming import get_job
from idolboard.sources import GENDERS


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/cache", tags=["Cache Management"])


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class CacheHealthResponse(BaseModel):
    """Cache health check response."""
    status: str = Field(..., description="healthy or unhealthy")
    backend: str = Field(..., description="Store status reported by the cache")
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class CacheStatsResponse(BaseModel):
    """Server cache statistics response."""
    hits: int
    misses: int
    hit_rate: float
    writes: int
    skipped_oversize: int
    write_errors: int


class WarmRequest(BaseModel):
    """Manual warming request."""
    platforms: List[str] = Field(default_factory=lambda: list(PLATFORMS))
    genders: List[str] = Field(default_factory=lambda: list(GENDERS))
    year: Optional[str] = Field(
        default=None,
        pattern=r"^\d{4}$",
        description="Only refresh this year's months (month index is not written)",
    )


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("/health", response_model=CacheHealthResponse)
async def cache_health_check(cache: ServerCache = Depends(get_server_cache)):
    """
    Check cache infrastructure health.

    Use this endpoint for monitoring and alerting systems.
    """
    health = await cache.health_check()

    return CacheHealthResponse(
        status="healthy" if health["healthy"] else "unhealthy",
        backend=health["status"],
        details=health,
        timestamp=datetime.utcnow(),
    )


@router.get("/stats", response_model=CacheStatsResponse)
async def get_cache_stats(cache: ServerCache = Depends(get_server_cache)):
    """
    Get current cache statistics.

    Note: Stats are reset on application restart.
    """
    return CacheStatsResponse(**cache.stats())


@router.post("/warm")
async def warm_cache(
    request: WarmRequest,
    background_tasks: BackgroundTasks,
    warmer: CacheWarmer = Depends(get_cache_warmer),
):
    """
    Warm the server cache in the background.

    One origin scan covers every requested (gender, platform) pair.
    """
    async def warm_task():
        try:
            await warmer.warm(request.platforms, request.genders, year=request.year)
        except Exception as e:
            logger.error(f"Manual cache warming failed: {e}")

    background_tasks.add_task(warm_task)

    return {
        "status": "warming_started",
        "platforms": request.platforms,
        "genders": request.genders,
        "year": request.year,
    }


@router.post("/warm/job/{job_name}")
async def warm_scheduled_job(
    job_name: str,
    background_tasks: BackgroundTasks,
    warmer: CacheWarmer = Depends(get_cache_warmer),
):
    """
    Run one entry of the daily warming schedule (e.g. youtube_male_2025).

    Failures alert the operator by email.
    """
    try:
        job = get_job(job_name)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown warming job: {job_name}")

    async def job_task():
        try:
            await run_scheduled_job(job, warmer)
        except Exception as e:
            logger.error(f"Scheduled job {job.name} failed: {e}")

    background_tasks.add_task(job_task)

    return {"status": "warming_started", "job": job.name, "label": job.label}
