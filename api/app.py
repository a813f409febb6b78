"""
Read Endpoint for the Idol SNS Dashboard

FastAPI application that:
1. Serves monthly metrics per (gender, platform) from the server cache
2. Serves single and bulk idol metadata lookups
3. Mounts cache management routes (health, stats, warming)

Every read response is JSON with HTTP 200 and open CORS; failures come back
as {"status": "error", "message"} rather than an HTTP error status.
"""

import logging
import sys

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.cache import router as cache_router
from api.deps import close_server_cache, get_edge_service
from idolboard import __version__
from idolboard.cache import headers_for
from idolboard.edge import EdgeService
from idolboard.models import ErrorResponse
from idolboard.sources import SourceUnavailableError
from idolboard.utils.config import get_settings

# Configure logging to stdout
logging.basicConfig(
    level=get_settings().LOG_LEVEL.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stdout,
    force=True,
)
logger = logging.getLogger(__name__)

# Quiet down chatty loggers
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

# Create FastAPI app
app = FastAPI(
    title="Idol SNS Dashboard API",
    description="Monthly idol SNS metrics with a two-tier cache",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.include_router(cache_router)


# ============================================================================
# LIFECYCLE
# ============================================================================

@app.on_event("shutdown")
async def shutdown_event():
    """Close the origin client and the Redis pool."""
    await close_server_cache()


@app.exception_handler(SourceUnavailableError)
async def source_unavailable_handler(request: Request, exc: SourceUnavailableError):
    """Origin not configured or unreachable before a request could start."""
    logger.error(f"Origin unavailable: {exc}")
    return JSONResponse(
        content=ErrorResponse(message=str(exc)).model_dump(),
        headers=headers_for("error"),
    )


# ============================================================================
# READ ENDPOINT
# ============================================================================

@app.get("/")
@app.get("/exec")
async def read_endpoint(
    request: Request,
    service: EdgeService = Depends(get_edge_service),
):
    """
    Metrics and metadata lookups.

    Query parameters: action, name, gender, sns, init, month, sortByCount,
    limit.
    """
    payload = await service.handle(request.query_params)
    preset = "metrics" if payload.get("status") == "success" else "error"
    return JSONResponse(content=payload, headers=headers_for(preset))
