"""
Riffle Backend — Health Check Route
=====================================

What:  GET /health: liveness plus database reachability.
Who:   Container health checks, load balancers, and the offline client's
       connectivity probe (any answer below 500 counts as "online").

Status:
    healthy   database answered SELECT 1         → 200
    unhealthy database unreachable               → 503
"""

import logging
import time

from fastapi import APIRouter, Response
from sqlalchemy import text

from riffle import __version__
from riffle.database import engine
from riffle.schemas.journal import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check(response: Response) -> HealthResponse:
    db_status = "connected"
    overall = "healthy"
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        db_status = "disconnected"
        overall = "unhealthy"
        response.status_code = 503
        logger.warning("Health check: database unreachable: %s", str(e))

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
