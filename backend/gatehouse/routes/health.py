"""
Gatehouse Backend: Health Check Route
=====================================

What:  GET /api/health for load balancers and container probes.
How:   Exempt from rate limiting and CSRF; never logged by the access log.
       The service has no external dependencies, so being able to answer
       is the health signal.
"""

import time
from datetime import datetime, timezone

from fastapi import APIRouter

from gatehouse import __version__
from gatehouse.schemas.auth import HealthResponse

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get("/api/health", response_model=HealthResponse, summary="Service health check")
async def health_check() -> HealthResponse:
    return HealthResponse(
        status="ok",
        version=__version__,
        uptime_seconds=round(time.time() - _start_time, 2),
        timestamp=datetime.now(timezone.utc),
    )
