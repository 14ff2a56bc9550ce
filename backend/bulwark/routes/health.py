"""
Bulwark API — Health Check Routes
===================================

What:  Health, liveness and readiness probes.
Who:   Docker health checks, load balancers, monitoring.

Status levels (GET /health):
    healthy:    Redis connected (or disabled on purpose), detector running
    degraded:   Redis enabled but unreachable; abuse detection continues on
                per-process counters (HTTP 200)
    unhealthy:  detector missing (HTTP 503)

Readiness (GET /health/ready) is 503 while an enabled Redis is unreachable,
so orchestrators can hold traffic until the shared store is back.
"""

import logging
import time
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from bulwark import __version__
from bulwark.config import settings
from bulwark.schemas.health import (
    DetectorStatus,
    HealthStatus,
    LivenessStatus,
    ReadinessStatus,
)
from bulwark.services.abuse_detector import AbuseDetector
from bulwark.services.redis_service import redis_service
from bulwark.utils.response import api_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix=f"{settings.api_prefix}/health", tags=["Health"])

_start_time = time.time()


def _detector(request: Request) -> Optional[AbuseDetector]:
    return getattr(request.app.state, "abuse_detector", None)


async def _redis_status() -> str:
    if not settings.redis_enabled:
        return "disabled"
    return "connected" if await redis_service.health_check() else "disconnected"


def _detector_status(detector: AbuseDetector) -> DetectorStatus:
    config = detector.config
    return DetectorStatus(
        enabled=config.enabled,
        mode=detector.mode,
        last_backend=detector.last_backend,
        tracked_clients=detector.tracked_clients,
        window_seconds=config.window_seconds,
        request_threshold=config.request_threshold,
        block_threshold=config.block_threshold,
        block_duration=config.block_duration,
    )


@router.get("", summary="Service health check")
async def health_check(request: Request) -> JSONResponse:
    """Report Redis connectivity and abuse detector state."""
    redis_status = await _redis_status()
    detector = _detector(request)

    if detector is None:
        overall = "unhealthy"
    elif redis_status == "disconnected":
        overall = "degraded"
        logger.warning("Health check: Redis unreachable, detector using in-memory tracking")
    else:
        overall = "healthy"

    health = HealthStatus(
        status=overall,
        version=__version__,
        uptime_seconds=round(time.time() - _start_time, 2),
        services={"redis": redis_status},
        detector=_detector_status(detector) if detector is not None else None,
    )
    return JSONResponse(
        status_code=503 if overall == "unhealthy" else 200,
        content=api_response(health.model_dump()),
    )


@router.get("/live", summary="Liveness probe")
async def liveness() -> JSONResponse:
    return JSONResponse(status_code=200, content=api_response(LivenessStatus().model_dump()))


@router.get("/ready", summary="Readiness probe")
async def readiness(request: Request) -> JSONResponse:
    redis_status = await _redis_status()
    checks = {
        "redis": redis_status != "disconnected",
        "detector": _detector(request) is not None,
    }
    ready = all(checks.values())
    return JSONResponse(
        status_code=200 if ready else 503,
        content=api_response(ReadinessStatus(ready=ready, checks=checks).model_dump()),
    )
