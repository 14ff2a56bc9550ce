"""
Bulwark API — FastAPI Application Factory
===========================================

What:  Creates and configures the FastAPI application instance.
How:   Factory pattern: create_app() returns a configured FastAPI instance.
Who:   Called by uvicorn to start the server (uvicorn bulwark.main:app).
When:  Once at server startup; the returned app handles all subsequent requests.

Application Architecture:
    ┌──────────────────────────────────────────────────────────┐
    │                       FastAPI App                        │
    │                                                          │
    │  Middleware Chain:                                       │
    │  ┌────────────────┐ ┌────────────┐ ┌──────────────────┐  │
    │  │ DDoS Detection │→│ Rate Limit │→│ Activity Logging │  │
    │  └────────────────┘ └────────────┘ └──────────────────┘  │
    │                                                          │
    │  Routes:                                                 │
    │  ┌─────────────────────────────────────────────────────┐ │
    │  │ GET /api/v1/health  /health/live  /health/ready     │ │
    │  └─────────────────────────────────────────────────────┘ │
    │                                                          │
    │  Exception Handlers:                                     │
    │  ┌─────────────────────────────────────────────────────┐ │
    │  │ BulwarkError → code/status │ 404 │ Exception → 500  │ │
    │  └─────────────────────────────────────────────────────┘ │
    └──────────────────────────────────────────────────────────┘

Lifecycle:
    Build (create_app):
    1. Build the abuse detector from settings (ConfigurationError stops startup)

    Startup:
    1. Initialize logging
    2. Connect Redis (optional; failure leaves detection on local counters)
    3. Start the detector's sweep task

    Shutdown:
    1. Stop the sweep task
    2. Disconnect Redis
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from bulwark import __version__
from bulwark.config import settings
from bulwark.exceptions import BulwarkError
from bulwark.middleware.ddos import DDoSDetectionMiddleware
from bulwark.middleware.logging import ActivityLoggingMiddleware
from bulwark.middleware.rate_limit import RateLimitMiddleware
from bulwark.routes import health
from bulwark.services.abuse_detector import AbuseDetector
from bulwark.services.redis_service import redis_service
from bulwark.utils.response import error_response

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure logging for the entire application.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s
    Structured fields (ip, url, request_count, ...) travel on each record
    via `extra=` for handlers that serialize them.
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
        force=True,
    )

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("redis").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging()
    logger.info("=" * 60)
    logger.info("Bulwark API starting up (%s)...", settings.app_env)

    if settings.redis_enabled:
        await redis_service.connect()
    else:
        logger.info("Redis disabled; abuse detection uses in-memory tracking")

    detector: AbuseDetector = app.state.abuse_detector
    detector.start()
    logger.info(
        "DDoS detection %s (mode=%s, window=%ss, suspicious>=%d, block>=%d for %ss)",
        "enabled" if detector.config.enabled else "disabled",
        detector.mode,
        detector.config.window_seconds,
        detector.config.request_threshold,
        detector.config.block_threshold,
        detector.config.block_duration,
    )

    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("Bulwark API shutting down...")
    await detector.stop()
    await redis_service.disconnect()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def register_exception_handlers(app: FastAPI) -> None:
    """
    Register global exception handlers for consistent error responses.

    Handler hierarchy:
        BulwarkError (base)      → exc.status_code, error envelope
        HTTPException            → its status, error envelope (404 → NOT_FOUND)
        Exception (fallback)     → 500 INTERNAL_SERVER_ERROR

    Stack traces and exception context are logged, never returned.
    """

    @app.exception_handler(BulwarkError)
    async def handle_bulwark_error(request: Request, exc: BulwarkError):
        logger.error(
            "%s on %s %s: %s | Context: %s",
            exc.code,
            request.method,
            request.url.path,
            exc.message,
            exc.context,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=error_response(exc.code, exc.message),
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            body = error_response(
                "NOT_FOUND", f"Route {request.method} {request.url.path} not found"
            )
        else:
            body = error_response("HTTP_ERROR", str(exc.detail))
        return JSONResponse(status_code=exc.status_code, content=body, headers=exc.headers)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error(
            "Unexpected error on %s %s: %s",
            request.method,
            request.url.path,
            str(exc),
            exc_info=True,
        )
        details = {"message": str(exc)} if settings.is_development else None
        return JSONResponse(
            status_code=500,
            content=error_response(
                "INTERNAL_SERVER_ERROR", "An unexpected error occurred", details
            ),
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(detector: Optional[AbuseDetector] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        detector: Abuse detector to install. Built from settings (sharing
                  counters through Redis when enabled) when omitted.

    Raises:
        ConfigurationError: DDoS settings are unusable.
    """
    if detector is None:
        detector = AbuseDetector.from_settings(
            settings, client_provider=redis_service.get_client
        )

    app = FastAPI(
        title="Bulwark API",
        description=(
            "Request-protection layer: DDoS/abuse detection with shared or "
            "in-process counters, per-IP rate limiting and health probes."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.abuse_detector = detector

    # ── Register Middleware ───────────────────────────────────────────────
    # Middleware executes in REVERSE order of addition (last added = first to run):
    # DDoS → RateLimit → ActivityLogging → GZip → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "Retry-After",
            "RateLimit-Limit",
            "RateLimit-Remaining",
            "RateLimit-Reset",
        ],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(ActivityLoggingMiddleware)
    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(DDoSDetectionMiddleware, detector=detector)

    # ── Register Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app)

    # ── Register Routes ───────────────────────────────────────────────────
    app.include_router(health.router)

    return app


# ── Application Instance ─────────────────────────────────────────────────
# uvicorn expects `bulwark.main:app` to be importable
app = create_app()
