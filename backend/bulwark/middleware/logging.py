"""
Bulwark API — Activity Logging Middleware
===========================================

What:  Logs inbound requests and their outcomes.
How:   Measures the time spent downstream and picks a level from the
       environment, the status code and the duration.
Who:   Applied to every request via Starlette middleware.
When:  After DDoS detection and rate limiting (rejected requests are logged
       by those middlewares themselves).

Policy:
    development:          only problems are logged
                          (status >= 400, or slower than SLOW_REQUEST_MS)
    test / production:    "Incoming request" and "Outgoing response" at INFO
                          for every request, plus the problems above

    5xx → ERROR, 4xx or slow → WARNING, everything else → INFO

Request bodies and auth headers are never logged.
"""

import logging
import time
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from bulwark.config import settings
from bulwark.utils.client import client_ip

logger = logging.getLogger("bulwark.access")

SLOW_REQUEST_MS = 1000


class ActivityLoggingMiddleware(BaseHTTPMiddleware):
    """
    Request/response activity log.

    Args:
        verbose: Log every request and response at INFO. Defaults to True
                 outside development.
    """

    def __init__(self, app, verbose: Optional[bool] = None, **kwargs):
        super().__init__(app, **kwargs)
        self.verbose = (not settings.is_development) if verbose is None else verbose

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        start_time = time.perf_counter()
        ip = client_ip(request)
        method = request.method
        path = request.url.path

        if self.verbose:
            logger.info(
                "Incoming request",
                extra={
                    "method": method,
                    "url": path,
                    "ip": ip,
                    "user_agent": request.headers.get("user-agent", ""),
                    "content_type": request.headers.get("content-type", ""),
                },
            )

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        status = response.status_code
        is_slow = duration_ms > SLOW_REQUEST_MS

        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400 or is_slow:
            log_level = logging.WARNING
        elif self.verbose:
            log_level = logging.INFO
        else:
            return response

        logger.log(
            log_level,
            "%s %s %d %.1fms from %s",
            method,
            path,
            status,
            duration_ms,
            ip,
            extra={
                "method": method,
                "url": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "ip": ip,
                "content_length": response.headers.get("content-length"),
            },
        )

        return response
