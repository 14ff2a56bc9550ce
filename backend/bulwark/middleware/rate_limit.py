"""
Bulwark API — Rate Limiting Middleware
========================================

What:  Per-IP sliding window rate limiter for the whole API.
How:   Tracks request timestamps per IP in memory. On each request,
       timestamps older than the window are discarded; if the remaining
       count has reached the limit the request is rejected with 429.
Who:   Applied to every request via Starlette middleware.
When:  After DDoS detection, before request logging and the routes.

Defaults: 100 requests per IP per 15 minutes (RATE_LIMIT_MAX_REQUESTS,
RATE_LIMIT_WINDOW).

Response headers (IETF draft "RateLimit" fields):
    RateLimit-Limit:      configured maximum per window
    RateLimit-Remaining:  requests left in the current window
    RateLimit-Reset:      seconds until the oldest counted request leaves the window
    Retry-After:          on 429 only

Algorithm: Sliding Window Log
    Time complexity:  O(k) per request, k = requests in window (amortized O(1))
    Space complexity: O(n × k), n = active IPs

This limiter is per process. Multi-process coordination is the abuse
detector's job (it can share counters through Redis).
"""

import logging
import time
from collections import defaultdict, deque
from typing import Deque, Dict, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from bulwark.config import settings
from bulwark.exceptions import RateLimitExceededError
from bulwark.utils.client import client_ip
from bulwark.utils.response import status_error

logger = logging.getLogger(__name__)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    In-memory sliding window rate limiter.

    Configuration (constructor, falling back to settings):
        max_requests: Max requests per window (default: 100)
        window:       Window duration in seconds (default: 900 = 15 minutes)
        enabled:      When False every request passes straight through

    Excluded paths:
        - health probes, so load balancers are never throttled
        - /docs, /openapi.json, /redoc

    Thread Safety:
        Safe for single-process async (uvicorn): the check and the append
        happen with no await in between.
    """

    EXCLUDED_PATHS = {"/docs", "/openapi.json", "/redoc"}

    # Inactive IPs are pruned every CLEANUP_EVERY recorded requests
    CLEANUP_EVERY = 1000

    def __init__(
        self,
        app,
        max_requests: Optional[int] = None,
        window: Optional[int] = None,
        enabled: Optional[bool] = None,
        **kwargs,
    ):
        super().__init__(app, **kwargs)
        self.max_requests = max_requests or settings.rate_limit_max_requests
        self.window = window or settings.rate_limit_window
        self.enabled = settings.rate_limit_enabled if enabled is None else enabled
        self._health_prefix = f"{settings.api_prefix}/health"
        self._requests: Dict[str, Deque[float]] = defaultdict(deque)
        self._recorded = 0

    def _is_excluded(self, path: str) -> bool:
        return path in self.EXCLUDED_PATHS or path.startswith(self._health_prefix)

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if not self.enabled or self._is_excluded(request.url.path):
            return await call_next(request)

        ip = client_ip(request)
        now = time.time()
        window_start = now - self.window

        # ── Sliding Window: drop timestamps outside the window ────────────
        timestamps = self._requests[ip]
        while timestamps and timestamps[0] <= window_start:
            timestamps.popleft()

        # ── Check rate limit ──────────────────────────────────────────────
        if len(timestamps) >= self.max_requests:
            retry_after = int(timestamps[0] + self.window - now) + 1

            logger.warning(
                "Rate limit exceeded",
                extra={
                    "ip": ip,
                    "url": request.url.path,
                    "method": request.method,
                    "user_agent": request.headers.get("user-agent", ""),
                },
            )

            exc = RateLimitExceededError(retry_after=retry_after)
            return JSONResponse(
                status_code=exc.status_code,
                content=status_error(exc.code, exc.message),
                headers={
                    "Retry-After": str(retry_after),
                    **self._limit_headers(remaining=0, reset=retry_after),
                },
            )

        # ── Record this request ───────────────────────────────────────────
        timestamps.append(now)
        self._recorded += 1
        if self._recorded % self.CLEANUP_EVERY == 0:
            self._cleanup_inactive_ips(window_start)

        reset = int(timestamps[0] + self.window - now) + 1
        remaining = self.max_requests - len(timestamps)

        response = await call_next(request)
        response.headers.update(self._limit_headers(remaining=remaining, reset=reset))
        return response

    def _limit_headers(self, remaining: int, reset: int) -> Dict[str, str]:
        return {
            "RateLimit-Limit": str(self.max_requests),
            "RateLimit-Remaining": str(max(0, remaining)),
            "RateLimit-Reset": str(max(0, reset)),
        }

    def _cleanup_inactive_ips(self, window_start: float) -> None:
        """Remove IPs that have no requests within the current window."""
        inactive_ips = [
            ip for ip, timestamps in self._requests.items()
            if not timestamps or timestamps[-1] <= window_start
        ]
        for ip in inactive_ips:
            del self._requests[ip]

        if inactive_ips:
            logger.debug("Cleaned up %d inactive IP entries", len(inactive_ips))
