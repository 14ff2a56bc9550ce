"""
Bulwark API — DDoS Detection Middleware
=========================================

What:  Runs the abuse detector on every request and enforces its verdict.
How:   allowed     → request continues untouched
       suspicious  → WARNING event, request continues
       blocked     → ERROR event, 429 DDOS_DETECTED, route never runs
Who:   Applied to every request via Starlette middleware.
When:  First in the middleware chain.

Blocked response:
    HTTP 429
    {"status": "error", "code": "DDOS_DETECTED",
     "message": "Too many requests. You have been temporarily blocked."}
"""

import logging

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from bulwark.exceptions import AbuseDetectedError
from bulwark.services.abuse_detector import AbuseDetector
from bulwark.utils.client import client_ip
from bulwark.utils.response import status_error

logger = logging.getLogger(__name__)


class DDoSDetectionMiddleware(BaseHTTPMiddleware):
    """
    Enforces AbuseDetector verdicts.

    Args:
        detector: The application's detector instance (shared with the
                  health routes through app.state).
    """

    def __init__(self, app, detector: AbuseDetector, **kwargs):
        super().__init__(app, **kwargs)
        self.detector = detector

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        ip = client_ip(request)
        result = await self.detector.evaluate(ip)

        if result.blocked:
            fields = self._event_fields(request, ip, result.count)
            fields["threshold"] = self.detector.config.block_threshold
            logger.error("DDoS: Request blocked", extra=fields)
            exc = AbuseDetectedError(identifier=ip, count=result.count)
            return JSONResponse(
                status_code=exc.status_code,
                content=status_error(exc.code, exc.message),
            )

        if result.suspicious:
            fields = self._event_fields(request, ip, result.count)
            fields["threshold"] = self.detector.config.request_threshold
            logger.warning("DDoS: Suspicious activity detected", extra=fields)

        return await call_next(request)

    @staticmethod
    def _event_fields(request: Request, ip: str, count: int) -> dict:
        return {
            "ip": ip,
            "url": str(request.url.path),
            "method": request.method,
            "request_count": count,
            "user_agent": request.headers.get("user-agent", ""),
        }
