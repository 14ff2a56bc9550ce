"""
Bulwark API — Custom Exception Hierarchy
==========================================

What:  Application-specific exceptions for the request-protection layer.
How:   Each exception carries a message, a machine-readable code and an
       optional context dict. Global exception handlers (registered in
       main.py) turn them into structured JSON error responses.
Who:   Raised by services and routes and caught by the global handlers.
       CounterStoreError is caught by the abuse detector itself. The 429
       errors supply code and message to the middleware that rejects the
       request, since middleware responses bypass the exception handlers.

Exception Hierarchy:
    BulwarkError (base)                 → 500
    ├── ConfigurationError              → raised at startup only
    ├── CounterStoreError               → never user-visible (local fallback)
    ├── RateLimitExceededError          → 429 RATE_LIMIT_EXCEEDED
    └── AbuseDetectedError              → 429 DDOS_DETECTED
"""

from typing import Any, Dict, Optional


class BulwarkError(Exception):
    """
    Base exception for all Bulwark application errors.

    Attributes:
        message:      User-facing error description (safe to return in API response)
        context:      Additional debug info (logged but NOT returned to client)
        code:         Machine-readable error code used in response bodies
        status_code:  HTTP status the global handler responds with
    """

    code = "INTERNAL_SERVER_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ConfigurationError(BulwarkError):
    """
    Raised when configuration values are unusable.

    When:    Building a component from settings, or updating its config at
             runtime with invalid values. Never raised per request.
    """

    code = "CONFIGURATION_ERROR"

    def __init__(
        self,
        message: str = "Invalid configuration",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class CounterStoreError(BulwarkError):
    """
    Raised when the shared counter store (Redis) cannot serve a call.

    What:    Connection refused, not connected, timeout, or a malformed reply.
    Recovery:
        The abuse detector catches this, logs it at DEBUG and evaluates the
        request against its process-local counters instead. It never reaches
        an HTTP client.
    """

    code = "COUNTER_STORE_UNAVAILABLE"
    status_code = 503

    def __init__(
        self,
        message: str = "Shared counter store is unavailable",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class RateLimitExceededError(BulwarkError):
    """
    Raised when a client exceeds the per-IP request rate limit.

    HTTP:    429 Too Many Requests, with a Retry-After header.
    """

    code = "RATE_LIMIT_EXCEEDED"
    status_code = 429

    def __init__(
        self,
        retry_after: int = 60,
        message: str = "Too many requests from this IP, please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class AbuseDetectedError(BulwarkError):
    """
    Raised when a client is (or has just been) blocked by the abuse detector.

    HTTP:    429 Too Many Requests
    Body:    {"status": "error", "code": "DDOS_DETECTED", "message": "..."}
    """

    code = "DDOS_DETECTED"
    status_code = 429

    def __init__(
        self,
        identifier: str = "unknown",
        count: int = 0,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["identifier"] = identifier
        ctx["count"] = count
        super().__init__(
            message="Too many requests. You have been temporarily blocked.",
            context=ctx,
        )
        self.identifier = identifier
        self.count = count
