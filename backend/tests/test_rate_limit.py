"""
Bulwark API — Rate Limit Middleware Tests
===========================================

What:  Per-IP sliding window limiter in isolation.
How:   A bare FastAPI app with only RateLimitMiddleware installed.
"""

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from bulwark.middleware.rate_limit import RateLimitMiddleware


def _build_app(**limiter_kwargs) -> FastAPI:
    app = FastAPI()
    app.add_middleware(RateLimitMiddleware, **limiter_kwargs)

    @app.get("/ping")
    async def ping():
        return {"pong": True}

    @app.get("/api/v1/health/live")
    async def live():
        return {"status": "alive"}

    return app


async def _client(app: FastAPI) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_allows_up_to_limit_with_headers():
    async with await _client(_build_app(max_requests=2, window=60, enabled=True)) as client:
        first = await client.get("/ping")
        second = await client.get("/ping")

    assert first.status_code == 200
    assert first.headers["RateLimit-Limit"] == "2"
    assert first.headers["RateLimit-Remaining"] == "1"
    assert second.headers["RateLimit-Remaining"] == "0"
    assert 0 < int(second.headers["RateLimit-Reset"]) <= 61


@pytest.mark.asyncio
async def test_rejects_over_limit():
    async with await _client(_build_app(max_requests=2, window=60, enabled=True)) as client:
        for _ in range(2):
            await client.get("/ping")
        response = await client.get("/ping")

    assert response.status_code == 429
    assert response.json() == {
        "status": "error",
        "code": "RATE_LIMIT_EXCEEDED",
        "message": "Too many requests from this IP, please try again later.",
    }
    assert 0 < int(response.headers["Retry-After"]) <= 61
    assert response.headers["RateLimit-Remaining"] == "0"


@pytest.mark.asyncio
async def test_health_probes_are_not_limited():
    async with await _client(_build_app(max_requests=1, window=60, enabled=True)) as client:
        statuses = [(await client.get("/api/v1/health/live")).status_code for _ in range(5)]

    assert statuses == [200] * 5


@pytest.mark.asyncio
async def test_disabled_limiter_passes_through():
    async with await _client(_build_app(max_requests=1, window=60, enabled=False)) as client:
        responses = [await client.get("/ping") for _ in range(5)]

    assert [r.status_code for r in responses] == [200] * 5
    assert "RateLimit-Limit" not in responses[0].headers
