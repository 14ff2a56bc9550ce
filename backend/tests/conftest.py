"""
Bulwark API — Test Configuration (conftest.py)
================================================

What:  Shared pytest fixtures for the entire test suite.
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.

Fixtures:
    clock            FakeClock the detector reads instead of time.monotonic
    detector_config  Small thresholds: window 60s, suspicious at 3, block at 5, 300s block
    detector         AbuseDetector on local counters only
    fake_redis       In-memory stand-in for a redis.asyncio client
    make_client      Builds an httpx AsyncClient around create_app(detector)
"""

import os

# Settings are read at import time, so the environment comes first
os.environ["APP_ENV"] = "test"
os.environ["REDIS_ENABLED"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"

from typing import Any, Dict, List, Optional  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from bulwark.services.abuse_detector import AbuseDetector, DetectorConfig  # noqa: E402


# ══════════════════════════════════════════════════════════════════════════
# Test Doubles
# ══════════════════════════════════════════════════════════════════════════

class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePipeline:
    """Buffers set/delete calls and applies them on execute()."""

    def __init__(self, redis: "FakeRedis"):
        self._redis = redis
        self._ops: List[tuple] = []

    async def __aenter__(self) -> "FakePipeline":
        return self

    async def __aexit__(self, *exc_info) -> bool:
        return False

    def set(self, key: str, value: Any, ex: Optional[int] = None) -> "FakePipeline":
        self._ops.append(("set", key, value, ex))
        return self

    def delete(self, key: str) -> "FakePipeline":
        self._ops.append(("delete", key))
        return self

    async def execute(self) -> list:
        if self._redis.fail_with is not None:
            raise self._redis.fail_with
        results = []
        for op in self._ops:
            if op[0] == "set":
                _, key, value, ex = op
                self._redis.data[key] = str(value)
                self._redis.ttls[key] = ex
                results.append(True)
            else:
                _, key = op
                existed = self._redis.data.pop(key, None) is not None
                self._redis.ttls.pop(key, None)
                results.append(int(existed))
        return results


class FakeRedis:
    """
    Just enough of redis.asyncio.Redis for StoreBackedCounter.

    register_script() returns a coroutine function that mirrors the Lua
    increment script against `data`. TTLs are recorded in `ttls`; tests
    simulate expiry with expire_now().
    """

    def __init__(self):
        self.data: Dict[str, str] = {}
        self.ttls: Dict[str, Optional[int]] = {}
        self.registered: List[str] = []
        self.fail_with: Optional[BaseException] = None

    def register_script(self, source: str):
        self.registered.append(source)

        async def run(keys, args):
            if self.fail_with is not None:
                raise self.fail_with
            count_key, block_key = keys
            if block_key in self.data:
                return [int(self.data[block_key]), 1]
            count = int(self.data.get(count_key, 0)) + 1
            self.data[count_key] = str(count)
            if count == 1:
                self.ttls[count_key] = int(args[0])
            return [count, 0]

        return run

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)

    async def ping(self) -> bool:
        return True

    def expire_now(self, key: str) -> None:
        self.data.pop(key, None)
        self.ttls.pop(key, None)


# ══════════════════════════════════════════════════════════════════════════
# Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def detector_config() -> DetectorConfig:
    return DetectorConfig(
        window_seconds=60,
        request_threshold=3,
        block_threshold=5,
        block_duration=300,
    )


@pytest.fixture
def detector(detector_config, clock) -> AbuseDetector:
    return AbuseDetector(config=detector_config, clock=clock)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest_asyncio.fixture
async def make_client():
    """
    Factory for HTTPX clients talking to a fresh app.

    Usage:
        async def test_x(make_client, detector):
            client = await make_client(detector)
            response = await client.get("/api/v1/health/live")
    """
    from bulwark.main import create_app

    clients: List[AsyncClient] = []

    async def _make(detector: AbuseDetector) -> AsyncClient:
        app = create_app(detector)
        client = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
        clients.append(client)
        return client

    yield _make

    for client in clients:
        await client.aclose()
