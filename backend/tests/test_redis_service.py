"""
Bulwark API — Redis Service Unit Tests
========================================

What:  Connection lifecycle of RedisService.
How:   redis.from_url is patched so no server is needed.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from bulwark.exceptions import CounterStoreError
from bulwark.services.redis_service import RedisService

FROM_URL = "bulwark.services.redis_service.redis.from_url"


def _client(ping_side_effect=None):
    client = MagicMock()
    client.ping = AsyncMock(return_value=True, side_effect=ping_side_effect)
    client.aclose = AsyncMock()
    return client


@pytest.fixture
def service():
    return RedisService("redis://localhost:6379/0", connect_timeout=0.1, max_attempts=2)


def test_get_client_without_connection_raises(service):
    assert not service.connected
    with pytest.raises(CounterStoreError, match="not connected"):
        service.get_client()


@pytest.mark.asyncio
async def test_connect_success(service):
    client = _client()
    with patch(FROM_URL, return_value=client) as from_url:
        assert await service.connect() is True

    assert service.connected
    assert service.get_client() is client
    assert from_url.call_args.kwargs["decode_responses"] is True


@pytest.mark.asyncio
async def test_connect_gives_up_after_max_attempts(service):
    clients = [_client(RedisConnectionError("refused")) for _ in range(2)]
    with patch(FROM_URL, side_effect=clients) as from_url:
        assert await service.connect() is False

    assert from_url.call_count == 2
    assert not service.connected
    for client in clients:
        client.aclose.assert_awaited_once()


@pytest.mark.asyncio
async def test_connect_recovers_on_retry(service):
    failing = _client(RedisConnectionError("refused"))
    healthy = _client()
    with patch(FROM_URL, side_effect=[failing, healthy]):
        assert await service.connect() is True

    assert service.get_client() is healthy


@pytest.mark.asyncio
async def test_disconnect_closes_client(service):
    client = _client()
    with patch(FROM_URL, return_value=client):
        await service.connect()

    await service.disconnect()

    client.aclose.assert_awaited_once()
    assert not service.connected
    # Second call is a no-op
    await service.disconnect()


@pytest.mark.asyncio
async def test_health_check(service):
    assert await service.health_check() is False

    client = _client()
    with patch(FROM_URL, return_value=client):
        await service.connect()
    assert await service.health_check() is True

    client.ping.side_effect = RedisConnectionError("gone")
    assert await service.health_check() is False
