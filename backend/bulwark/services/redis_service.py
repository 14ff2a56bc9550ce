"""
Bulwark API — Redis Connection Service
========================================

What:  Owns the process's single async Redis client.
How:   connect() retries with exponential backoff (tenacity), capped at 3s
       between attempts. get_client() hands the live client to callers or
       raises CounterStoreError when there is none.
Who:   Connected by the application lifespan; used by StoreBackedCounter
       and the health routes.

Redis is optional for this service. A failed connect is logged and the
application keeps running with process-local abuse tracking.
"""

import logging
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError
from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from bulwark.config import settings
from bulwark.exceptions import CounterStoreError

logger = logging.getLogger(__name__)


class RedisService:
    """Lazily connected wrapper around a redis.asyncio client."""

    def __init__(
        self,
        url: str,
        connect_timeout: float = 2.0,
        max_attempts: int = 5,
    ):
        self._url = url
        self._connect_timeout = connect_timeout
        self._max_attempts = max_attempts
        self._client: Optional[redis.Redis] = None

    @property
    def connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> bool:
        """
        Connect and verify with PING.

        Returns:
            True when connected; False when every attempt failed. Failures
            are logged, never raised.
        """
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type((RedisError, OSError)),
                stop=stop_after_attempt(self._max_attempts),
                wait=wait_exponential(multiplier=0.1, max=3),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=False,
            ):
                with attempt:
                    client = redis.from_url(
                        self._url,
                        decode_responses=True,
                        socket_connect_timeout=self._connect_timeout,
                        socket_timeout=self._connect_timeout,
                    )
                    try:
                        await client.ping()
                    except (RedisError, OSError):
                        await client.aclose()
                        raise
                    self._client = client
        except RetryError as e:
            logger.warning(
                "Redis unavailable after %d attempts (%s); falling back to in-memory tracking",
                self._max_attempts,
                e.last_attempt.exception() if e.last_attempt else "unknown error",
            )
            return False

        logger.info("Redis connected successfully")
        return True

    async def disconnect(self) -> None:
        if self._client is None:
            return
        client, self._client = self._client, None
        try:
            await client.aclose()
            logger.info("Redis disconnected")
        except (RedisError, OSError) as e:
            logger.error("Redis disconnect failed: %s", str(e))

    def get_client(self) -> redis.Redis:
        if self._client is None:
            raise CounterStoreError("Redis not connected")
        return self._client

    async def health_check(self) -> bool:
        if self._client is None:
            return False
        try:
            return bool(await self._client.ping())
        except (RedisError, OSError) as e:
            logger.warning("Redis health check failed: %s", str(e))
            return False


redis_service = RedisService(
    settings.redis_url,
    connect_timeout=settings.redis_connect_timeout,
    max_attempts=settings.redis_connect_attempts,
)
