"""
Bulwark API — Per-Client Request Counters
===========================================

What:  Storage strategies for the abuse detector's per-client counters.
How:   One interface (CounterBackend), two variants:
         - StoreBackedCounter: counters live in Redis, expiry via key TTLs,
           shared by every worker process and instance
         - LocalCounter: counters live in a dict owned by this process,
           expiry via lazy eviction on access plus a periodic sweep
Who:   Owned and driven by AbuseDetector; nothing else reads these counters.

Counter lifecycle (per identifier):
    Unseen ──first request──▶ Counting(window_start, 1)
    Counting ──request in window──▶ Counting(window_start, count + 1)
    Counting ──window elapsed──▶ Counting(now, 1)
    Counting ──marked blocked──▶ Blocked(until)
    Blocked ──now >= until──▶ Unseen (record removed)

Redis key layout:
    <prefix>:count:<identifier>   integer, TTL = window_seconds
    <prefix>:block:<identifier>   request count at block time, TTL = block_duration
"""

import logging
import math
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, NamedTuple, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from bulwark.exceptions import CounterStoreError

logger = logging.getLogger(__name__)


@dataclass
class ClientCounter:
    """Tracking record for one client identifier in the current window."""

    identifier: str
    count: int
    window_start: float
    blocked: bool = False
    blocked_until: Optional[float] = None

    def window_expired(self, now: float, window_seconds: float) -> bool:
        return now - self.window_start >= window_seconds

    def block_expired(self, now: float) -> bool:
        return self.blocked_until is not None and now >= self.blocked_until

    def is_stale(self, now: float, window_seconds: float) -> bool:
        """True once the record can be dropped without changing any verdict."""
        if self.blocked:
            return self.block_expired(now)
        return self.window_expired(now, window_seconds)


class CounterResult(NamedTuple):
    """Outcome of one increment: running count and whether the client is blocked."""

    count: int
    blocked: bool


class CounterBackend(ABC):
    """
    Contract shared by the counter strategies.

    Contract:
        - increment() never counts a request from a blocked client; it reports
          blocked=True with the count recorded when the block started
        - increment() starts a fresh window (count=1) when none is active
        - mark_blocked() blocks the client until `until` and discards its
          window, so the first request after the block starts at count=1
        - Implementations that talk to a remote store raise CounterStoreError
          and nothing else on failure
    """

    name: str = "abstract"

    def __init__(self, window_seconds: float):
        self.window_seconds = window_seconds

    @abstractmethod
    async def increment(self, identifier: str, now: float) -> CounterResult:
        ...

    @abstractmethod
    async def mark_blocked(
        self, identifier: str, until: float, *, now: float, count: int
    ) -> None:
        ...

    def sweep(self, now: float) -> int:
        """Evict expired records. Returns how many were removed."""
        return 0


# ══════════════════════════════════════════════════════════════════════════
# Process-Local Counters
# ══════════════════════════════════════════════════════════════════════════

class LocalCounter(CounterBackend):
    """
    In-memory counters for a single process.

    Thread Safety:
        Every read-modify-write holds `_lock`. On the event loop no method
        awaits while holding it, so two concurrent evaluations for the same
        identifier always serialize to N+1 then N+2. The lock also covers
        code running in a threadpool.

    Memory:
        Stale records are dropped when their identifier is seen again and by
        sweep(), which AbuseDetector calls on a fixed interval.
    """

    name = "local"

    def __init__(self, window_seconds: float):
        super().__init__(window_seconds)
        self._counters: Dict[str, ClientCounter] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._counters)

    def get(self, identifier: str) -> Optional[ClientCounter]:
        return self._counters.get(identifier)

    async def increment(self, identifier: str, now: float) -> CounterResult:
        with self._lock:
            counter = self._counters.get(identifier)

            if counter is not None and counter.is_stale(now, self.window_seconds):
                del self._counters[identifier]
                counter = None

            if counter is not None and counter.blocked:
                return CounterResult(counter.count, True)

            if counter is None:
                counter = ClientCounter(identifier=identifier, count=1, window_start=now)
                self._counters[identifier] = counter
            else:
                counter.count += 1

            return CounterResult(counter.count, False)

    async def mark_blocked(
        self, identifier: str, until: float, *, now: float, count: int
    ) -> None:
        with self._lock:
            counter = self._counters.get(identifier)
            if counter is None:
                counter = ClientCounter(identifier=identifier, count=count, window_start=now)
                self._counters[identifier] = counter
            counter.blocked = True
            counter.blocked_until = until

    def sweep(self, now: float) -> int:
        with self._lock:
            stale = [
                identifier
                for identifier, counter in self._counters.items()
                if counter.is_stale(now, self.window_seconds)
            ]
            for identifier in stale:
                del self._counters[identifier]

        if stale:
            logger.debug("Evicted %d expired client counters", len(stale))
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._counters.clear()


# ══════════════════════════════════════════════════════════════════════════
# Redis-Backed Counters
# ══════════════════════════════════════════════════════════════════════════

# Blocked check + INCR + first-hit EXPIRE in one atomic round trip.
# Returns {count, blocked_flag}.
_INCREMENT_SCRIPT = """
local blocked = redis.call('GET', KEYS[2])
if blocked then
  return {tonumber(blocked) or 0, 1}
end
local count = redis.call('INCR', KEYS[1])
if count == 1 or redis.call('TTL', KEYS[1]) < 0 then
  redis.call('EXPIRE', KEYS[1], ARGV[1])
end
return {count, 0}
"""


class StoreBackedCounter(CounterBackend):
    """
    Counters kept in Redis so every worker sees the same totals.

    Args:
        client_provider: Returns the connected client, or raises
                         CounterStoreError when there is none
                         (RedisService.get_client).
        window_seconds:  TTL of the count key.
        key_prefix:      Namespace for this component's keys.

    Expiry is entirely Redis's job: the count key lives for one window from
    the client's first request, the block key for block_duration.
    """

    name = "redis"

    def __init__(
        self,
        client_provider: Callable[[], Redis],
        window_seconds: float,
        key_prefix: str = "ddos",
    ):
        super().__init__(window_seconds)
        self._client_provider = client_provider
        self.key_prefix = key_prefix
        self._script = None
        self._script_client: Optional[Redis] = None

    def count_key(self, identifier: str) -> str:
        return f"{self.key_prefix}:count:{identifier}"

    def block_key(self, identifier: str) -> str:
        return f"{self.key_prefix}:block:{identifier}"

    def _increment_script(self, client: Redis):
        # Re-register after a reconnect hands us a different client
        if self._script is None or self._script_client is not client:
            self._script = client.register_script(_INCREMENT_SCRIPT)
            self._script_client = client
        return self._script

    async def increment(self, identifier: str, now: float) -> CounterResult:
        try:
            client = self._client_provider()
            script = self._increment_script(client)
            count, blocked = await script(
                keys=[self.count_key(identifier), self.block_key(identifier)],
                args=[max(1, math.ceil(self.window_seconds))],
            )
            return CounterResult(int(count), bool(int(blocked)))
        except (RedisError, OSError, ValueError, TypeError) as e:
            raise CounterStoreError(
                "Redis increment failed",
                context={"identifier": identifier, "error": str(e)},
            ) from e

    async def mark_blocked(
        self, identifier: str, until: float, *, now: float, count: int
    ) -> None:
        ttl = max(1, math.ceil(until - now))
        try:
            client = self._client_provider()
            async with client.pipeline(transaction=True) as pipe:
                pipe.set(self.block_key(identifier), count, ex=ttl)
                pipe.delete(self.count_key(identifier))
                await pipe.execute()
        except (RedisError, OSError) as e:
            raise CounterStoreError(
                "Redis block write failed",
                context={"identifier": identifier, "error": str(e)},
            ) from e
