"""
Bulwark API — Abuse (DDoS) Detector
=====================================

What:  Classifies every inbound request as allowed, suspicious or blocked
       from a per-client request count over a fixed window.
How:   Counts live in Redis when it is configured and reachable, otherwise
       in a process-local map with the same semantics. A store failure or
       timeout only affects the evaluation in progress: that one call is
       counted locally and the request pipeline never sees an exception.
Who:   Created by the application factory, stored on app.state and driven
       by DDoSDetectionMiddleware once per request.
When:  Before rate limiting and before any route handler runs.

Two-tier thresholds (defaults: 60s window, 100 suspicious, 200 blocked):

    count  1 ─────────── 99 │ 100 ────────── 199 │ 200
           allowed           │ suspicious         │ blocked for block_duration
                             │ (warning, served)  │ (429 DDOS_DETECTED)

A blocked client is not counted while blocked. Once block_duration has
elapsed its record is gone and the next request opens a fresh window.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError, model_validator

from bulwark.exceptions import ConfigurationError, CounterStoreError
from bulwark.services.counters import (
    CounterBackend,
    CounterResult,
    LocalCounter,
    StoreBackedCounter,
)

logger = logging.getLogger(__name__)

# Placeholder identifier when the connection reports no source address.
# All such clients share one bucket.
UNKNOWN_CLIENT = "unknown"


class Verdict(str, Enum):
    ALLOWED = "allowed"
    SUSPICIOUS = "suspicious"
    BLOCKED = "blocked"


class DetectorConfig(BaseModel):
    """
    Validated detector configuration.

    Immutable: update_config() swaps in a new instance, so an evaluation
    already in progress keeps reading one consistent set of values.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    enabled: bool = True
    window_seconds: float = Field(default=60, gt=0)
    request_threshold: int = Field(default=100, gt=0)
    block_threshold: int = Field(default=200, gt=0)
    block_duration: float = Field(default=300, gt=0)
    use_shared_store: bool = True
    store_timeout: float = Field(default=0.25, gt=0)
    sweep_interval: float = Field(default=30, gt=0)

    @model_validator(mode="after")
    def check_threshold_order(self) -> "DetectorConfig":
        if self.block_threshold < self.request_threshold:
            raise ValueError(
                f"block_threshold ({self.block_threshold}) must be >= "
                f"request_threshold ({self.request_threshold})"
            )
        return self

    @classmethod
    def from_settings(cls, settings) -> "DetectorConfig":
        return build_config(
            enabled=settings.ddos_enabled,
            window_seconds=settings.ddos_window_seconds,
            request_threshold=settings.ddos_request_threshold,
            block_threshold=settings.ddos_block_threshold,
            block_duration=settings.ddos_block_duration,
            use_shared_store=settings.ddos_use_shared_store,
            store_timeout=settings.ddos_store_timeout,
            sweep_interval=settings.ddos_sweep_interval,
        )


def build_config(**values) -> DetectorConfig:
    """Build a DetectorConfig, reporting bad values as ConfigurationError."""
    try:
        return DetectorConfig(**values)
    except ValidationError as e:
        raise ConfigurationError(
            "Invalid abuse detector configuration",
            context={"errors": [err["msg"] for err in e.errors()]},
        ) from e


@dataclass(frozen=True)
class Evaluation:
    """Result of evaluating one request."""

    verdict: Verdict
    identifier: str
    count: int
    backend: str

    @property
    def blocked(self) -> bool:
        return self.verdict is Verdict.BLOCKED

    @property
    def suspicious(self) -> bool:
        return self.verdict is Verdict.SUSPICIOUS


class AbuseDetector:
    """
    Per-client sliding-window abuse detector.

    Args:
        config: Detector configuration (defaults used when omitted).
        store:  Shared counter backend, normally a StoreBackedCounter.
                None means local tracking only.
        clock:  Time source for the local counters. Monotonic by default so
                wall-clock adjustments never shorten or extend a window.

    Lifecycle:
        detector = AbuseDetector(config, store)
        detector.start()          # periodic sweep of expired local records
        await detector.evaluate(ip)
        detector.reset()          # drop all local state
        await detector.stop()     # cancel the sweep task
    """

    def __init__(
        self,
        config: Optional[DetectorConfig] = None,
        store: Optional[CounterBackend] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._config = config or DetectorConfig()
        self._clock = clock
        self._local = LocalCounter(self._config.window_seconds)
        self._store = store
        if self._store is not None:
            self._store.window_seconds = self._config.window_seconds
        self._sweeper: Optional[asyncio.Task] = None
        self.last_backend: Optional[str] = None

    @classmethod
    def from_settings(cls, settings, client_provider=None) -> "AbuseDetector":
        """
        Build a detector from application settings.

        A Redis-backed store is attached only when Redis is enabled and a
        client provider is supplied; otherwise tracking is local.

        Raises:
            ConfigurationError: thresholds or durations are unusable.
        """
        config = DetectorConfig.from_settings(settings)
        store = None
        if settings.redis_enabled and client_provider is not None:
            store = StoreBackedCounter(
                client_provider,
                window_seconds=config.window_seconds,
                key_prefix=settings.ddos_key_prefix,
            )
        return cls(config=config, store=store)

    # ── Configuration ─────────────────────────────────────────────────────

    @property
    def config(self) -> DetectorConfig:
        return self._config

    def update_config(self, **changes) -> DetectorConfig:
        """
        Apply a partial configuration update.

        Raises:
            ConfigurationError: the merged configuration is invalid; the
                previous configuration stays in effect.
        """
        new_config = build_config(**{**self._config.model_dump(), **changes})
        self._config = new_config
        self._local.window_seconds = new_config.window_seconds
        if self._store is not None:
            self._store.window_seconds = new_config.window_seconds
        logger.info("Abuse detector configuration updated: %s", changes)
        return new_config

    # ── State ─────────────────────────────────────────────────────────────

    @property
    def store_active(self) -> bool:
        return self._store is not None and self._config.use_shared_store

    @property
    def mode(self) -> str:
        if not self._config.enabled:
            return "disabled"
        return self._store.name if self.store_active else self._local.name

    @property
    def tracked_clients(self) -> int:
        return len(self._local)

    @property
    def local_counters(self) -> LocalCounter:
        return self._local

    def reset(self) -> None:
        self._local.clear()
        self.last_backend = None

    # ── Evaluation ────────────────────────────────────────────────────────

    async def evaluate(
        self, identifier: Optional[str], now: Optional[float] = None
    ) -> Evaluation:
        """
        Count one request from `identifier` and classify it.

        Never raises for store problems: a failing or slow store turns this
        call into a local evaluation.
        """
        config = self._config
        identifier = identifier or UNKNOWN_CLIENT

        if not config.enabled:
            return Evaluation(Verdict.ALLOWED, identifier, 0, "disabled")

        if now is None:
            now = self._clock()

        backend, result = await self._increment(identifier, now)
        self.last_backend = backend.name

        if result.blocked:
            return Evaluation(Verdict.BLOCKED, identifier, result.count, backend.name)

        if result.count >= config.block_threshold:
            until = now + config.block_duration
            backend = await self._mark_blocked(backend, identifier, until, now, result.count)
            logger.debug(
                "Client %s blocked until %.0f (%d requests, %s backend)",
                identifier,
                until,
                result.count,
                backend.name,
            )
            return Evaluation(Verdict.BLOCKED, identifier, result.count, backend.name)

        if result.count >= config.request_threshold:
            return Evaluation(Verdict.SUSPICIOUS, identifier, result.count, backend.name)

        return Evaluation(Verdict.ALLOWED, identifier, result.count, backend.name)

    async def _increment(
        self, identifier: str, now: float
    ) -> Tuple[CounterBackend, CounterResult]:
        if self.store_active:
            try:
                result = await asyncio.wait_for(
                    self._store.increment(identifier, now),
                    timeout=self._config.store_timeout,
                )
                return self._store, result
            except Exception as e:
                self._log_store_unavailable("increment", identifier, e)

        return self._local, await self._local.increment(identifier, now)

    async def _mark_blocked(
        self,
        backend: CounterBackend,
        identifier: str,
        until: float,
        now: float,
        count: int,
    ) -> CounterBackend:
        if backend is self._store:
            try:
                await asyncio.wait_for(
                    self._store.mark_blocked(identifier, until, now=now, count=count),
                    timeout=self._config.store_timeout,
                )
                return self._store
            except Exception as e:
                self._log_store_unavailable("mark_blocked", identifier, e)

        await self._local.mark_blocked(identifier, until, now=now, count=count)
        return self._local

    @staticmethod
    def _log_store_unavailable(operation: str, identifier: str, exc: Exception) -> None:
        if isinstance(exc, CounterStoreError):
            reason = exc.message
        elif isinstance(exc, asyncio.TimeoutError):
            reason = "timed out"
        else:
            reason = f"{type(exc).__name__}: {exc}"
        logger.debug(
            "Shared store unavailable for %s (%s), using in-memory tracking for %s",
            operation,
            reason,
            identifier,
        )

    # ── Expiry ────────────────────────────────────────────────────────────

    def sweep(self, now: Optional[float] = None) -> int:
        """Evict expired local records. Returns the number removed."""
        return self._local.sweep(self._clock() if now is None else now)

    def start(self) -> None:
        """Start the periodic sweep task on the running event loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(
                self._sweep_loop(), name="abuse-detector-sweep"
            )

    async def stop(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.sweep_interval)
            self.sweep()
