"""
Bulwark API — Health Schemas
==============================

What:  Pydantic models for the health probe payloads.
Who:   Built by routes/health.py and wrapped in the success envelope
       ({"success": true, "data": ..., "meta": {...}}).
"""

from typing import Dict, Optional

from pydantic import BaseModel, Field


class DetectorStatus(BaseModel):
    """Abuse detector state as seen by this process."""

    enabled: bool = Field(description="Whether DDoS detection is active")
    mode: str = Field(description="Configured counter backend: redis, local, disabled")
    last_backend: Optional[str] = Field(
        default=None,
        description="Backend that served the most recent evaluation (local after a store fallback)",
    )
    tracked_clients: int = Field(description="Client identifiers held in process memory")
    window_seconds: float
    request_threshold: int
    block_threshold: int
    block_duration: float


class HealthStatus(BaseModel):
    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str = Field(description="Application version")
    uptime_seconds: float = Field(description="Seconds since service started")
    services: Dict[str, str] = Field(
        description="Dependency status, e.g. {'redis': 'connected' | 'disconnected' | 'disabled'}"
    )
    detector: Optional[DetectorStatus] = None


class LivenessStatus(BaseModel):
    status: str = "alive"


class ReadinessStatus(BaseModel):
    ready: bool
    checks: Dict[str, bool]
