"""
Bulwark API — Application Configuration
=========================================

What:  Centralized configuration management using Pydantic Settings.
How:   Pydantic Settings reads from environment variables (or .env file),
       validates types/ranges, and provides a singleton `settings` object.
Who:   Imported by every module that needs configuration values.
When:  Loaded once at module import time. A value out of range raises
       immediately, so a misconfigured process never starts serving traffic.

Groups:
    Application   APP_ENV, API_VERSION, BACKEND_HOST, BACKEND_PORT, LOG_LEVEL, CORS_ORIGINS
    Redis         REDIS_ENABLED, REDIS_HOST, REDIS_PORT, REDIS_PASSWORD, REDIS_DB, ...
    Rate limit    RATE_LIMIT_ENABLED, RATE_LIMIT_WINDOW, RATE_LIMIT_MAX_REQUESTS
    DDoS          DDOS_ENABLED, DDOS_WINDOW_SECONDS, DDOS_REQUEST_THRESHOLD,
                  DDOS_BLOCK_THRESHOLD, DDOS_BLOCK_DURATION, ...
"""

from typing import List

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings have sensible defaults for development. Attributes are
    grouped by concern for readability.
    """

    # ── Application ───────────────────────────────────────────────────────
    # Valid: development, test, production
    app_env: str = Field(default="development")
    api_version: str = Field(default="v1")

    # What: Allowed origins for cross-origin requests
    # Format: Comma-separated URLs (parsed by property below)
    cors_origins: str = Field(default="http://localhost:3000")

    @property
    def cors_origins_list(self) -> List[str]:
        """Splits comma-separated CORS origins into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def api_prefix(self) -> str:
        return f"/api/{self.api_version}"

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    # ── Server ────────────────────────────────────────────────────────────
    backend_host: str = Field(default="0.0.0.0")
    backend_port: int = Field(default=3000, ge=1024, le=65535)

    # Valid: DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensures log level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    @field_validator("app_env")
    @classmethod
    def validate_app_env(cls, v: str) -> str:
        lowered = v.strip().lower()
        if lowered not in {"development", "test", "production"}:
            raise ValueError(
                f"Invalid app_env '{v}'. Must be one of: development, test, production"
            )
        return lowered

    # ── Redis ─────────────────────────────────────────────────────────────
    # What: Shared counter store for multi-process abuse detection
    # When disabled (or unreachable) every process tracks clients locally
    redis_enabled: bool = Field(default=True)
    redis_host: str = Field(default="localhost")
    redis_port: int = Field(default=6379, ge=1, le=65535)
    redis_password: str = Field(default="")
    redis_db: int = Field(default=0, ge=0, le=15)

    # What: Socket-level connect timeout and startup connection attempts
    # Backoff between attempts grows exponentially, capped at 3 seconds
    redis_connect_timeout: float = Field(default=2.0, gt=0, le=30)
    redis_connect_attempts: int = Field(default=5, ge=1, le=10)

    @property
    def redis_url(self) -> str:
        auth = f":{self.redis_password}@" if self.redis_password else ""
        return f"redis://{auth}{self.redis_host}:{self.redis_port}/{self.redis_db}"

    # ── Rate Limiting ─────────────────────────────────────────────────────
    # What: Per-IP sliding window rate limit applied to every API request
    rate_limit_enabled: bool = Field(default=True)
    rate_limit_max_requests: int = Field(default=100, ge=1, le=100_000)
    rate_limit_window: int = Field(default=900, ge=1, le=86400)  # seconds

    # ── DDoS Detection ────────────────────────────────────────────────────
    # What: Two-tier per-client request counter (warn, then block)
    # request_threshold: count that flags a client as suspicious (still served)
    # block_threshold:   count that blocks the client for block_duration seconds
    ddos_enabled: bool = Field(default=True)
    ddos_window_seconds: int = Field(default=60, gt=0, le=86400)
    ddos_request_threshold: int = Field(default=100, gt=0)
    ddos_block_threshold: int = Field(default=200, gt=0)
    ddos_block_duration: int = Field(default=300, gt=0, le=604800)

    # What: Shared store usage for detection
    # store_timeout bounds each Redis call; a timeout counts as "store unavailable"
    ddos_use_shared_store: bool = Field(default=True)
    ddos_store_timeout: float = Field(default=0.25, gt=0, le=5)
    ddos_sweep_interval: float = Field(default=30.0, gt=0, le=3600)
    ddos_key_prefix: str = Field(default="ddos", min_length=1)

    @model_validator(mode="after")
    def validate_ddos_thresholds(self) -> "Settings":
        if self.ddos_block_threshold < self.ddos_request_threshold:
            raise ValueError(
                "DDOS_BLOCK_THRESHOLD "
                f"({self.ddos_block_threshold}) must be >= DDOS_REQUEST_THRESHOLD "
                f"({self.ddos_request_threshold})"
            )
        return self

    # ── Pydantic Settings Config ──────────────────────────────────────────
    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,  # DDOS_ENABLED and ddos_enabled both work
        "extra": "ignore",
    }


# Singleton instance, imported throughout the application
settings = Settings()
