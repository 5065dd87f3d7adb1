from __future__ import annotations

from functools import lru_cache

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseConfig(BaseModel):
    """Database connection configuration."""

    dsn: str = Field(default="sqlite:///payflow.db")
    echo: bool = Field(default=False)


class IdempotencyConfig(BaseModel):
    """Local retry budget for store contention on the request path."""

    max_retries: int = Field(default=3, ge=0, le=10)
    retry_base_seconds: float = Field(default=0.05, ge=0.0, le=5.0)


class RelayConfig(BaseModel):
    """Polling, lease and retry knobs for the outbox relay."""

    batch_size: int = Field(default=50, ge=1, le=1000)
    poll_interval_seconds: float = Field(default=1.0, gt=0.0, le=300.0)
    claim_ttl_seconds: float = Field(default=60.0, gt=0.0, le=3600.0)
    request_timeout_seconds: float = Field(default=5.0, gt=0.0, le=120.0)
    max_attempts: int = Field(default=12, ge=1, le=100)
    backoff_base_seconds: float = Field(default=1.0, gt=0.0)
    backoff_cap_seconds: float = Field(default=300.0, gt=0.0)
    fanout_workers: int = Field(default=8, ge=1, le=64)
    workers: int = Field(default=1, ge=1, le=32)

    @model_validator(mode="after")
    def _check_bounds(self) -> "RelayConfig":
        if self.backoff_cap_seconds < self.backoff_base_seconds:
            raise ValueError("CONFIG_BACKOFF_INVALID|backoff cap must not be below the base delay")
        if self.claim_ttl_seconds <= self.request_timeout_seconds:
            raise ValueError("CONFIG_CLAIM_TTL_INVALID|claim ttl must exceed the webhook request timeout")
        return self


class ObservabilityConfig(BaseModel):
    service_name: str = Field(default="payflow")
    log_level: str = Field(default="INFO")
    log_file: str | None = Field(default=None)

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_level(cls, value: object) -> str:
        text = str(value or "INFO").strip().upper()
        if text not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"CONFIG_LOG_LEVEL_INVALID|unknown log level {value!r}")
        return text


class AppConfig(BaseSettings):
    """Application settings read from ``PAYFLOW_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="PAYFLOW_",
        env_nested_delimiter="__",
        extra="forbid",
    )

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    idempotency: IdempotencyConfig = Field(default_factory=IdempotencyConfig)
    relay: RelayConfig = Field(default_factory=RelayConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> AppConfig:
        """Load configuration from environment variables deterministically."""

        return cls()  # type: ignore[call-arg]


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    return AppConfig.from_env()


__all__ = [
    "AppConfig",
    "DatabaseConfig",
    "IdempotencyConfig",
    "ObservabilityConfig",
    "RelayConfig",
    "get_config",
]
