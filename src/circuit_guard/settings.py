from __future__ import annotations

import structlog
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from circuit_guard.circuit_breaker.breaker import CircuitBreakerConfig
from circuit_guard.logging import configure_structlog, get_log_level_value

DEFAULT_ENV_PREFIX = "CIRCUIT_BREAKER_"


def prefixed_settings_config(prefix: str) -> SettingsConfigDict:
    """Build standard Pydantic settings config for prefixed environments."""
    return SettingsConfigDict(env_prefix=prefix, case_sensitive=False)


class BreakerSettings(BaseSettings):
    """Environment-driven defaults for circuit breakers.

    Reads ``CIRCUIT_BREAKER_FAILURE_THRESHOLD``,
    ``CIRCUIT_BREAKER_RESET_TIMEOUT_SECONDS`` and ``CIRCUIT_BREAKER_LOG_LEVEL``.
    """

    model_config = prefixed_settings_config(DEFAULT_ENV_PREFIX)

    failure_threshold: int = 5
    reset_timeout_seconds: float = 60.0
    log_level: str = "INFO"

    @field_validator("failure_threshold")
    @classmethod
    def _validate_failure_threshold(cls, value: int) -> int:
        if value < 1:
            raise ValueError("failure_threshold must be >= 1")
        return value

    @field_validator("reset_timeout_seconds")
    @classmethod
    def _validate_reset_timeout(cls, value: float) -> float:
        if value < 0:
            raise ValueError("reset_timeout_seconds must be >= 0")
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> object:
        if not isinstance(value, str):
            return value
        normalized = value.strip().upper()
        get_log_level_value(normalized)
        return normalized

    def to_config(self) -> CircuitBreakerConfig:
        """Build a breaker configuration from these settings."""
        return CircuitBreakerConfig(
            failure_threshold=self.failure_threshold,
            reset_timeout=self.reset_timeout_seconds,
        )

    def configure_logging(self) -> structlog.stdlib.BoundLogger:
        """Configure structlog and stdlib logging at ``log_level``."""
        return configure_structlog(log_level=self.log_level)
