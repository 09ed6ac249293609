from __future__ import annotations

import structlog
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from fusebox.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from fusebox.logging import (
    StructuredLogger,
    configure_structlog,
    get_log_level_value,
)


def prefixed_settings_config(prefix: str) -> SettingsConfigDict:
    """Build standard Pydantic settings config for prefixed environments."""
    return SettingsConfigDict(env_prefix=prefix, case_sensitive=False)


class BreakerSettings(BaseSettings):
    """Environment-driven defaults for circuit breakers (``FUSEBOX_*``)."""

    model_config = prefixed_settings_config("FUSEBOX_")

    failure_threshold: int = Field(5, ge=1)
    cooldown_seconds: float = Field(30.0, gt=0, allow_inf_nan=False)
    log_level: str = "INFO"

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> object:
        if not isinstance(value, str):
            return value
        get_log_level_value(value)
        return value.strip().upper()

    @field_validator("failure_threshold", mode="before")
    @classmethod
    def _reject_bool_threshold(cls, value: object) -> object:
        if isinstance(value, bool):
            raise ValueError("failure_threshold must be an integer, not a bool")
        return value

    def breaker_config(self) -> CircuitBreakerConfig:
        """Build a ``CircuitBreakerConfig`` from these settings."""
        return CircuitBreakerConfig(
            failure_threshold=self.failure_threshold,
            cooldown=self.cooldown_seconds,
        )

    def build_breaker(
        self,
        name: str,
        *,
        logger: StructuredLogger | None = None,
    ) -> CircuitBreaker:
        """Build a named breaker configured from these settings."""
        return CircuitBreaker.from_config(
            self.breaker_config(),
            name=name,
            logger=logger,
        )

    def configure_logging(self) -> structlog.stdlib.BoundLogger:
        """Configure structlog + stdlib logging at ``log_level``."""
        return configure_structlog(log_level=self.log_level)
