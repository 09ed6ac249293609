from __future__ import annotations

import logging
import sys
from typing import Any, cast

import pytest
from pydantic import ValidationError

from fusebox.circuit_breaker import CircuitBreakerConfig, CircuitState
from fusebox.settings import BreakerSettings, prefixed_settings_config
from tests.fusebox.support.fakes import FakeLogger


def _build_settings(**overrides: object) -> BreakerSettings:
    return BreakerSettings(**cast(Any, overrides))


def test_breaker_settings_defaults() -> None:
    settings = _build_settings()

    assert settings.failure_threshold == 5
    assert settings.cooldown_seconds == 30.0
    assert settings.log_level == "INFO"


def test_breaker_settings_read_prefixed_environment(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("FUSEBOX_FAILURE_THRESHOLD", "3")
    monkeypatch.setenv("fusebox_cooldown_seconds", "0.25")
    monkeypatch.setenv("FUSEBOX_LOG_LEVEL", " debug ")

    settings = BreakerSettings()

    assert settings.failure_threshold == 3
    assert settings.cooldown_seconds == 0.25
    assert settings.log_level == "DEBUG"


def test_breaker_settings_build_config() -> None:
    settings = _build_settings(failure_threshold=2, cooldown_seconds=1.5)

    assert settings.breaker_config() == CircuitBreakerConfig(
        failure_threshold=2, cooldown=1.5
    )


def test_breaker_settings_build_named_breaker() -> None:
    logger = FakeLogger()
    settings = _build_settings(failure_threshold=1, cooldown_seconds=60.0)

    breaker = settings.build_breaker("geocoder", logger=logger)

    def _fail() -> None:
        raise RuntimeError("down")

    with pytest.raises(RuntimeError):
        breaker.run(_fail)

    assert breaker.name == "geocoder"
    assert breaker.get_status() == CircuitState.OPEN
    assert logger.calls[0][2]["breaker"] == "geocoder"


@pytest.mark.parametrize(
    "overrides",
    [
        {"failure_threshold": 0},
        {"cooldown_seconds": 0},
        {"cooldown_seconds": -1.0},
        {"cooldown_seconds": float("nan")},
        {"cooldown_seconds": float("inf")},
        {"failure_threshold": True},
        {"log_level": "TRACE"},
    ],
)
def test_breaker_settings_reject_invalid_values(overrides: dict[str, object]) -> None:
    with pytest.raises(ValidationError):
        _build_settings(**overrides)


def test_prefixed_settings_config_sets_prefix() -> None:
    config = prefixed_settings_config("PAYMENTS_BREAKER_")

    assert config["env_prefix"] == "PAYMENTS_BREAKER_"
    assert config["case_sensitive"] is False


def test_breaker_settings_reject_nan_cooldown_from_environment(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("FUSEBOX_COOLDOWN_SECONDS", "nan")

    with pytest.raises(ValidationError):
        BreakerSettings()


def test_breaker_settings_configure_logging_applies_log_level(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(sys.stderr, "isatty", lambda: False, raising=False)
    settings = _build_settings(log_level="debug")

    logger = settings.configure_logging()

    assert logger is not None
    assert logging.getLogger().level == logging.DEBUG
