from __future__ import annotations

import pytest

import fusebox.circuit_breaker.breaker as breaker_mod
from tests.fusebox.support.fakes import FakeClock, FakeLogger


@pytest.fixture
def fake_logger() -> FakeLogger:
    """Provide a fresh structured logger test double per test."""
    return FakeLogger()


@pytest.fixture
def fake_clock(monkeypatch: pytest.MonkeyPatch) -> FakeClock:
    """Drive the breaker cooldown clock manually."""
    clock = FakeClock()
    monkeypatch.setattr(breaker_mod, "_monotonic", clock.now)
    return clock
