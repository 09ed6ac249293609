"""Core circuit breaker implementation."""

import asyncio
import enum
import logging
import math
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import ParamSpec, TypeVar

from fusebox.circuit_breaker.exceptions import CircuitOpenError
from fusebox.circuit_breaker.state import BreakerSnapshot, CircuitState
from fusebox.logging import (
    StructuredLogger,
    bind_breaker_logger,
    log_info,
    log_warning,
)

T = TypeVar("T")
P = ParamSpec("P")


def _monotonic() -> float:
    return time.monotonic()


class _Phase(enum.Enum):
    CLOSED = enum.auto()
    OPEN = enum.auto()
    PROBING = enum.auto()


class _Outcome(enum.Enum):
    SUCCESS = enum.auto()
    FAILURE = enum.auto()
    ABANDONED = enum.auto()


@dataclass(frozen=True, slots=True)
class _Ticket:
    """Admission handed to one call; ``seq`` orders closed-state calls."""

    probe: bool
    seq: int = 0


_AsyncWaiter = tuple[asyncio.AbstractEventLoop, asyncio.Future[None]]


@dataclass(slots=True)
class CircuitBreakerConfig:
    """Circuit breaker configuration values.

    Attributes:
        failure_threshold: Consecutive failures while ``CLOSED`` before opening.
        cooldown: Seconds to stay ``OPEN`` before admitting a probe. A
            ``timedelta`` is accepted and normalized to seconds.
    """

    failure_threshold: int
    cooldown: float

    def __post_init__(self) -> None:
        if isinstance(self.cooldown, timedelta):
            self.cooldown = self.cooldown.total_seconds()
        if isinstance(self.failure_threshold, bool) or self.failure_threshold < 1:
            raise ValueError("failure_threshold must be an int >= 1")
        if not math.isfinite(self.cooldown) or self.cooldown <= 0:
            raise ValueError("cooldown must be a finite number > 0")


class CircuitBreaker:
    """Stateful proxy around a dangerous operation.

    All state lives behind one lock. The protected callable always runs with
    the lock released; each call takes the lock once to be admitted and once
    to record its outcome.

    While ``CLOSED`` a call is admitted only if the failures recorded so far
    plus the calls still executing stay below ``failure_threshold``. Callers
    beyond that budget wait for an outcome and then re-evaluate, so a failing
    streak can never push more than ``failure_threshold`` calls through.

    Once the cooldown has elapsed the first caller becomes the single probe;
    everyone else keeps getting ``CircuitOpenError`` until its outcome is in.
    """

    def __init__(
        self,
        failure_threshold: int,
        cooldown: float | timedelta,
        *,
        name: str = "circuit_breaker",
        logger: StructuredLogger | None = None,
    ) -> None:
        """Build a circuit breaker.

        Args:
            failure_threshold: Consecutive failures that trip the breaker.
            cooldown: Seconds (or ``timedelta``) to wait while ``OPEN``
                before a probe call is allowed.
            name: Breaker name used in errors and log events.
            logger: Structured or stdlib logger for transition events.
                Defaults to the stdlib logger for this module, which is
                silent until logging is configured (see
                ``fusebox.logging.configure_structlog``).

        Raises:
            ValueError: If ``failure_threshold`` or ``cooldown`` is not positive.
        """
        self.name = name
        self.config = CircuitBreakerConfig(
            failure_threshold=failure_threshold,
            cooldown=cooldown,  # type: ignore[arg-type]
        )
        if logger is None:
            logger = logging.getLogger(__name__)  # type: ignore[assignment]
        self._logger = bind_breaker_logger(logger, name)

        self._lock = threading.Lock()
        self._outcome_recorded = threading.Condition(self._lock)
        self._async_waiters: list[_AsyncWaiter] = []
        self._phase = _Phase.CLOSED
        self._failure_seqs: list[int] = []
        self._admitted = 0
        self._last_success_seq = 0
        self._in_flight = 0
        self._opened_at: float | None = None

    @classmethod
    def from_config(
        cls,
        config: CircuitBreakerConfig,
        *,
        name: str = "circuit_breaker",
        logger: StructuredLogger | None = None,
    ) -> "CircuitBreaker":
        """Build a breaker from an existing ``CircuitBreakerConfig``."""
        return cls(
            config.failure_threshold,
            config.cooldown,
            name=name,
            logger=logger,
        )

    def get_status(self) -> CircuitState:
        """Return ``CLOSED`` or ``OPEN``; a probe in flight reports ``OPEN``."""
        with self._lock:
            return self._status()

    def snapshot(self) -> BreakerSnapshot:
        """Return a consistent view of the breaker internals."""
        with self._lock:
            return BreakerSnapshot(
                name=self.name,
                state=self._status(),
                failure_count=len(self._failure_seqs),
                opened_at=self._opened_at,
                probing=self._phase is _Phase.PROBING,
                in_flight=self._in_flight,
            )

    def run(self, func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
        """Invoke a callable under circuit breaker protection.

        Callers over the closed-state failure budget block on a condition
        variable, so ``run`` must not be called from a thread running an
        event loop; use ``call`` there.

        Args:
            func: Dangerous callable to execute.
            *args: Positional arguments forwarded to ``func``.
            **kwargs: Keyword arguments forwarded to ``func``.

        Returns:
            The result of ``func`` when admitted and successful.

        Raises:
            CircuitOpenError: When the circuit is open and ``func`` was not
                invoked.
            Exception: Whatever ``func`` raised, unchanged.
        """
        with self._lock:
            while True:
                ticket = self._try_admit()
                if ticket is not None:
                    break
                self._outcome_recorded.wait()
        if ticket.probe:
            self._log_probe_admitted()

        try:
            result = func(*args, **kwargs)
        except Exception:
            self._record(ticket, _Outcome.FAILURE)
            raise
        except BaseException:
            self._record(ticket, _Outcome.ABANDONED)
            raise
        self._record(ticket, _Outcome.SUCCESS)
        return result

    async def call(
        self,
        func: Callable[P, Awaitable[T]],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        """Invoke an async callable under circuit breaker protection.

        Shares state with ``run``; the lock is never held across an ``await``.
        Cancellation of the awaiting task is neutral: it releases the
        admission without counting a success or a failure.

        Raises:
            CircuitOpenError: When the circuit is open and ``func`` was not
                awaited.
            Exception: Whatever ``func`` raised, unchanged.
        """
        loop = asyncio.get_running_loop()
        while True:
            with self._lock:
                ticket = self._try_admit()
                if ticket is None:
                    waiter: asyncio.Future[None] = loop.create_future()
                    self._async_waiters.append((loop, waiter))
            if ticket is not None:
                break
            await waiter

        if ticket.probe:
            self._log_probe_admitted()

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self._record(ticket, _Outcome.FAILURE)
            raise
        except BaseException:
            self._record(ticket, _Outcome.ABANDONED)
            raise
        self._record(ticket, _Outcome.SUCCESS)
        return result

    def _status(self) -> CircuitState:
        if self._phase is _Phase.CLOSED:
            return CircuitState.CLOSED
        return CircuitState.OPEN

    def _retry_after(self, now: float) -> float:
        opened_at = now if self._opened_at is None else self._opened_at
        return max(self.config.cooldown - (now - opened_at), 0.0)

    def _try_admit(self) -> _Ticket | None:
        """Decide admission with the lock held.

        Returns ``None`` when a closed-state caller must wait for an in-flight
        outcome before its admission can be decided.
        """
        if self._phase is _Phase.CLOSED:
            reserved = len(self._failure_seqs) + self._in_flight
            if reserved >= self.config.failure_threshold:
                return None
            self._in_flight += 1
            self._admitted += 1
            return _Ticket(probe=False, seq=self._admitted)

        if self._phase is _Phase.PROBING:
            raise CircuitOpenError(self.name, retry_after=0.0)

        retry_after = self._retry_after(_monotonic())
        if retry_after > 0:
            raise CircuitOpenError(self.name, retry_after=retry_after)
        self._phase = _Phase.PROBING
        return _Ticket(probe=True)

    def _record(self, ticket: _Ticket, outcome: _Outcome) -> None:
        with self._lock:
            if ticket.probe:
                event = self._record_probe(outcome)
            else:
                event = self._record_closed(ticket.seq, outcome)
            failure_count = len(self._failure_seqs)
            self._wake_waiters()

        if event == "circuit_breaker.opened":
            log_warning(
                self._logger,
                event,
                failure_count=failure_count,
                cooldown=self.config.cooldown,
            )
        elif event == "circuit_breaker.closed":
            log_info(self._logger, event)
        elif event is not None:
            log_warning(self._logger, event, cooldown=self.config.cooldown)

    def _record_closed(self, seq: int, outcome: _Outcome) -> str | None:
        # Outcomes can land out of admission order. A success only clears
        # failures of calls admitted before it, and a failure admitted before
        # the latest recorded success is not part of the current streak.
        self._in_flight -= 1
        if self._phase is not _Phase.CLOSED or outcome is _Outcome.ABANDONED:
            return None
        if outcome is _Outcome.SUCCESS:
            if seq > self._last_success_seq:
                self._last_success_seq = seq
                self._failure_seqs = [s for s in self._failure_seqs if s > seq]
            return None
        if seq < self._last_success_seq:
            return None

        self._failure_seqs.append(seq)
        if len(self._failure_seqs) < self.config.failure_threshold:
            return None
        self._phase = _Phase.OPEN
        self._opened_at = _monotonic()
        return "circuit_breaker.opened"

    def _record_probe(self, outcome: _Outcome) -> str | None:
        if outcome is _Outcome.SUCCESS:
            self._phase = _Phase.CLOSED
            self._failure_seqs = []
            self._opened_at = None
            return "circuit_breaker.closed"

        self._phase = _Phase.OPEN
        if outcome is _Outcome.ABANDONED:
            return "circuit_breaker.probe_abandoned"
        self._opened_at = _monotonic()
        return "circuit_breaker.reopened"

    def _wake_waiters(self) -> None:
        self._outcome_recorded.notify_all()
        waiters, self._async_waiters = self._async_waiters, []
        for loop, waiter in waiters:
            if loop.is_closed():
                continue
            loop.call_soon_threadsafe(_resolve_waiter, waiter)

    def _log_probe_admitted(self) -> None:
        log_info(self._logger, "circuit_breaker.probe_admitted")


def _resolve_waiter(waiter: asyncio.Future[None]) -> None:
    if not waiter.done():
        waiter.set_result(None)
