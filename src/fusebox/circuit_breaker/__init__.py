"""Thread-safe circuit breaker with an async entry point.

This package implements the circuit breaker pattern from *Release It!*.

Key behavior notes:
  - ``get_status`` reports only ``CLOSED`` and ``OPEN``. Half-open probing is
    an internal phase and reads as ``OPEN`` from the outside.
  - At most one probe call is in flight per ``CircuitBreaker`` instance; other
    callers are rejected with ``CircuitOpenError`` until its outcome is known.
  - Every ``Exception`` raised by the protected callable counts as a failure
    and is re-raised unchanged. Cancellation and other ``BaseException``
    subclasses are neutral: they neither count as failures nor close the
    circuit.
"""

from fusebox.circuit_breaker.breaker import CircuitBreaker, CircuitBreakerConfig
from fusebox.circuit_breaker.exceptions import (
    CircuitBreakerError,
    CircuitOpenError,
)
from fusebox.circuit_breaker.state import BreakerSnapshot, CircuitState

__all__ = [
    "BreakerSnapshot",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerError",
    "CircuitOpenError",
    "CircuitState",
]
