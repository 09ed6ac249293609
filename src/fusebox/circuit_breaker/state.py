"""Circuit breaker state primitives."""

from dataclasses import dataclass
from enum import StrEnum


class CircuitState(StrEnum):
    """Externally visible circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"


@dataclass(frozen=True)
class BreakerSnapshot:
    """Point-in-time view of breaker internals useful for logging/tests.

    Attributes:
        name: Breaker name.
        state: Reported breaker state. A probe in flight reports ``OPEN``.
        failure_count: Consecutive failures recorded while ``CLOSED``.
        opened_at: Monotonic timestamp when the breaker last entered ``OPEN``.
        probing: Whether a half-open probe call is currently executing.
        in_flight: Closed-state calls currently executing.
    """

    name: str
    state: CircuitState
    failure_count: int
    opened_at: float | None
    probing: bool
    in_flight: int
