"""Circuit breaker state shared across items of a run."""

from __future__ import annotations

from dataclasses import dataclass

__all__ = ["CIRCUIT_OPEN_LABEL", "CircuitBreaker"]

CIRCUIT_OPEN_LABEL = "CIRCUIT BREAKER ACTIVE"


@dataclass(slots=True)
class CircuitBreaker:
    """Counts consecutive failed attempts and latches open until reset.

    The trip threshold belongs to :class:`~notebatch.pipeline.policy.RetryPolicy`;
    this object only holds the state so it survives across runs of the same
    engine.
    """

    consecutive_failures: int = 0
    is_open: bool = False

    def record_failure(self) -> int:
        self.consecutive_failures += 1
        return self.consecutive_failures

    def record_success(self) -> None:
        self.consecutive_failures = 0

    def trip(self) -> None:
        self.is_open = True

    def reset(self) -> bool:
        """Close the breaker; return True when anything changed."""

        if not self.is_open and self.consecutive_failures == 0:
            return False
        self.is_open = False
        self.consecutive_failures = 0
        return True

    @property
    def label(self) -> str | None:
        return CIRCUIT_OPEN_LABEL if self.is_open else None
