"""Retry, backoff and breaker-trip decisions for a single phase attempt.

The policy is deliberately free of engine state: given how many attempts a
phase has used, the error raised by the last one and the number of
consecutive failures seen across items, :meth:`RetryPolicy.decide` says
whether to try again, how long to wait first, and whether the circuit
breaker should open.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..llm.cost import BudgetExceededError
from ..llm.providers import FATAL_STATUS_CODES, ProviderError

__all__ = [
    "DEFAULT_BASE_DELAY",
    "DEFAULT_CIRCUIT_THRESHOLD",
    "DEFAULT_MAX_ATTEMPTS",
    "RetryDecision",
    "RetryPolicy",
    "is_retryable",
]

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 2.0
DEFAULT_CIRCUIT_THRESHOLD = 3

# Raised by malformed requests or local misconfiguration; repeating them
# produces the same failure.
_FATAL_ERROR_TYPES: tuple[type[BaseException], ...] = (
    BudgetExceededError,
    NotImplementedError,
    TypeError,
    ValueError,
)


def is_retryable(error: BaseException) -> bool:
    """Return False for errors that will deterministically fail again."""

    if isinstance(error, ProviderError):
        return error.retryable
    if isinstance(error, _FATAL_ERROR_TYPES):
        return False
    status_code = getattr(error, "status_code", None)
    if isinstance(status_code, int) and status_code in FATAL_STATUS_CODES:
        return False
    return True


@dataclass(frozen=True, slots=True)
class RetryDecision:
    """Outcome of evaluating one failed attempt."""

    retry: bool
    delay: float
    open_circuit: bool
    fatal: bool = False


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Exponential backoff with a bounded number of attempts per phase."""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay: float = DEFAULT_BASE_DELAY
    circuit_threshold: int = DEFAULT_CIRCUIT_THRESHOLD

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must not be negative")
        if self.circuit_threshold < 1:
            raise ValueError("circuit_threshold must be >= 1")

    def backoff(self, attempt: int) -> float:
        """Delay to wait after the ``attempt``-th failure (1-based)."""

        return self.base_delay * (2 ** attempt)

    def decide(self, attempt: int, error: BaseException, consecutive_failures: int) -> RetryDecision:
        """Evaluate a failed attempt.

        ``attempt`` is the 1-based number of the attempt that just failed and
        ``consecutive_failures`` already includes it.
        """

        open_circuit = consecutive_failures >= self.circuit_threshold
        fatal = not is_retryable(error)
        retry = not open_circuit and not fatal and attempt < self.max_attempts
        return RetryDecision(
            retry=retry,
            delay=self.backoff(attempt) if retry else 0.0,
            open_circuit=open_circuit,
            fatal=fatal,
        )

    def describe_failure(self, attempt: int, error: BaseException) -> str:
        return f"Retry {attempt}/{self.max_attempts}: {error}"
