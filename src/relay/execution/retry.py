"""Retry backoff strategies.

Order deliveries retry on a fixed doubling schedule: 1, 2, 4, 8 and 16
minutes, capped at 16.  Jitter is off by default because the scheduler
already spreads work across ticks and operators read the expected retry
time off the job row.

Example:
    >>> from relay.execution.retry import ExponentialBackoff
    >>>
    >>> backoff = ExponentialBackoff()
    >>> [backoff.delay_for_retry(n) for n in range(1, 7)]
    [60, 120, 240, 480, 960, 960]
"""

import random
from abc import ABC, abstractmethod
from dataclasses import dataclass


class RetryStrategy(ABC):
    """Abstract base for retry strategies."""

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Calculate delay before next retry attempt.

        Args:
            attempt: Zero-based attempt number (0 = first retry)

        Returns:
            Delay in seconds before next attempt
        """
        ...

    @abstractmethod
    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        """Determine if another retry should be attempted."""
        ...

    def delay_for_retry(self, retry_count: int) -> int:
        """Whole-second delay for the ``retry_count``-th retry (1-based)."""
        return int(self.next_delay(max(retry_count, 1) - 1))


@dataclass
class ExponentialBackoff(RetryStrategy):
    """Exponential backoff with optional jitter.

    Delay = min(base_delay * (multiplier ** attempt), max_delay) + jitter

    Attributes:
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap in seconds
        multiplier: Exponential multiplier
        jitter: Add randomness to prevent thundering herd
        jitter_range: Range of jitter as fraction of delay (0.0-1.0)
    """

    max_retries: int = 5
    base_delay: float = 60.0
    max_delay: float = 960.0
    multiplier: float = 2.0
    jitter: bool = False
    jitter_range: float = 0.25

    def next_delay(self, attempt: int) -> float:
        """Calculate exponential backoff delay."""
        delay = min(
            self.base_delay * (self.multiplier ** attempt),
            self.max_delay,
        )

        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay += random.uniform(-jitter_amount, jitter_amount)
            delay = max(0, delay)

        return delay

    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        """Check if retry should be attempted."""
        return attempt < self.max_retries


__all__ = ["RetryStrategy", "ExponentialBackoff"]
