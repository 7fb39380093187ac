"""Backoff strategies for reconnects and refresh retries.

Example:
    >>> from syncspine.core.backoff import ExponentialBackoff, BackoffTracker
    >>>
    >>> tracker = BackoffTracker(ExponentialBackoff(base_delay=1.0, max_delay=30.0, jitter=False))
    >>> [tracker.next_delay() for _ in range(7)]
    [1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0]
    >>> tracker.reset()
    >>> tracker.next_delay()
    1.0
"""

import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from syncspine.core.errors import ConfigError


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
        """Determine if another retry should be attempted.

        Args:
            attempt: Number of attempts already made
            error: The exception that caused the failure
        """
        ...


@dataclass
class ExponentialBackoff(RetryStrategy):
    """Exponential backoff with optional jitter, always capped.

    Delay = min(base_delay * (multiplier ** attempt) ± jitter, max_delay)

    Attributes:
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap in seconds (applied after jitter)
        multiplier: Exponential multiplier (default: 2)
        jitter: Add randomness to prevent thundering herd
        jitter_range: Range of jitter as fraction of delay (0.0-1.0)
        max_retries: Maximum number of retry attempts (None = unlimited)
    """

    base_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: bool = True
    jitter_range: float = 0.25
    max_retries: int | None = None

    def __post_init__(self) -> None:
        if self.base_delay <= 0:
            raise ConfigError("base_delay must be positive")
        if self.max_delay < self.base_delay:
            raise ConfigError("max_delay must be >= base_delay")

    def next_delay(self, attempt: int) -> float:
        """Calculate exponential backoff delay."""
        # Cap the exponent before multiplying so long outages can't overflow.
        delay = self.max_delay
        if attempt < 64:
            delay = min(self.base_delay * (self.multiplier ** attempt), self.max_delay)

        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay += random.uniform(-jitter_amount, jitter_amount)

        return min(max(0.0, delay), self.max_delay)

    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        """Check if retry should be attempted."""
        if self.max_retries is None:
            return True
        return attempt < self.max_retries


@dataclass
class ConstantBackoff(RetryStrategy):
    """Constant delay between retries."""

    delay: float = 30.0
    max_retries: int | None = None

    def __post_init__(self) -> None:
        if self.delay <= 0:
            raise ConfigError("delay must be positive")

    def next_delay(self, attempt: int) -> float:
        """Return constant delay."""
        return self.delay

    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        """Check if retry should be attempted."""
        if self.max_retries is None:
            return True
        return attempt < self.max_retries


@dataclass
class BackoffTracker:
    """Consecutive-failure counter in front of a :class:`RetryStrategy`.

    ``next_delay()`` consumes one attempt; ``reset()`` is called on success
    so the next failure starts again from the base delay.
    """

    strategy: RetryStrategy
    attempt: int = field(default=0, init=False)
    history: list[float] = field(default_factory=list, init=False)
    history_limit: int = 100

    def next_delay(self) -> float:
        delay = self.strategy.next_delay(self.attempt)
        self.attempt += 1
        self.history.append(delay)
        if len(self.history) > self.history_limit:
            del self.history[0]
        return delay

    def should_retry(self, error: Exception | None = None) -> bool:
        return self.strategy.should_retry(self.attempt, error)

    def reset(self) -> None:
        self.attempt = 0


__all__ = [
    "RetryStrategy",
    "ExponentialBackoff",
    "ConstantBackoff",
    "BackoffTracker",
]
