"""
Retry policy for purchase attempts.

Usage:
    from inapppay.retry import RetryPolicy, Retry, GiveUp

    policy = RetryPolicy(max_attempts=3, base_delay=0.5)
    decision = policy.should_retry(attempt_count=1, elapsed=0.2, last_outcome=outcome)
    if isinstance(decision, Retry):
        await asyncio.sleep(decision.delay)
"""
from __future__ import annotations

import random
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Union

from .constants import RetryDefaults
from .models.outcome import Outcome, TransientFailure

if TYPE_CHECKING:
    from .config import InAppPaySettings


@dataclass(frozen=True)
class Retry:
    """Send another attempt after ``delay`` seconds."""

    delay: float


@dataclass(frozen=True)
class GiveUp:
    """Stop retrying; the transaction fails with the last outcome."""

    reason: str


RetryDecision = Union[Retry, GiveUp]


@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for retrying transient purchase failures.

    Attributes:
        max_attempts: Total attempts allowed, including the first
        max_elapsed: Seconds allowed from the first send to the last send
        base_delay: Delay before the second attempt, in seconds
        max_delay: Cap on any single delay, in seconds
        jitter: Maximum jitter factor (0.0-1.0) applied to each delay
    """

    max_attempts: int = RetryDefaults.MAX_ATTEMPTS
    max_elapsed: float = RetryDefaults.MAX_ELAPSED_SECONDS
    base_delay: float = RetryDefaults.BASE_DELAY
    max_delay: float = RetryDefaults.MAX_DELAY
    jitter: float = RetryDefaults.JITTER

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.max_elapsed <= 0:
            raise ValueError("max_elapsed must be positive")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays cannot be negative")
        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError("jitter must be between 0.0 and 1.0")

    @classmethod
    def from_settings(cls, settings: "InAppPaySettings") -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            max_elapsed=settings.max_elapsed_seconds,
            base_delay=settings.base_delay,
            max_delay=settings.max_delay,
            jitter=settings.jitter,
        )

    def calculate_delay(self, attempt_count: int, retry_after: Optional[float] = None) -> float:
        """Calculate the delay after ``attempt_count`` attempts (1-based).

        Exponential backoff capped at ``max_delay``, with jitter. A server
        ``retry_after`` hint can lengthen the delay, never past ``max_delay``.
        """
        delay = self.base_delay * (2 ** max(0, attempt_count - 1))
        delay = min(delay, self.max_delay)

        if self.jitter > 0:
            jitter_range = delay * self.jitter
            delay = delay + random.uniform(-jitter_range, jitter_range)

        if retry_after is not None:
            delay = max(delay, min(retry_after, self.max_delay))

        return max(0.0, delay)

    def should_retry(
        self,
        attempt_count: int,
        elapsed: float,
        last_outcome: Outcome,
    ) -> RetryDecision:
        """Decide whether another attempt may be sent.

        Args:
            attempt_count: Attempts already made
            elapsed: Seconds since the first attempt started
            last_outcome: Result of the latest attempt

        Returns:
            ``Retry(delay)`` or ``GiveUp(reason)``
        """
        if not isinstance(last_outcome, TransientFailure):
            return GiveUp(reason=f"{last_outcome.kind} is not retryable")

        if attempt_count >= self.max_attempts:
            return GiveUp(reason=f"max attempts reached ({self.max_attempts})")

        if elapsed >= self.max_elapsed:
            return GiveUp(reason=f"max elapsed time reached ({self.max_elapsed:g}s)")

        delay = self.calculate_delay(attempt_count, last_outcome.retry_after)
        if elapsed + delay > self.max_elapsed:
            return GiveUp(reason="next attempt would exceed max elapsed time")

        return Retry(delay=delay)


__all__ = ["RetryPolicy", "Retry", "GiveUp", "RetryDecision"]
