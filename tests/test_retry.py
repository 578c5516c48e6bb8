"""
Tests for the retry policy.
"""
import pytest

from inapppay.config import InAppPaySettings
from inapppay.models.outcome import Declined, FatalFailure, Success, TransientFailure
from inapppay.retry import GiveUp, Retry, RetryPolicy

TRANSIENT = TransientFailure(cause="HTTP 503", status_code=503)


class TestCalculateDelay:
    """Tests for backoff delays."""

    def test_exponential_backoff_is_capped(self):
        """Should double from base_delay and stop at max_delay."""
        policy = RetryPolicy(base_delay=0.5, max_delay=8.0, jitter=0.0)

        delays = [policy.calculate_delay(n) for n in range(1, 8)]

        assert delays == [0.5, 1.0, 2.0, 4.0, 8.0, 8.0, 8.0]

    def test_jitter_stays_within_bounds(self):
        """Should never move a delay by more than the jitter factor."""
        policy = RetryPolicy(base_delay=1.0, max_delay=8.0, jitter=0.2)

        for _ in range(200):
            assert 0.8 <= policy.calculate_delay(1) <= 1.2

    def test_retry_after_lengthens_delay(self):
        """Should wait at least as long as the server asked."""
        policy = RetryPolicy(base_delay=0.5, max_delay=8.0, jitter=0.0)

        assert policy.calculate_delay(1, retry_after=3.0) == 3.0

    def test_retry_after_is_capped(self):
        """Should never wait longer than max_delay for a server hint."""
        policy = RetryPolicy(base_delay=0.5, max_delay=8.0, jitter=0.0)

        assert policy.calculate_delay(1, retry_after=120.0) == 8.0

    def test_short_retry_after_keeps_backoff(self):
        """Should keep the backoff when the hint is shorter."""
        policy = RetryPolicy(base_delay=2.0, max_delay=8.0, jitter=0.0)

        assert policy.calculate_delay(1, retry_after=0.1) == 2.0


class TestShouldRetry:
    """Tests for retry decisions."""

    @pytest.mark.parametrize(
        "outcome",
        [
            Success(receipt="R1"),
            Declined(reason="insufficient_funds"),
            FatalFailure(cause="VALIDATION_FAILED", status_code=400),
        ],
    )
    def test_non_transient_gives_up(self, outcome):
        """Should never retry anything but a transient failure."""
        decision = RetryPolicy().should_retry(1, 0.0, outcome)

        assert isinstance(decision, GiveUp)
        assert "not retryable" in decision.reason

    def test_transient_retries(self):
        """Should retry a transient failure within budget."""
        policy = RetryPolicy(base_delay=0.5, jitter=0.0)

        assert policy.should_retry(1, 0.0, TRANSIENT) == Retry(delay=0.5)

    def test_attempt_ceiling(self):
        """Should give up once max_attempts attempts were made."""
        policy = RetryPolicy(max_attempts=3, base_delay=0.0, jitter=0.0)

        assert isinstance(policy.should_retry(2, 0.0, TRANSIENT), Retry)
        decision = policy.should_retry(3, 0.0, TRANSIENT)
        assert isinstance(decision, GiveUp)
        assert "max attempts" in decision.reason

    def test_single_attempt_policy(self):
        """Should never retry when only one attempt is allowed."""
        policy = RetryPolicy(max_attempts=1)

        assert isinstance(policy.should_retry(1, 0.0, TRANSIENT), GiveUp)

    def test_elapsed_budget_spent(self):
        """Should give up once max_elapsed has passed."""
        policy = RetryPolicy(max_elapsed=10.0, base_delay=0.0, jitter=0.0)

        decision = policy.should_retry(1, 10.0, TRANSIENT)

        assert isinstance(decision, GiveUp)
        assert "elapsed" in decision.reason

    def test_delay_would_overrun_budget(self):
        """Should give up when waiting would pass max_elapsed."""
        policy = RetryPolicy(max_elapsed=10.0, base_delay=4.0, max_delay=8.0, jitter=0.0)

        decision = policy.should_retry(1, 7.0, TRANSIENT)

        assert decision == GiveUp(reason="next attempt would exceed max elapsed time")

    def test_retry_after_is_honoured(self):
        """Should use the server's Retry-After as the delay."""
        policy = RetryPolicy(base_delay=0.5, max_delay=8.0, jitter=0.0)
        outcome = TransientFailure(cause="HTTP 429", status_code=429, retry_after=2.0)

        assert policy.should_retry(1, 0.0, outcome) == Retry(delay=2.0)


class TestPolicyConfiguration:
    """Tests for building policies."""

    def test_defaults(self):
        policy = RetryPolicy()

        assert policy.max_attempts == 5
        assert policy.max_elapsed == 30.0
        assert policy.base_delay == 0.5
        assert policy.max_delay == 8.0
        assert policy.jitter == 0.2

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_attempts": 0},
            {"max_elapsed": 0},
            {"base_delay": -1.0},
            {"max_delay": -1.0},
            {"jitter": 1.5},
        ],
    )
    def test_invalid_configuration(self, kwargs):
        """Should reject impossible settings."""
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)

    def test_from_settings(self):
        """Should copy the retry fields from settings."""
        settings = InAppPaySettings(
            max_attempts=3,
            max_elapsed_seconds=12.0,
            base_delay=0.25,
            max_delay=2.0,
            jitter=0.0,
        )

        policy = RetryPolicy.from_settings(settings)

        assert policy == RetryPolicy(
            max_attempts=3, max_elapsed=12.0, base_delay=0.25, max_delay=2.0, jitter=0.0
        )
