"""Tests for backoff strategies and the attempt tracker."""

import pytest

from syncspine.core.backoff import BackoffTracker, ConstantBackoff, ExponentialBackoff
from syncspine.core.errors import ConfigError, ErrorCategory


class TestExponentialBackoff:
    def test_default_configuration(self):
        strategy = ExponentialBackoff()
        assert strategy.base_delay == 1.0
        assert strategy.max_delay == 30.0
        assert strategy.multiplier == 2.0
        assert strategy.jitter is True
        assert strategy.max_retries is None

    def test_delay_sequence_capped(self):
        strategy = ExponentialBackoff(jitter=False)
        delays = [strategy.next_delay(attempt) for attempt in range(10)]
        assert delays == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0, 30.0, 30.0, 30.0]

    def test_jitter_never_exceeds_cap(self):
        strategy = ExponentialBackoff(jitter=True, jitter_range=0.5)
        for attempt in range(200):
            delay = strategy.next_delay(attempt)
            assert 0.0 <= delay <= 30.0

    def test_huge_attempt_does_not_overflow(self):
        strategy = ExponentialBackoff(jitter=False)
        assert strategy.next_delay(10_000) == 30.0

    def test_unlimited_retries_by_default(self):
        assert ExponentialBackoff().should_retry(1_000) is True

    def test_max_retries(self):
        strategy = ExponentialBackoff(max_retries=3)
        assert strategy.should_retry(2) is True
        assert strategy.should_retry(3) is False

    @pytest.mark.parametrize("kwargs", [{"base_delay": 0}, {"base_delay": 10, "max_delay": 5}])
    def test_invalid_configuration(self, kwargs):
        with pytest.raises(ConfigError) as exc_info:
            ExponentialBackoff(**kwargs)
        assert exc_info.value.category is ErrorCategory.CONFIG
        assert exc_info.value.retryable is False


class TestConstantBackoff:
    def test_constant_delay(self):
        strategy = ConstantBackoff(delay=30.0)
        assert [strategy.next_delay(n) for n in range(3)] == [30.0, 30.0, 30.0]

    def test_non_positive_delay_rejected(self):
        with pytest.raises(ConfigError):
            ConstantBackoff(delay=0)


class TestBackoffTracker:
    def test_counts_attempts_and_records_history(self):
        tracker = BackoffTracker(ExponentialBackoff(jitter=False))
        assert [tracker.next_delay() for _ in range(4)] == [1.0, 2.0, 4.0, 8.0]
        assert tracker.attempt == 4
        assert tracker.history == [1.0, 2.0, 4.0, 8.0]

    def test_reset_restarts_from_base(self):
        tracker = BackoffTracker(ExponentialBackoff(jitter=False))
        for _ in range(6):
            tracker.next_delay()
        tracker.reset()
        assert tracker.attempt == 0
        assert tracker.next_delay() == 1.0

    def test_history_is_bounded(self):
        tracker = BackoffTracker(ConstantBackoff(delay=1.0), history_limit=5)
        for _ in range(20):
            tracker.next_delay()
        assert len(tracker.history) == 5

    def test_should_retry_delegates(self):
        tracker = BackoffTracker(ConstantBackoff(max_retries=1))
        assert tracker.should_retry() is True
        tracker.next_delay()
        assert tracker.should_retry() is False
