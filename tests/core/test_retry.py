"""Tests for curvespine.core.retry."""

import pytest

from curvespine.core.errors import TransientStoreError, ValidationError
from curvespine.core.retry import ExponentialBackoff, NoRetry, RetryContext, retry_transient


class Flaky:
    """Fails with *error* for the first *failures* calls."""

    def __init__(self, failures: int, error: Exception):
        self.failures = failures
        self.error = error
        self.calls = 0

    def __call__(self, value: str) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return value


class TestExponentialBackoff:
    def test_delays_grow_and_cap(self):
        strategy = ExponentialBackoff(base_delay=1.0, max_delay=3.0, jitter=False)
        assert [strategy.next_delay(i) for i in range(4)] == [1.0, 2.0, 3.0, 3.0]

    def test_jitter_stays_in_range(self):
        strategy = ExponentialBackoff(base_delay=1.0, jitter=True, jitter_range=0.25)
        for _ in range(50):
            assert 0.75 <= strategy.next_delay(0) <= 1.25

    def test_only_retryable_errors(self):
        strategy = ExponentialBackoff(max_retries=3)
        assert strategy.should_retry(1, TransientStoreError("x")) is True
        assert strategy.should_retry(1, ValidationError("x")) is False
        assert strategy.should_retry(4, TransientStoreError("x")) is False


class TestRetryContext:
    def test_transient_failures_are_retried(self):
        func = Flaky(2, TransientStoreError("lock timeout"))
        retries = []
        ctx = RetryContext(
            ExponentialBackoff(max_retries=3, jitter=False),
            on_retry=lambda attempt, err, delay: retries.append(attempt),
            sleep=lambda _: None,
        )
        assert ctx.run(func, "ok") == "ok"
        assert func.calls == 3
        assert ctx.attempts == 3
        assert retries == [1, 2]

    def test_caller_errors_are_not_retried(self):
        func = Flaky(1, ValidationError("bad period"))
        ctx = RetryContext(ExponentialBackoff(), sleep=lambda _: None)
        with pytest.raises(ValidationError):
            ctx.run(func, "ok")
        assert func.calls == 1

    def test_gives_up_after_max_retries(self):
        func = Flaky(10, TransientStoreError("down"))
        ctx = RetryContext(ExponentialBackoff(max_retries=2, jitter=False), sleep=lambda _: None)
        with pytest.raises(TransientStoreError):
            ctx.run(func, "ok")
        assert func.calls == 3
        assert len(ctx.errors) == 3

    def test_no_retry(self):
        func = Flaky(1, TransientStoreError("down"))
        with pytest.raises(TransientStoreError):
            RetryContext(NoRetry()).run(func, "ok")
        assert func.calls == 1


class TestRetryTransient:
    def test_uses_settings_when_no_strategy(self, monkeypatch):
        monkeypatch.setenv("CURVESPINE_RETRY_MAX_ATTEMPTS", "0")
        func = Flaky(1, TransientStoreError("down"))
        with pytest.raises(TransientStoreError):
            retry_transient(func, "ok")
        assert func.calls == 1

    def test_explicit_strategy(self):
        func = Flaky(1, TransientStoreError("down"))
        strategy = ExponentialBackoff(max_retries=1, base_delay=0.0, jitter=False)
        assert retry_transient(func, "done", strategy=strategy) == "done"
        assert func.calls == 2
