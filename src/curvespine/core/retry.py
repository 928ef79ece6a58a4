"""Retry whole engine calls after transient store failures.

A mutating engine call is a single transaction, so when it raises
:class:`~curvespine.core.errors.TransientStoreError` nothing was written and
the call can simply run again. Any other error propagates on the first
attempt.

    retry_transient(ledger.create_instance, definition_id, period, payload)

An ambiguous failure (commit sent, reply lost) is only safe to retry for
``create_instance`` when the payload carries an ``idempotency_key``.
"""

from __future__ import annotations

import random
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypeVar

from curvespine.core.errors import is_retryable
from curvespine.core.logging import get_logger
from curvespine.core.timestamps import utc_now

T = TypeVar("T")

logger = get_logger(__name__)


class RetryStrategy(ABC):
    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Seconds to wait before retry *attempt* (first retry is 0)."""

    @abstractmethod
    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        """True when another call may follow *attempt* failed calls."""


@dataclass
class ExponentialBackoff(RetryStrategy):
    """``base_delay * multiplier**attempt`` capped at ``max_delay``, +/- ``jitter_range``."""

    max_retries: int = 3
    base_delay: float = 0.5
    max_delay: float = 10.0
    multiplier: float = 2.0
    jitter: bool = True
    jitter_range: float = 0.25

    def next_delay(self, attempt: int) -> float:
        delay = min(self.max_delay, self.base_delay * self.multiplier**attempt)
        if not self.jitter:
            return delay
        spread = delay * self.jitter_range
        return max(0.0, random.uniform(delay - spread, delay + spread))

    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        if attempt > self.max_retries:
            return False
        return error is None or is_retryable(error)


class NoRetry(RetryStrategy):
    def next_delay(self, attempt: int) -> float:
        return 0.0

    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        return False


@dataclass
class RetryContext:
    """Attempt bookkeeping for one logical call.

    ``errors`` keeps ``(attempt, error, when)`` for every failed attempt;
    ``on_retry(attempt, error, delay)`` fires before each sleep.
    """

    strategy: RetryStrategy
    on_retry: Callable[[int, Exception, float], None] | None = None
    sleep: Callable[[float], None] = time.sleep
    attempts: int = field(default=0, init=False)
    errors: list[tuple[int, Exception, datetime]] = field(default_factory=list, init=False)

    @property
    def last_error(self) -> Exception | None:
        return self.errors[-1][1] if self.errors else None

    def run(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        while True:
            self.attempts += 1
            try:
                return func(*args, **kwargs)
            except Exception as exc:
                self.errors.append((self.attempts, exc, utc_now()))
                if not self.strategy.should_retry(self.attempts, exc):
                    raise
                delay = self.strategy.next_delay(self.attempts - 1)
                logger.warning("retry.scheduled", attempt=self.attempts, delay_s=round(delay, 3), error=str(exc))
                if self.on_retry is not None:
                    self.on_retry(self.attempts, exc, delay)
                self.sleep(delay)


def retry_transient(
    func: Callable[..., T],
    *args: Any,
    strategy: RetryStrategy | None = None,
    **kwargs: Any,
) -> T:
    """Call *func*, retrying transient store errors with the configured backoff."""
    if strategy is None:
        from curvespine.core.settings import get_settings

        settings = get_settings()
        strategy = ExponentialBackoff(max_retries=settings.retry_max_attempts, base_delay=settings.retry_base_delay)
    return RetryContext(strategy).run(func, *args, **kwargs)


__all__ = ["ExponentialBackoff", "NoRetry", "RetryContext", "RetryStrategy", "retry_transient"]
