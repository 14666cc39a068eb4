"""Exponential backoff for outbound provider calls."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from daily_briefing.config import RetrySettings
from daily_briefing.errors import BriefingError, RetryExhausted

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Retry budget: ``max_retries`` extra attempts after the first call."""

    max_retries: int = 3
    initial_delay_ms: int = 1_000
    backoff_multiplier: float = 2.0
    max_delay_ms: int = 10_000

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> RetryPolicy:
        return cls(
            max_retries=settings.max_retries,
            initial_delay_ms=settings.initial_delay_ms,
            backoff_multiplier=settings.backoff_multiplier,
            max_delay_ms=settings.max_delay_ms,
        )

    @property
    def total_attempts(self) -> int:
        return self.max_retries + 1

    def delay_seconds(self, attempt: int) -> float:
        """Delay before retry number ``attempt + 1`` (``attempt`` is zero based)."""

        delay_ms = min(
            self.initial_delay_ms * (self.backoff_multiplier**attempt),
            self.max_delay_ms,
        )
        return delay_ms / 1000.0


def call_with_retry(
    operation: str,
    func: Callable[[], T],
    *,
    policy: RetryPolicy,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``func`` retrying retryable briefing errors with exponential backoff.

    Non-retryable errors propagate unchanged on the first failure. When every
    attempt fails with a retryable error, a single :class:`RetryExhausted` is
    raised carrying the attempt count and the last underlying cause.
    """

    last_error: BriefingError | None = None
    for attempt in range(policy.total_attempts):
        try:
            return func()
        except BriefingError as error:
            if not error.retryable:
                raise
            last_error = error
            if attempt < policy.max_retries:
                delay = policy.delay_seconds(attempt)
                logger.warning(
                    "%s attempt %d/%d failed, retrying in %.2fs: %s",
                    operation,
                    attempt + 1,
                    policy.total_attempts,
                    delay,
                    error,
                )
                sleep(delay)

    attempts = policy.total_attempts
    cause = str(last_error) if last_error is not None else "unknown error"
    raise RetryExhausted(
        f"{operation} failed after {attempts} attempts. Last error: {cause}",
        operation=operation,
        attempts=attempts,
        last_error=cause,
    ) from last_error
