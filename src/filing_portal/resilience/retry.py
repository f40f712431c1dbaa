"""Retry policy with exponential backoff.

The submission protocol reports transport failures as a
``SubmissionRetryable`` result instead of raising. The helpers here turn
that result into a retry loop with exponential backoff and jitter.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from filing_portal.config.settings import ResilienceSettings, get_settings
from filing_portal.submission.results import SubmissionResult

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry behavior.

    Attributes:
        max_attempts: Maximum number of attempts (including the first).
        base_delay: Initial delay between attempts in seconds.
        max_delay: Maximum delay between attempts in seconds.
        backoff_multiplier: Multiplier for exponential backoff.
        jitter: Random jitter as a fraction of the delay (0-1).
        on_retry: Callback called with (attempt, reason, delay) before sleeping.
    """
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    jitter: float = 0.1
    on_retry: Optional[Callable[[int, str, float], None]] = None

    @classmethod
    def from_settings(cls, settings: Optional[ResilienceSettings] = None) -> "RetryConfig":
        settings = settings or get_settings().resilience
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_initial_delay,
            max_delay=settings.retry_max_delay,
            backoff_multiplier=settings.retry_backoff_multiplier,
            jitter=settings.retry_jitter,
        )

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay for a given attempt number.

        Args:
            attempt: Current attempt number (1-indexed).

        Returns:
            Delay in seconds with exponential backoff and jitter.
        """
        delay = self.base_delay * (self.backoff_multiplier ** (attempt - 1))
        delay = min(delay, self.max_delay)

        if self.jitter > 0:
            jitter_range = delay * self.jitter
            delay = delay + random.uniform(-jitter_range, jitter_range)
            delay = max(0.0, delay)

        return delay


async def submit_with_retry(
    submit: Callable[[], Awaitable[SubmissionResult]],
    config: Optional[RetryConfig] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> SubmissionResult:
    """Run a submission until it stops being retryable.

    Only ``SubmissionRetryable`` results are retried; ok, rejected and
    fatal results are returned as they are. Re-running the whole
    submission is safe because each commit step is idempotent.

    Usage:
        result = await submit_with_retry(lambda: protocol.submit(filing_id))

    Args:
        submit: Zero-argument coroutine factory running one submission.
        config: Retry configuration; defaults come from settings.
        sleep: Awaitable used to wait between attempts.

    Returns:
        The first non-retryable result, or the last retryable one once
        attempts are exhausted.
    """
    retry_config = config or RetryConfig.from_settings()
    result = await submit()

    attempt = 1
    while result.retryable and attempt < retry_config.max_attempts:
        delay = retry_config.calculate_delay(attempt)
        logger.info(
            f"Retry {attempt}/{retry_config.max_attempts} "
            f"for submission in {delay:.2f}s: {result.reason}"
        )
        if retry_config.on_retry:
            retry_config.on_retry(attempt, result.reason, delay)
        await sleep(delay)
        attempt += 1
        result = await submit()

    if result.retryable:
        logger.warning(
            f"Submission retry exhausted after {attempt} attempts: {result.reason}"
        )
    return result
