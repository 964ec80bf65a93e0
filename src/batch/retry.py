# src/batch/retry.py - v1
"""Bounded retry with exponential backoff for per-document work.

Only errors classified as transient are retried (see core.errors).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from quextractor.core.errors import is_retryable

logger = logging.getLogger(__name__)


class RetryExhausted(Exception):
    """All attempts failed, or the error was not retryable."""

    def __init__(
        self, label: str, attempts: int, last_error: BaseException, retryable: bool = True
    ):
        self.label = label
        self.attempts = attempts
        self.last_error = last_error
        self.retryable = retryable
        super().__init__(f"'{label}' failed after {attempts} attempt(s): {last_error}")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration plus the execution loop.

    Attributes:
        max_retries: Retries after the first attempt (0 = single attempt).
        base_delay_s: Delay before the first retry.
        backoff_factor: Multiplier per further retry.
        max_delay_s: Upper bound for any single delay (None = unbounded).
        backoff: Optional override mapping 1-based retry number to seconds.
        sleep: Coroutine used to wait between attempts.
    """

    max_retries: int = 3
    base_delay_s: float = 2.0
    backoff_factor: float = 2.0
    max_delay_s: float | None = None
    backoff: Callable[[int], float] | None = None
    sleep: Callable[[float], Awaitable[Any]] = field(default=asyncio.sleep, compare=False)

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay_s < 0:
            raise ValueError("base_delay_s must be >= 0")

    def compute_delay(self, retry: int) -> float:
        """Delay before retry number ``retry`` (1-based)."""
        if self.backoff is not None:
            delay = self.backoff(retry)
        else:
            delay = self.base_delay_s * (self.backoff_factor ** (retry - 1))
        if self.max_delay_s is not None:
            delay = min(delay, self.max_delay_s)
        return max(0.0, delay)

    async def execute(
        self,
        fn: Callable[..., Awaitable[Any]],
        *args: Any,
        label: str = "task",
        on_retry: Callable[[str], None] | None = None,
        **kwargs: Any,
    ) -> Any:
        """Await ``fn`` until it succeeds or retries run out.

        Args:
            fn: Async callable to run.
            label: Name used in warnings and errors.
            on_retry: Sink receiving one warning message per retry.

        Raises:
            RetryExhausted: After max_retries + 1 failed attempts, or at once
                for a non-retryable error.
        """
        attempts = 0
        while True:
            attempts += 1
            try:
                return await fn(*args, **kwargs)
            except Exception as e:
                if not is_retryable(e):
                    raise RetryExhausted(label, attempts, e, retryable=False) from e
                if attempts > self.max_retries:
                    raise RetryExhausted(label, attempts, e) from e

                delay = self.compute_delay(attempts)
                message = f"Retry {attempts} for {label}: {e}"
                logger.warning(
                    "%s (attempt %d/%d), retrying in %.1fs",
                    message, attempts, self.max_retries + 1, delay,
                )
                if on_retry is not None:
                    on_retry(message)
                await self.sleep(delay)
