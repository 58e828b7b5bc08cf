"""
Shared exponential-backoff policy for every stage adapter.

Delay before attempt n+1 = base_delay * 2^n + jitter, capped at max_delay.
A provider-supplied Retry-After wins over the computed delay (still capped).
Only TransientProviderError is retried; an attempt that exceeds its timeout
counts as transient.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from .errors import RetryExhaustedError, TransientProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 1.0   # seconds, doubling each retry: 1, 2, 4 ...
DEFAULT_MAX_DELAY = 30.0
JITTER_MAX = 0.5           # random jitter 0–0.5s added to each delay


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay: float = DEFAULT_BASE_DELAY
    max_delay: float = DEFAULT_MAX_DELAY
    jitter: float = JITTER_MAX

    def compute_delay(self, attempt: int, base_delay: Optional[float] = None) -> float:
        """Delay after the given 0-based failed attempt."""
        base = self.base_delay if base_delay is None else base_delay
        if base <= 0:
            return 0.0
        delay = base * (2 ** attempt) + random.uniform(0, self.jitter)
        return min(delay, self.max_delay)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        *,
        timeout: Optional[float] = None,
        label: str = "",
        on_attempt: Optional[Callable[[int], Awaitable[None]]] = None,
    ) -> T:
        """
        Run `operation` until it succeeds or the attempt budget is spent.

        Args:
            operation:    Zero-arg coroutine factory, called once per attempt.
            max_attempts: Attempt budget (defaults to the policy's).
            base_delay:   First backoff delay in seconds (defaults to the policy's).
            timeout:      Per-attempt timeout in seconds.
            label:        Name used in logs and in the exhausted error.
            on_attempt:   Awaited with the 1-based attempt number before each attempt.

        Raises:
            RetryExhaustedError:    every attempt failed transiently.
            PermanentProviderError: (and any other non-transient error) as-is, at once.
        """
        attempts_allowed = max(1, max_attempts or self.max_attempts)
        last_error: Optional[TransientProviderError] = None

        for attempt in range(attempts_allowed):
            if on_attempt is not None:
                await on_attempt(attempt + 1)

            try:
                if timeout is not None:
                    return await asyncio.wait_for(operation(), timeout=timeout)
                return await operation()
            except asyncio.TimeoutError:
                last_error = TransientProviderError(
                    f"{label or 'operation'} timed out after {timeout}s", label
                )
            except TransientProviderError as e:
                last_error = e

            if attempt + 1 >= attempts_allowed:
                break

            delay = self.compute_delay(attempt, base_delay)
            if last_error.retry_after is not None:
                delay = min(last_error.retry_after, self.max_delay)

            logger.warning(
                f"{label or 'operation'} transient failure on attempt "
                f"{attempt + 1}/{attempts_allowed}: {last_error} — retrying in {delay:.1f}s"
            )
            if delay > 0:
                await asyncio.sleep(delay)

        raise RetryExhaustedError(attempts_allowed, last_error, label)
