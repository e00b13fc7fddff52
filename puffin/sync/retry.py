"""Retry logic with exponential backoff for remote calls.

Only failures carrying a transient HTTP status (rate limiting or a server
error) are retried. Anything else, including timeouts and client errors,
fails on the first attempt: a bad ID or a missing permission does not get
better by asking again.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    multiplier: float = 2.0
    retryable_status_codes: frozenset = RETRYABLE_STATUS_CODES

    def delay_for(self, attempt: int) -> float:
        """Delay before the retry that follows failed ``attempt`` (1-based)."""
        return min(self.base_delay * (self.multiplier ** (attempt - 1)), self.max_delay)


def status_code_of(error: BaseException) -> int | None:
    status = getattr(error, "status_code", None)
    return status if isinstance(status, int) else None


def is_retryable(error: BaseException, policy: RetryPolicy) -> bool:
    status = status_code_of(error)
    return status is not None and status in policy.retryable_status_codes


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    context: str,
    policy: RetryPolicy | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """
    Run ``operation`` until it succeeds or the retry budget is spent.

    Args:
        operation: Zero-argument callable returning an awaitable
        context: Human-readable label used in log messages
        policy: Retry budget and backoff settings
        sleep: Awaitable sleep, replaceable in tests

    Returns:
        Whatever ``operation`` returns

    Raises:
        The last error raised by ``operation``
    """
    policy = policy or RetryPolicy()

    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await operation()
        except Exception as e:
            if not is_retryable(e, policy) or attempt == policy.max_attempts:
                if attempt > 1:
                    logger.error(f"{context} failed after {attempt} attempts: {e}")
                raise

            delay = policy.delay_for(attempt)
            logger.warning(
                f"{context} failed (attempt {attempt}/{policy.max_attempts}): {e}. "
                f"Retrying in {delay:.2f} seconds..."
            )
            await sleep(delay)

    raise RuntimeError(f"{context}: retry policy allows no attempts")
