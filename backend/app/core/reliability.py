"""
Reliability Utilities.

Retries transient ledger failures (lock timeouts, storage errors) with
exponential backoff. Each retry is a brand-new attempt against the
then-current balance; nothing from the failed attempt is carried over.
"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from backend.app.core.exceptions import AppException

logger = logging.getLogger("emi.reliability")

T = TypeVar("T")


class RetryPolicy:
    """
    Bounded exponential backoff.

    ``attempts`` counts the first call, so ``attempts=1`` never retries.
    """
    def __init__(self, attempts: int = 3, base_delay: float = 0.05, max_delay: float = 1.0):
        self.attempts = max(1, attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay

    def delay_for(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)


async def retry_transient(
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    operation: str = "operation"
) -> T:
    """
    Await ``func()`` and retry it while it raises a retryable AppException.

    Non-retryable errors propagate immediately. After the last attempt the
    final retryable error propagates unchanged.
    """
    attempt = 1
    while True:
        try:
            return await func()
        except AppException as exc:
            if not exc.retryable or attempt >= policy.attempts:
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "Retrying transient failure",
                extra={
                    "operation": operation,
                    "attempt": attempt,
                    "error_code": exc.error_code,
                    "delay_seconds": delay
                }
            )
            attempt += 1
            await asyncio.sleep(delay)
