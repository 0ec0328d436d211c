"""Bounded exponential backoff for durable checkpoint backends.

Delays grow as ``min(backoff_initial * backoff_factor ** attempt, backoff_max)``.
Only errors the caller classifies as transient are retried; everything else
propagates on the first failure. Once retries are exhausted the last error is
wrapped in ``CheckpointStoreError``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from ..errors import CheckpointStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    backoff_initial: float = 0.1
    backoff_factor: float = 2.0
    backoff_max: float = 2.0

    def delay(self, attempt: int) -> float:
        return min(self.backoff_initial * (self.backoff_factor**attempt), self.backoff_max)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    is_transient: Callable[[BaseException], bool],
    policy: Optional[RetryPolicy] = None,
    description: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run ``operation`` retrying transient failures.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt.
        is_transient: Classifies an exception as retryable.
        policy: Backoff parameters.
        description: Name used in log lines and the final error.
        sleep: Awaitable sleep, replaceable in tests.

    Raises:
        CheckpointStoreError: A transient failure persisted past ``max_retries``.
    """
    policy = policy or RetryPolicy()
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as e:
            if not is_transient(e):
                raise
            if attempt >= policy.max_retries:
                logger.error("%s failed after %s attempts: %s", description, attempt + 1, e)
                raise CheckpointStoreError(f"{description} failed after {attempt + 1} attempts: {e}") from e
            backoff = policy.delay(attempt)
            attempt += 1
            logger.warning(
                "%s failed: %s; retrying in %ss (attempt %s/%s)",
                description,
                e,
                backoff,
                attempt,
                policy.max_retries,
            )
            await sleep(backoff)
