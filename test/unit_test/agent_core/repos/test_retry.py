from __future__ import annotations

import pytest

from agentgraph_ai.agent_core.errors import CheckpointStoreError
from agentgraph_ai.agent_core.repos.retry import RetryPolicy, with_retry


class FlakyOperation:
    def __init__(self, failures: int, error: Exception) -> None:
        self.failures = failures
        self.error = error
        self.attempts = 0

    async def __call__(self) -> str:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise self.error
        return "ok"


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _transient(error: BaseException) -> bool:
    return isinstance(error, ConnectionError)


def test_delay_is_exponential_and_capped() -> None:
    policy = RetryPolicy(backoff_initial=0.1, backoff_factor=2.0, backoff_max=0.5)

    assert [policy.delay(i) for i in range(4)] == pytest.approx([0.1, 0.2, 0.4, 0.5])


@pytest.mark.asyncio
async def test_transient_failures_are_retried() -> None:
    operation = FlakyOperation(2, ConnectionError("blip"))
    sleep = RecordingSleep()

    result = await with_retry(operation, is_transient=_transient, policy=RetryPolicy(), sleep=sleep)

    assert result == "ok"
    assert operation.attempts == 3
    assert sleep.delays == pytest.approx([0.1, 0.2])


@pytest.mark.asyncio
async def test_permanent_failure_is_not_retried() -> None:
    operation = FlakyOperation(5, ValueError("schema mismatch"))
    sleep = RecordingSleep()

    with pytest.raises(ValueError):
        await with_retry(operation, is_transient=_transient, sleep=sleep)

    assert operation.attempts == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_exhausted_retries_raise_store_error() -> None:
    cause = ConnectionError("database unreachable")
    operation = FlakyOperation(10, cause)

    with pytest.raises(CheckpointStoreError, match="save checkpoint failed after 3 attempts") as exc_info:
        await with_retry(
            operation,
            is_transient=_transient,
            policy=RetryPolicy(max_retries=2),
            description="save checkpoint",
            sleep=RecordingSleep(),
        )

    assert operation.attempts == 3
    assert exc_info.value.__cause__ is cause
