"""Explicit cancellation handle shared by one invocation.

A ``CancellationToken`` is passed by the caller into ``invoke`` and from there
into every LLM call, tool execution context and tool executor callback. It is
never looked up implicitly.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Optional, TypeVar

from .errors import AgentCancelledError

T = TypeVar("T")


class CancellationToken:
    """One-shot cancellation flag with an awaitable view."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: Optional[str] = None) -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise AgentCancelledError(self._reason or "Execution cancelled")

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first.

        When cancellation wins, the pending operation is cancelled and
        ``AgentCancelledError`` is raised.
        """
        self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()
        if task in done:
            return task.result()
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        raise AgentCancelledError(self._reason or "Execution cancelled")
