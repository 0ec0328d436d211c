from __future__ import annotations

"""Fan-out of agent state into concurrent branches.

``ParallelExecutor.execute`` clones the state once per branch, runs the
branches concurrently (optionally bounded by ``max_concurrency``) and merges
their results with a reducer.

- Each branch gets its own copy of the messages; tools and approval policy
  are shared read-only.
- All branches share one group ``CancellationToken`` linked to the caller's
  token. A failing branch cancels the group when ``fail_fast`` is set;
  ``FatalToolError`` always does.
- Branches never see a checkpoint store. Persisting the merged state is up
  to the caller.
"""

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence

from ..cancellation import CancellationToken
from ..errors import AgentCancelledError, FatalToolError
from ..schemas.domain import Usage
from .models import AgentState

logger = logging.getLogger(__name__)

BranchFunction = Callable[[AgentState], Awaitable[AgentState]]
Reducer = Callable[[AgentState, Sequence[AgentState]], AgentState]


@dataclass(frozen=True)
class ParallelBranch:
    name: str
    execute: BranchFunction


def clone_state_for_branch(state: AgentState, cancel_token: Optional[CancellationToken]) -> AgentState:
    """Copy ``state`` for one branch, swapping in the group token."""
    return AgentState(
        messages=[m.model_copy(deep=True) for m in state["messages"]],
        tools=state["tools"],
        step_count=state["step_count"],
        max_steps=state["max_steps"],
        done=state["done"],
        output=state["output"],
        reasoning=state["reasoning"],
        finish_reason=state.get("finish_reason"),
        usage=state["usage"].model_copy() if state.get("usage") else None,
        cancel_token=cancel_token,
        approval_config=state.get("approval_config"),
    )


def default_reducer(base: AgentState, results: Sequence[AgentState]) -> AgentState:
    """
    Merge branch results in branch order.

    - messages: the shared prefix once, then each branch's new messages
    - step_count: highest branch step count plus one
    - usage: summed
    - output / reasoning: non-empty values joined with blank lines
    - done: true if any branch finished
    """
    if not results:
        raise ValueError("Cannot reduce empty parallel results")
    if len(results) == 1:
        return results[0]

    prefix = len(base["messages"])
    messages = list(base["messages"])
    for r in results:
        messages.extend(r["messages"][prefix:])

    usage: Optional[Usage] = None
    for r in results:
        if r.get("usage") is not None:
            usage = r["usage"] if usage is None else usage.add(r["usage"])

    first = results[0]
    return AgentState(
        messages=messages,
        tools=base["tools"],
        step_count=max(r["step_count"] for r in results) + 1,
        max_steps=base["max_steps"],
        done=any(r["done"] for r in results),
        output="\n\n".join(r["output"] for r in results if r["output"]),
        reasoning="\n\n".join(r["reasoning"] for r in results if r["reasoning"]),
        finish_reason=first.get("finish_reason"),
        usage=usage,
        cancel_token=base.get("cancel_token"),
        approval_config=base.get("approval_config"),
    )


class ParallelExecutor:
    """Run branches concurrently over copies of one state.

    Args:
        max_concurrency: Upper bound of simultaneously running branches.
        fail_fast: Cancel the remaining branches on the first failure.
        reducer: ``(base_state, branch_results) -> merged_state``.
    """

    def __init__(
        self,
        *,
        max_concurrency: Optional[int] = None,
        fail_fast: bool = True,
        reducer: Optional[Reducer] = None,
    ) -> None:
        if max_concurrency is not None and max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.max_concurrency = max_concurrency
        self.fail_fast = fail_fast
        self.reducer = reducer or default_reducer

    async def execute(self, state: AgentState, branches: Sequence[ParallelBranch]) -> AgentState:
        """
        Run ``branches`` and merge their states.

        Raises:
            AgentCancelledError: The caller's token fired.
            FatalToolError: A branch raised one; siblings were cancelled.
            Exception: The first branch failure.
        """
        if not branches:
            return state

        parent: Optional[CancellationToken] = state.get("cancel_token")
        if parent is not None:
            parent.raise_if_cancelled()

        group = CancellationToken()
        semaphore = asyncio.Semaphore(self.max_concurrency) if self.max_concurrency else None
        forward = asyncio.ensure_future(self._forward(parent, group)) if parent is not None else None

        async def _run(index: int, branch: ParallelBranch) -> AgentState:
            async with semaphore if semaphore is not None else contextlib.nullcontext():
                group.raise_if_cancelled()
                logger.debug("Starting branch %s (%s)", branch.name, index)
                try:
                    return await group.run(branch.execute(clone_state_for_branch(state, group)))
                except Exception as e:
                    if isinstance(e, FatalToolError) or self.fail_fast:
                        if not group.cancelled:
                            logger.warning("Branch %s failed, cancelling siblings: %s", branch.name, e)
                        group.cancel(f"Branch {branch.name} failed")
                    raise

        try:
            outcomes = await asyncio.gather(
                *(_run(i, b) for i, b in enumerate(branches)), return_exceptions=True
            )
        finally:
            if forward is not None:
                forward.cancel()

        failures = [o for o in outcomes if isinstance(o, BaseException)]
        if failures:
            if parent is not None and parent.cancelled:
                raise AgentCancelledError(parent.reason or "Execution cancelled")
            # Report the root cause, not the cancellations it triggered.
            root = next((f for f in failures if not isinstance(f, AgentCancelledError)), failures[0])
            raise root

        return self.reducer(state, outcomes)  # type: ignore[arg-type]

    @staticmethod
    async def _forward(parent: CancellationToken, group: CancellationToken) -> None:
        await parent.wait()
        group.cancel(parent.reason)
