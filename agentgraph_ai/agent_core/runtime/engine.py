from __future__ import annotations

"""Resumable executor: the agent loop with checkpoints and approval interrupts.

The executor drives the predict/execute nodes of an ``AgentGraph`` directly
so it can persist state between them. Checkpoints are only written at safe
points:

- after every execute step (``active``),
- when a batch of tool calls needs a human decision (``pending_approval``),
- when the run ends (``completed``).

Approval is checked for the whole batch *before* any call runs, and the
checkpoint is written *after* the calls ran, so resuming a crashed thread
repeats at most one predict call and never a tool call.

Resume paths
------------

- ``active``: the stored state is continued as-is (crash recovery).
- ``pending_approval``: needs ``approval_decision``. Approving runs the
  deferred calls through the caller's ``tool_executor`` and the rest of the
  batch through their registered tools; denying answers every call of the
  batch with a rejection result and completes the thread.
- ``completed``: rejected with ``CheckpointCompletedError``.

All preconditions are checked before the state is touched.
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, Tuple, Union

from ..cancellation import CancellationToken
from ..errors import (
    ApprovalDecisionRequiredError,
    CheckpointCompletedError,
    CheckpointNotFoundError,
    PendingApprovalMissingError,
    StepBudgetExceededError,
    ToolExecutorRequiredError,
)
from ..policy.approval import REJECTED_MESSAGE, check_approval_batch
from ..repos.interfaces import CheckpointStore
from ..schemas.domain import (
    Checkpoint,
    CheckpointStatus,
    PendingApproval,
    StepResult,
    ensure_transition,
)
from ..schemas.messages import Message, tool_result_message
from .agent_graph import AgentGraph
from .models import AgentState, ResumableResult, deserialize_state, new_state, serialize_state, state_snapshot
from .nodes import AgentNodes, CallRunner

logger = logging.getLogger(__name__)

APPROVAL_REJECTED = "approval_rejected"

ToolExecutor = Callable[[str, Dict[str, Any], Optional[CancellationToken]], Awaitable[Any]]


class ResumableExecutor:
    """Run an ``AgentGraph`` with checkpointing, interrupts and resume."""

    def __init__(self, agent_graph: AgentGraph) -> None:
        self._agent = agent_graph

    async def invoke(
        self,
        messages: Sequence[Message],
        *,
        thread_id: str,
        store: CheckpointStore,
        resume: bool = False,
        approval_decision: Optional[bool] = None,
        tool_executor: Optional[ToolExecutor] = None,
        cancel_token: Optional[CancellationToken] = None,
        custom: Optional[Dict[str, Any]] = None,
    ) -> ResumableResult:
        """
        Run or resume one thread.

        Args:
            messages: Input of a fresh run; ignored when resuming.
            thread_id: Checkpoint key of the execution lineage.
            store: Checkpoint store.
            resume: Continue from the newest checkpoint of ``thread_id``.
            approval_decision: Decision for a ``pending_approval`` checkpoint.
            tool_executor: ``(tool_name, args, cancel_token)`` callback running
                approved deferred calls.
            cancel_token: Cancellation handle threaded through every node.
            custom: Free-form metadata attached to every checkpoint written.

        Returns:
            A ``ResumableResult``; ``interrupted`` is set when the run stopped
            for approval.

        Raises:
            CheckpointNotFoundError: ``resume`` without a stored checkpoint.
            CheckpointCompletedError: The thread already completed.
            PendingApprovalMissingError: A ``pending_approval`` checkpoint without
                its held-back batch.
            ApprovalDecisionRequiredError: Pending approval without a decision.
            ToolExecutorRequiredError: Approving without ``tool_executor``.
        """
        if resume:
            checkpoint, decision = await self._load_resumable(store, thread_id, approval_decision, tool_executor)
            if messages:
                logger.warning("Ignoring %s input messages while resuming thread %s", len(messages), thread_id)
            run = _Run(
                self._agent,
                self._agent.create_nodes(self._agent.injected_skills()),
                thread_id=thread_id,
                store=store,
                custom=custom,
            )
            run.previous_status = checkpoint.metadata.status
            state = deserialize_state(
                checkpoint.state,
                tools=self._agent.tools,
                cancel_token=cancel_token,
                approval_config=self._agent.approval_config,
            )
            logger.info(
                "Resuming thread %s from %s checkpoint %s (step %s)",
                thread_id,
                checkpoint.metadata.status.value,
                checkpoint.metadata.id,
                checkpoint.metadata.step_count,
            )
            if isinstance(decision, _Rejection):
                return await run.reject(state, decision.pending)
            if isinstance(decision, _Approval):
                state = await run.approve(state, decision.pending, decision.tool_executor)
        else:
            prepared, injected = await self._agent.prepare_messages(messages, thread_id)
            run = _Run(self._agent, self._agent.create_nodes(injected), thread_id=thread_id, store=store, custom=custom)
            state = new_state(
                prepared,
                tools=self._agent.tools,
                max_steps=self._agent.max_steps,
                cancel_token=cancel_token,
                approval_config=self._agent.approval_config,
            )

        return await run.loop(state)

    @staticmethod
    async def _load_resumable(
        store: CheckpointStore,
        thread_id: str,
        approval_decision: Optional[bool],
        tool_executor: Optional[ToolExecutor],
    ) -> Tuple[Checkpoint, Union[_Approval, _Rejection, None]]:
        checkpoint = await store.load(thread_id)
        if checkpoint is None:
            raise CheckpointNotFoundError(thread_id)
        status = checkpoint.metadata.status
        if status == CheckpointStatus.completed:
            raise CheckpointCompletedError(thread_id)
        if status != CheckpointStatus.pending_approval:
            return checkpoint, None

        pending = checkpoint.metadata.pending_approval
        if pending is None:
            raise PendingApprovalMissingError(thread_id)
        if approval_decision is None:
            raise ApprovalDecisionRequiredError(thread_id)
        if not approval_decision:
            return checkpoint, _Rejection(pending)
        if tool_executor is None:
            raise ToolExecutorRequiredError(thread_id)
        return checkpoint, _Approval(pending, tool_executor)


@dataclass(frozen=True)
class _Approval:
    pending: PendingApproval
    tool_executor: ToolExecutor


@dataclass(frozen=True)
class _Rejection:
    pending: PendingApproval


class _Run:
    """State of one ``ResumableExecutor.invoke`` call."""

    def __init__(
        self,
        agent: AgentGraph,
        nodes: AgentNodes,
        *,
        thread_id: str,
        store: CheckpointStore,
        custom: Optional[Dict[str, Any]],
    ) -> None:
        self.agent = agent
        self.nodes = nodes
        self.thread_id = thread_id
        self.store = store
        self.custom = custom
        self.previous_status: Optional[CheckpointStatus] = None
        self.checkpoint_ids: list[str] = []

    async def save(
        self,
        state: AgentState,
        status: CheckpointStatus,
        pending_approval: Optional[PendingApproval] = None,
    ) -> None:
        ensure_transition(self.previous_status, status)
        metadata = await self.store.save(
            self.thread_id,
            serialize_state(state),
            status=status,
            pending_approval=pending_approval,
            custom=self.custom,
        )
        self.previous_status = status
        self.checkpoint_ids.append(metadata.id)
        logger.debug("Checkpoint %s saved (%s): %s", metadata.id, status.value, state_snapshot(state))

    def result(
        self,
        state: AgentState,
        *,
        interrupted: bool = False,
        pending_approval: Optional[PendingApproval] = None,
    ) -> ResumableResult:
        return ResumableResult(
            text=state["output"],
            reasoning=state["reasoning"],
            steps=self.nodes.steps,
            usage=state.get("usage"),
            finish_reason=None if interrupted else state.get("finish_reason"),
            compaction=self.nodes.compaction_result,
            state=state,
            interrupted=interrupted,
            pending_approval=pending_approval,
            checkpoint_ids=self.checkpoint_ids,
        )

    async def approve(self, state: AgentState, pending: PendingApproval, tool_executor: ToolExecutor) -> AgentState:
        """Run the held-back batch and record an ``active`` checkpoint."""
        token = state.get("cancel_token")
        runners: Dict[str, CallRunner] = {
            call.id: _executor_runner(tool_executor, call.function.name, token)
            for call in pending.tool_calls
            if pending.is_deferred(call)
        }

        logger.info("Thread %s approved; running %s deferred call(s)", self.thread_id, len(runners))
        state = {**state, **await self.nodes.execute(state, check_approvals=False, runners=runners)}  # type: ignore[assignment]
        await self.save(state, CheckpointStatus.active)
        return state

    async def reject(self, state: AgentState, pending: PendingApproval) -> ResumableResult:
        """Answer the held-back batch with rejections and complete the thread."""
        calls = pending.tool_calls
        results: list[Message] = []
        for call in calls:
            self.nodes.record(
                StepResult(
                    type="tool_result",
                    tool_name=call.function.name,
                    tool_call_id=call.id,
                    result=REJECTED_MESSAGE,
                    is_error=True,
                )
            )
            results.append(tool_result_message(call.id, REJECTED_MESSAGE, call.function.name))

        logger.info("Thread %s rejected; %s call(s) not executed", self.thread_id, len(calls))
        state = {  # type: ignore[assignment]
            **state,
            "messages": list(state["messages"]) + results,
            "done": True,
            "finish_reason": APPROVAL_REJECTED,
        }
        await self.save(state, CheckpointStatus.completed)
        await self._persist_memory(state)
        return self.result(state)

    async def loop(self, state: AgentState) -> ResumableResult:
        """Alternate predict and execute, checkpointing between them."""
        ceiling = self.agent.engine_max_steps
        node_runs = 0
        while not state["done"]:
            node_runs += 1
            if node_runs > ceiling:
                raise StepBudgetExceededError(ceiling)

            state = {**state, **await self.nodes.predict(state)}  # type: ignore[assignment]
            if state["done"]:
                break

            last = state["messages"][-1]
            batch = await check_approval_batch(
                last.tool_calls or [], state["tools"], state["messages"], state.get("approval_config")
            )
            if batch.has_deferred:
                pending = PendingApproval(
                    tool_calls=list(last.tool_calls or []),
                    deferred_tools=batch.deferred_tools,
                    deferred_call_ids=batch.deferred_call_ids,
                )
                await self.save(state, CheckpointStatus.pending_approval, pending)
                logger.info(
                    "Thread %s interrupted for approval of %s", self.thread_id, ", ".join(batch.deferred_tools)
                )
                return self.result(state, interrupted=True, pending_approval=pending)

            state = {**state, **await self.nodes.execute(state, check_approvals=False)}  # type: ignore[assignment]
            await self.save(state, CheckpointStatus.active)

        await self.save(state, CheckpointStatus.completed)
        await self._persist_memory(state)
        logger.info("Thread %s completed after %s step(s)", self.thread_id, state["step_count"])
        return self.result(state)

    async def _persist_memory(self, state: AgentState) -> None:
        if self.agent.memory is not None:
            await self.agent.memory.persist(state["messages"], self.thread_id)


def _executor_runner(
    tool_executor: ToolExecutor, tool_name: str, token: Optional[CancellationToken]
) -> CallRunner:
    async def run(args: Dict[str, Any]) -> Any:
        return await tool_executor(tool_name, args, token)

    return run


__all__ = ["APPROVAL_REJECTED", "ResumableExecutor", "ToolExecutor"]
