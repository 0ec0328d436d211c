from __future__ import annotations

"""Agent state and invocation result types.

- ``AgentState`` is the value threaded through the predict/execute graph.
  It is owned by exactly one running loop per thread id.
- ``serialize_state`` / ``deserialize_state`` convert between the live state
  and the JSON-safe ``SerializedAgentState`` stored in checkpoints. The tool
  map, cancellation token and approval policy are never persisted; they are
  re-supplied by the caller on resume.

Node patch semantics
--------------------

``predict`` overwrites ``messages``, ``step_count``, ``done``, ``output``,
``reasoning``, ``finish_reason`` and ``usage`` and preserves the rest.
``execute`` overwrites ``messages`` only. Neither node touches ``tools``,
``max_steps``, ``cancel_token`` or ``approval_config``.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional, Required, TypedDict

from ..cancellation import CancellationToken
from ..memory.compactor import CompactionResult
from ..policy.models import ApprovalConfig
from ..schemas.domain import PendingApproval, SerializedAgentState, StepResult, Usage
from ..schemas.messages import Message
from ..tools.base import Tool


class AgentState(TypedDict, total=False):
    """Mutable state of one agent invocation.

    Required keys:

    - ``messages``: conversation history, including droppable skill/summary messages.
    - ``tools``: name-to-tool map used by the execute node.
    - ``step_count`` / ``max_steps``: predict calls made and the domain limit.
    - ``done``: set by predict when the reply carries no tool calls.
    - ``output`` / ``reasoning``: accumulated assistant text and reasoning.

    Optional keys:

    - ``finish_reason`` / ``usage``: last provider finish reason, summed usage.
    - ``cancel_token`` / ``approval_config``: caller-supplied runtime context.
    """

    messages: Required[list[Message]]
    tools: Required[Mapping[str, Tool]]
    step_count: Required[int]
    max_steps: Required[int]
    done: Required[bool]
    output: Required[str]
    reasoning: Required[str]
    finish_reason: Optional[str]
    usage: Optional[Usage]
    cancel_token: Optional[CancellationToken]
    approval_config: Optional[ApprovalConfig]


@dataclass(frozen=True)
class Skill:
    """Knowledge injected as a droppable system message."""

    name: str
    content: str
    token_count: int = 0


@dataclass(frozen=True)
class AgentGraphEvents:
    """Optional observer callbacks.

    Callbacks are synchronous and must not raise; exceptions are logged and
    ignored by the caller-facing loop.
    """

    on_step_finish: Optional[Callable[[StepResult], None]] = None
    on_node_enter: Optional[Callable[[str], None]] = None
    on_node_exit: Optional[Callable[[str, AgentState], None]] = None


@dataclass
class AgentGraphResult:
    text: str
    reasoning: str
    steps: list[StepResult]
    usage: Optional[Usage]
    finish_reason: Optional[str]
    compaction: Optional[CompactionResult]
    state: AgentState


@dataclass
class ResumableResult(AgentGraphResult):
    interrupted: bool = False
    pending_approval: Optional[PendingApproval] = None
    checkpoint_ids: list[str] = field(default_factory=list)


def new_state(
    messages: list[Message],
    *,
    tools: Mapping[str, Tool],
    max_steps: int,
    cancel_token: Optional[CancellationToken] = None,
    approval_config: Optional[ApprovalConfig] = None,
) -> AgentState:
    return AgentState(
        messages=list(messages),
        tools=tools,
        step_count=0,
        max_steps=max_steps,
        done=False,
        output="",
        reasoning="",
        finish_reason=None,
        usage=None,
        cancel_token=cancel_token,
        approval_config=approval_config,
    )


def serialize_state(state: AgentState) -> SerializedAgentState:
    """Project ``state`` onto its persisted form."""
    return SerializedAgentState(
        messages=[m.model_copy(deep=True) for m in state["messages"]],
        step_count=state["step_count"],
        max_steps=state["max_steps"],
        done=state["done"],
        output=state.get("output", ""),
        reasoning=state.get("reasoning", ""),
        finish_reason=state.get("finish_reason"),
        usage=state.get("usage"),
    )


def deserialize_state(
    serialized: SerializedAgentState,
    *,
    tools: Mapping[str, Tool],
    cancel_token: Optional[CancellationToken] = None,
    approval_config: Optional[ApprovalConfig] = None,
) -> AgentState:
    """Rebuild a live state, rehydrating runtime context from the caller."""
    return AgentState(
        messages=[m.model_copy(deep=True) for m in serialized.messages],
        tools=tools,
        step_count=serialized.step_count,
        max_steps=serialized.max_steps,
        done=serialized.done,
        output=serialized.output,
        reasoning=serialized.reasoning,
        finish_reason=serialized.finish_reason,
        usage=serialized.usage,
        cancel_token=cancel_token,
        approval_config=approval_config,
    )


def state_snapshot(state: AgentState) -> dict[str, Any]:
    """Loggable summary of ``state``."""
    return {
        "messages": len(state["messages"]),
        "step_count": state["step_count"],
        "max_steps": state["max_steps"],
        "done": state["done"],
    }
