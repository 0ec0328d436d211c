from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Literal, Optional
from uuid import uuid4

from pydantic import Field

from ..errors import InvalidStatusTransitionError
from .base import BaseSchema, CamelSchema
from .messages import Message, ToolCall


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AutonomyProfile(str, Enum):
    unrestricted = "unrestricted"
    balanced = "balanced"
    strict = "strict"


class RiskLevel(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"


class ToolSourceType(str, Enum):
    user = "user"
    skill = "skill"
    mcp = "mcp"
    builtin = "builtin"


class CheckpointStatus(str, Enum):
    active = "active"
    pending_approval = "pending_approval"
    completed = "completed"


_ALLOWED_TRANSITIONS: dict[CheckpointStatus, frozenset[CheckpointStatus]] = {
    CheckpointStatus.active: frozenset(
        {CheckpointStatus.active, CheckpointStatus.pending_approval, CheckpointStatus.completed}
    ),
    CheckpointStatus.pending_approval: frozenset({CheckpointStatus.active, CheckpointStatus.completed}),
    CheckpointStatus.completed: frozenset(),
}


def ensure_transition(previous: Optional[CheckpointStatus], new: CheckpointStatus) -> None:
    """Validate a checkpoint status change.

    ``previous=None`` means the thread has no checkpoint in the current lineage,
    so any initial status is accepted.

    Raises:
        InvalidStatusTransitionError: if the lifecycle forbids the change.
    """
    if previous is None:
        return
    if new not in _ALLOWED_TRANSITIONS[previous]:
        raise InvalidStatusTransitionError(f"checkpoint status cannot change from {previous.value} to {new.value}")


class Usage(BaseSchema):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def add(self, other: Optional["Usage"]) -> "Usage":
        if other is None:
            return self.model_copy()
        return Usage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


class StepResult(BaseSchema):
    """One observable step of an agent invocation."""
    type: Literal["text", "tool_call", "tool_result"]
    content: Optional[str] = None
    tool_name: Optional[str] = None
    tool_call_id: Optional[str] = None
    args: Optional[Dict[str, Any]] = None
    result: Optional[str] = None
    is_error: bool = False


class PendingApproval(CamelSchema):
    """Tool calls held back until a human decides.

    ``deferred_tools`` names the tools that triggered the interrupt and
    ``deferred_call_ids`` the exact calls; other calls of the same batch were
    cleared by policy and run through their registered tools on approval.
    """
    tool_calls: list[ToolCall]
    deferred_tools: list[str]
    deferred_call_ids: list[str] = Field(default_factory=list)
    requested_at: datetime = Field(default_factory=_utc_now)

    def is_deferred(self, call: ToolCall) -> bool:
        if self.deferred_call_ids:
            return call.id in self.deferred_call_ids
        return call.function.name in self.deferred_tools


class CheckpointMetadata(CamelSchema):
    id: str
    thread_id: str
    created_at: datetime = Field(default_factory=_utc_now)
    step_count: int
    status: CheckpointStatus = CheckpointStatus.active
    pending_approval: Optional[PendingApproval] = None
    custom: Optional[Dict[str, Any]] = None


class SerializedAgentState(CamelSchema):
    """JSON-safe projection of the agent state (no tool map, no cancellation token)."""
    messages: list[Message]
    step_count: int
    max_steps: int
    done: bool
    output: str = ""
    reasoning: str = ""
    finish_reason: Optional[str] = None
    usage: Optional[Usage] = None


class Checkpoint(CamelSchema):
    metadata: CheckpointMetadata
    state: SerializedAgentState


def new_checkpoint_id(thread_id: str) -> str:
    return f"ckpt_{thread_id}_{uuid4().hex[:12]}"
