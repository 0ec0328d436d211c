"""Pydantic models shared by the runtime, the compactor and the checkpoint stores."""

from .base import BaseSchema, CamelSchema
from .domain import (
    AutonomyProfile,
    Checkpoint,
    CheckpointMetadata,
    CheckpointStatus,
    PendingApproval,
    RiskLevel,
    SerializedAgentState,
    StepResult,
    ToolSourceType,
    Usage,
    ensure_transition,
    new_checkpoint_id,
)
from .messages import (
    ContentPart,
    ImageURL,
    Message,
    MessageMeta,
    ToolCall,
    ToolCallFunction,
    strip_meta,
    system_message,
    tool_result_message,
    user_message,
)

__all__ = [
    "AutonomyProfile",
    "BaseSchema",
    "CamelSchema",
    "Checkpoint",
    "CheckpointMetadata",
    "CheckpointStatus",
    "ContentPart",
    "ImageURL",
    "Message",
    "MessageMeta",
    "PendingApproval",
    "RiskLevel",
    "SerializedAgentState",
    "StepResult",
    "ToolCall",
    "ToolCallFunction",
    "ToolSourceType",
    "Usage",
    "ensure_transition",
    "new_checkpoint_id",
    "strip_meta",
    "system_message",
    "tool_result_message",
    "user_message",
]
