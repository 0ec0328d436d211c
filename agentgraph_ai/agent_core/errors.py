from __future__ import annotations

"""Exception hierarchy of the agent runtime.

Propagation rules
-----------------

Only tool-level failures are absorbed into the conversation: a plain exception
raised by a tool is rendered into its tool-result message, and a
``RecoverableError`` is rendered through ``to_prompt`` so the model can retry
with corrected arguments. Every other error in this module aborts the current
invocation unchanged.

Checkpoint precondition errors (``CheckpointNotFoundError``,
``CheckpointCompletedError``, ``ApprovalDecisionRequiredError``,
``ToolExecutorRequiredError``) are raised before any state is mutated.
"""

import json
import re
from typing import Any, Optional

_SENSITIVE_KEY_PATTERNS = (
    re.compile(r"password", re.IGNORECASE),
    re.compile(r"api[_-]?key", re.IGNORECASE),
    re.compile(r"token", re.IGNORECASE),
    re.compile(r"secret", re.IGNORECASE),
    re.compile(r"credential", re.IGNORECASE),
    re.compile(r"access[_-]?key", re.IGNORECASE),
    re.compile(r"private[_-]?key", re.IGNORECASE),
    re.compile(r"authorization", re.IGNORECASE),
)

REDACTED = "[REDACTED]"


class AgentRuntimeError(Exception):
    """Base class for every error raised by the agent runtime."""


class GraphDefinitionError(AgentRuntimeError, ValueError):
    """A graph was compiled with a missing entry point or a dangling edge."""


class StepBudgetExceededError(AgentRuntimeError):
    """The graph engine's safety ceiling was hit before reaching the terminal node."""

    def __init__(self, max_steps: int) -> None:
        super().__init__(f"Graph execution exceeded maximum steps: {max_steps}")
        self.max_steps = max_steps


class ContextOverflowError(AgentRuntimeError):
    """The compactor cannot fit the remaining history into the token budget."""

    def __init__(self, current_tokens: int, max_tokens: int, recommendation: str) -> None:
        super().__init__(
            f"Context overflow: {current_tokens} tokens exceeds budget of {max_tokens}. {recommendation}"
        )
        self.current_tokens = current_tokens
        self.max_tokens = max_tokens
        self.recommendation = recommendation


class AgentCancelledError(AgentRuntimeError):
    """The invocation observed its cancellation token."""

    def __init__(self, message: str = "Execution cancelled") -> None:
        super().__init__(message)


class ToolExecutionError(AgentRuntimeError):
    """A tool failed. Rendered into the tool-result text by the execute node."""

    def __init__(self, message: str, *, tool_name: Optional[str] = None) -> None:
        super().__init__(message)
        self.tool_name = tool_name


class FatalToolError(ToolExecutionError):
    """A tool failure that must abort the invocation (and sibling branches) instead of being absorbed."""


class ToolConflictError(AgentRuntimeError):
    """Two tools with the same name were registered under the ``error`` conflict strategy."""


def redact_secrets(value: Any) -> Any:
    """Return a copy of ``value`` with values of secret-looking keys replaced by ``[REDACTED]``.

    Nested dicts and lists are walked recursively; non-container values are
    returned unchanged.
    """
    if isinstance(value, dict):
        out: dict[str, Any] = {}
        for key, item in value.items():
            if any(p.search(str(key)) for p in _SENSITIVE_KEY_PATTERNS):
                out[key] = REDACTED
            else:
                out[key] = redact_secrets(item)
        return out
    if isinstance(value, list):
        return [redact_secrets(item) for item in value]
    return value


def _truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    if max_length <= 3:
        return text[:max_length]
    return text[: max_length - 3] + "..."


class RecoverableError(ToolExecutionError):
    """Tool error rendered as a prompt so the model can correct itself.

    Attributes:
        recovery_suggestion: Human-readable hint on how to fix the call.
        modified_params: Suggested replacement arguments (secrets redacted on render).
        retryable: Whether retrying the call can succeed.
    """

    def __init__(
        self,
        message: str,
        *,
        tool_name: str,
        recovery_suggestion: Optional[str] = None,
        modified_params: Optional[dict[str, Any]] = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(message, tool_name=tool_name)
        self.message = message
        self.recovery_suggestion = recovery_suggestion
        self.modified_params = modified_params
        self.retryable = retryable

    def to_prompt(self, max_length: int = 2000) -> str:
        """Render the error as tool-result text, truncated to ``max_length`` characters."""
        lines = [f"[Tool Error: {self.tool_name}]", self.message]
        if self.recovery_suggestion:
            lines.append(f"Recovery: {self.recovery_suggestion}")
        if self.modified_params:
            params = json.dumps(redact_secrets(self.modified_params), separators=(",", ":"), default=str)
            lines.append(f"Suggested params: {params}")
        return _truncate("\n".join(lines), max_length)


class CheckpointError(AgentRuntimeError):
    """Base class of checkpoint precondition violations."""


class CheckpointNotFoundError(CheckpointError):
    def __init__(self, thread_id: str) -> None:
        super().__init__(f"No checkpoint found for thread: {thread_id}")
        self.thread_id = thread_id


class CheckpointCompletedError(CheckpointError):
    def __init__(self, thread_id: str) -> None:
        super().__init__(f"Cannot resume completed thread: {thread_id}")
        self.thread_id = thread_id


class ApprovalDecisionRequiredError(CheckpointError):
    def __init__(self, thread_id: str) -> None:
        super().__init__(f"Thread {thread_id} is pending approval; an approval decision is required to resume")
        self.thread_id = thread_id


class ToolExecutorRequiredError(CheckpointError):
    def __init__(self, thread_id: str) -> None:
        super().__init__(f"Thread {thread_id}: approving pending tool calls requires a tool executor")
        self.thread_id = thread_id


class PendingApprovalMissingError(CheckpointError):
    def __init__(self, thread_id: str) -> None:
        super().__init__(f"Checkpoint of thread {thread_id} does not have pending approval")
        self.thread_id = thread_id


class InvalidStatusTransitionError(CheckpointError):
    """A checkpoint status change that the lifecycle does not allow."""


class CheckpointStoreError(AgentRuntimeError):
    """A durable checkpoint backend failed after exhausting its retries."""
