from __future__ import annotations

"""Tool protocol and execution data models.

A tool is the unit of side-effecting work the model can request. The execute
node resolves a tool call by name, parses its JSON arguments and awaits
``Tool.run`` with a ``ToolContext``.

Tools should:

- return a plain value; ``str`` results are used verbatim and anything else is
  JSON-encoded for the tool-result message,
- raise ``RecoverableError`` to hand the model a corrective prompt, or
  ``FatalToolError`` to abort the invocation,
- leave approval decisions to the approval gate.
"""

import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, Union

from ..cancellation import CancellationToken
from ..schemas.domain import RiskLevel, ToolSourceType
from ..schemas.messages import Message
from .schema import ObjectSchema


@dataclass(frozen=True)
class ToolSource:
    """Where a tool came from, e.g. ``mcp:github`` or ``builtin``."""

    type: ToolSourceType = ToolSourceType.builtin
    namespace: Optional[str] = None

    @property
    def full(self) -> str:
        if self.namespace:
            return f"{self.type.value}:{self.namespace}"
        return self.type.value


@dataclass(frozen=True)
class ToolContext:
    """Execution context passed to tool implementations.

    Attributes
    ----------
    call_id:
        Id of the tool call being executed.
    history:
        Conversation messages at the time of the call.
    cancel_token:
        The invocation's cancellation handle; long-running tools should pass it
        on or poll ``cancel_token.cancelled``.
    """

    call_id: str
    history: Sequence[Message] = ()
    cancel_token: Optional[CancellationToken] = None


ToolFunction = Callable[[Dict[str, Any], ToolContext], Union[Any, Awaitable[Any]]]


@dataclass
class Tool:
    """A callable the model can invoke by name."""

    name: str
    description: str
    execute: ToolFunction
    parameters: ObjectSchema = field(default_factory=ObjectSchema)
    source: ToolSource = field(default_factory=ToolSource)
    requires_approval: bool = False
    risk: Optional[RiskLevel] = None
    approval_handler: Optional[Callable[..., Any]] = None

    async def run(self, args: Dict[str, Any], ctx: ToolContext) -> Any:
        result = self.execute(args, ctx)
        if inspect.isawaitable(result):
            result = await result
        return result

    def to_schema(self) -> Dict[str, Any]:
        """OpenAI-compatible function tool description."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters.to_json_schema(),
            },
        }
