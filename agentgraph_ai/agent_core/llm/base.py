"""LLM invocation boundary.

``LLMClient.complete`` is the only network boundary of the agent loop. The
predict node hands it metadata-free message dicts and OpenAI-style function
tool schemas and receives a ``Completion``.

The loop derives completion purely from ``Completion.tool_calls``;
``finish_reason`` is recorded for callers but never trusted, since providers
may leave it empty.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Sequence

from ..cancellation import CancellationToken
from ..schemas.base import BaseSchema
from ..schemas.domain import Usage
from ..schemas.messages import Message, ToolCall


@dataclass(frozen=True)
class SamplingParams:
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_tokens: Optional[int] = None
    stop: Optional[tuple[str, ...]] = None


class Completion(BaseSchema):
    message: Message
    finish_reason: Optional[str] = None
    usage: Optional[Usage] = None
    reasoning: Optional[str] = None

    @property
    def tool_calls(self) -> list[ToolCall]:
        return list(self.message.tool_calls or [])


class LLMClient(Protocol):
    async def complete(
        self,
        *,
        model: str,
        messages: Sequence[Dict[str, Any]],
        tool_schemas: Sequence[Dict[str, Any]],
        sampling: SamplingParams,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Completion:
        """
        Run one chat completion.

        Args:
            model: Provider model identifier.
            messages: Outbound messages (``Message.to_api`` form, no runtime metadata).
            tool_schemas: OpenAI-style function tool descriptions.
            sampling: Sampling parameters; ``None`` fields use provider defaults.
            cancel_token: Cancellation handle the call must observe.

        Returns:
            The assistant reply with tool calls, finish reason and usage.
        """
        ...
