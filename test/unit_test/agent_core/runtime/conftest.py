from __future__ import annotations

import json
from typing import Any, Callable, Dict, Optional, Sequence, Union

import pytest

from agentgraph_ai.agent_core.cancellation import CancellationToken
from agentgraph_ai.agent_core.llm.base import Completion, SamplingParams
from agentgraph_ai.agent_core.schemas.domain import Usage
from agentgraph_ai.agent_core.schemas.messages import Message, ToolCall, ToolCallFunction

ScriptItem = Union[Completion, Callable[[Sequence[Dict[str, Any]]], Completion]]


def reply(text: str, *, usage: Optional[Usage] = None, reasoning: Optional[str] = None) -> Completion:
    return Completion(
        message=Message(role="assistant", content=text),
        finish_reason="stop",
        usage=usage,
        reasoning=reasoning,
    )


def calls(*specs: tuple[str, str, Dict[str, Any]], text: str = "", usage: Optional[Usage] = None) -> Completion:
    """Assistant reply requesting ``(call_id, tool_name, args)`` tool calls."""
    return Completion(
        message=Message(
            role="assistant",
            content=text,
            tool_calls=[
                ToolCall(id=call_id, function=ToolCallFunction(name=name, arguments=json.dumps(args)))
                for call_id, name, args in specs
            ],
        ),
        finish_reason="tool_calls",
        usage=usage,
    )


class ScriptedLLM:
    """LLM fake replaying a fixed list of completions and recording requests."""

    def __init__(self, script: Sequence[ScriptItem], *, repeat_last: bool = False) -> None:
        self.script = list(script)
        self.repeat_last = repeat_last
        self.requests: list[list[Dict[str, Any]]] = []
        self.tool_names: list[list[str]] = []

    async def complete(
        self,
        *,
        model: str,
        messages: Sequence[Dict[str, Any]],
        tool_schemas: Sequence[Dict[str, Any]],
        sampling: SamplingParams,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Completion:
        self.requests.append(list(messages))
        self.tool_names.append([s["function"]["name"] for s in tool_schemas])
        index = len(self.requests) - 1
        if index >= len(self.script):
            if not self.repeat_last:
                raise AssertionError(f"unexpected LLM call #{index + 1}")
            index = len(self.script) - 1
        item = self.script[index]
        return item(messages) if callable(item) else item

    @property
    def call_count(self) -> int:
        return len(self.requests)


@pytest.fixture
def scripted_llm() -> Callable[..., ScriptedLLM]:
    return ScriptedLLM


@pytest.fixture
def reply_with() -> Callable[..., Completion]:
    return reply


@pytest.fixture
def call_tools() -> Callable[..., Completion]:
    return calls
