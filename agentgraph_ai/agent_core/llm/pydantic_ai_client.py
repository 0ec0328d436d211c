from __future__ import annotations

"""``LLMClient`` backed by a pydantic-ai model.

The adapter converts the runtime's OpenAI-style messages into pydantic-ai
``ModelRequest`` / ``ModelResponse`` history, issues one direct model request
(no pydantic-ai agent loop; tool execution stays with the execute node) and
maps the response back into a ``Completion``.

Any pydantic-ai ``Model`` (OpenAI, Anthropic, Google, fallback, function and
test models) or a ``"provider:model"`` string is accepted.
"""

import json
import logging
from typing import Any, Dict, Optional, Sequence, Union

from pydantic_ai import ModelSettings
from pydantic_ai.direct import model_request
from pydantic_ai.messages import (
    ImageUrl,
    ModelMessage,
    ModelRequest,
    ModelResponse,
    SystemPromptPart,
    TextPart,
    ThinkingPart,
    ToolCallPart,
    ToolReturnPart,
    UserPromptPart,
)
from pydantic_ai.models import Model, ModelRequestParameters
from pydantic_ai.tools import ToolDefinition

from ..cancellation import CancellationToken
from ..schemas.domain import Usage
from ..schemas.messages import Message, ToolCall, ToolCallFunction
from .base import Completion, SamplingParams

logger = logging.getLogger(__name__)


def _user_content(content: Union[str, list[dict[str, Any]]]) -> Union[str, list[Any]]:
    if isinstance(content, str):
        return content
    parts: list[Any] = []
    for part in content:
        if part.get("type") == "image_url":
            parts.append(ImageUrl(url=part["image_url"]["url"]))
        elif part.get("text"):
            parts.append(part["text"])
    return parts


def _text_of(content: Union[str, list[dict[str, Any]], None]) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    return "".join(p.get("text") or "" for p in content if p.get("type") == "text")


def to_model_messages(messages: Sequence[Dict[str, Any]]) -> list[ModelMessage]:
    """Group outbound chat messages into pydantic-ai request/response history."""
    history: list[ModelMessage] = []
    pending: list[Any] = []
    call_names: dict[str, str] = {}

    def flush() -> None:
        if pending:
            history.append(ModelRequest(parts=list(pending)))
            pending.clear()

    for msg in messages:
        role = msg["role"]
        if role == "system":
            pending.append(SystemPromptPart(content=_text_of(msg.get("content"))))
        elif role == "user":
            pending.append(UserPromptPart(content=_user_content(msg.get("content") or "")))
        elif role == "tool":
            call_id = msg.get("tool_call_id") or ""
            pending.append(
                ToolReturnPart(
                    tool_name=msg.get("name") or call_names.get(call_id, "unknown"),
                    content=_text_of(msg.get("content")),
                    tool_call_id=call_id,
                )
            )
        else:
            flush()
            parts: list[Any] = []
            text = _text_of(msg.get("content"))
            if text:
                parts.append(TextPart(content=text))
            for call in msg.get("tool_calls") or []:
                call_names[call["id"]] = call["function"]["name"]
                parts.append(
                    ToolCallPart(
                        tool_name=call["function"]["name"],
                        args=call["function"].get("arguments") or "{}",
                        tool_call_id=call["id"],
                    )
                )
            history.append(ModelResponse(parts=parts))
    flush()
    return history


def to_tool_definitions(tool_schemas: Sequence[Dict[str, Any]]) -> list[ToolDefinition]:
    return [
        ToolDefinition(
            name=schema["function"]["name"],
            description=schema["function"].get("description"),
            parameters_json_schema=schema["function"].get("parameters") or {"type": "object", "properties": {}},
        )
        for schema in tool_schemas
    ]


def _model_settings(sampling: SamplingParams) -> Optional[ModelSettings]:
    settings: Dict[str, Any] = {}
    if sampling.temperature is not None:
        settings["temperature"] = sampling.temperature
    if sampling.top_p is not None:
        settings["top_p"] = sampling.top_p
    if sampling.max_tokens is not None:
        settings["max_tokens"] = sampling.max_tokens
    if sampling.stop:
        settings["stop_sequences"] = list(sampling.stop)
    return ModelSettings(**settings) if settings else None


def _usage_of(response: ModelResponse) -> Optional[Usage]:
    usage = getattr(response, "usage", None)
    if usage is None:
        return None
    prompt = getattr(usage, "input_tokens", None) or 0
    completion = getattr(usage, "output_tokens", None) or 0
    return Usage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=prompt + completion)


def from_model_response(response: ModelResponse) -> Completion:
    texts: list[str] = []
    thoughts: list[str] = []
    calls: list[ToolCall] = []
    for part in response.parts:
        if isinstance(part, TextPart):
            texts.append(part.content)
        elif isinstance(part, ThinkingPart):
            thoughts.append(part.content)
        elif isinstance(part, ToolCallPart):
            calls.append(
                ToolCall(
                    id=part.tool_call_id,
                    function=ToolCallFunction(name=part.tool_name, arguments=part.args_as_json_str()),
                )
            )
    message = Message(role="assistant", content="".join(texts), tool_calls=calls or None)
    return Completion(
        message=message,
        finish_reason=getattr(response, "finish_reason", None),
        usage=_usage_of(response),
        reasoning="".join(thoughts) or None,
    )


class PydanticAIClient:
    """Issue direct model requests through pydantic-ai.

    Args:
        model: A pydantic-ai ``Model`` instance, or ``None`` to use the ``model``
            argument of ``complete`` as a ``"provider:model"`` name.
    """

    def __init__(self, model: Optional[Union[Model, str]] = None) -> None:
        self._model = model

    async def complete(
        self,
        *,
        model: str,
        messages: Sequence[Dict[str, Any]],
        tool_schemas: Sequence[Dict[str, Any]],
        sampling: SamplingParams,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Completion:
        target = self._model if self._model is not None else model
        params = ModelRequestParameters(function_tools=to_tool_definitions(tool_schemas))
        request = model_request(
            target,
            to_model_messages(messages),
            model_settings=_model_settings(sampling),
            model_request_parameters=params,
        )
        logger.debug("LLM request: model=%s messages=%s tools=%s", model, len(messages), len(tool_schemas))
        if cancel_token is not None:
            response = await cancel_token.run(request)
        else:
            response = await request
        completion = from_model_response(response)
        logger.debug(
            "LLM response: tool_calls=%s finish_reason=%s",
            json.dumps([c.function.name for c in completion.tool_calls]),
            completion.finish_reason,
        )
        return completion
