from __future__ import annotations

import pytest
from pydantic_ai.messages import (
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
from pydantic_ai.models.function import AgentInfo, FunctionModel

from agentgraph_ai.agent_core.llm.base import SamplingParams
from agentgraph_ai.agent_core.llm.pydantic_ai_client import (
    PydanticAIClient,
    from_model_response,
    to_model_messages,
    to_tool_definitions,
)
from agentgraph_ai.agent_core.cancellation import CancellationToken

_SEARCH_SCHEMA = {
    "type": "function",
    "function": {
        "name": "search",
        "description": "Search the web",
        "parameters": {"type": "object", "properties": {"q": {"type": "string"}}, "required": ["q"]},
    },
}


def test_to_model_messages_groups_requests_and_responses() -> None:
    history = to_model_messages(
        [
            {"role": "system", "content": "be brief"},
            {"role": "user", "content": "find cats"},
            {
                "role": "assistant",
                "content": "",
                "tool_calls": [{"id": "c1", "type": "function", "function": {"name": "search", "arguments": '{"q": "cats"}'}}],
            },
            {"role": "tool", "content": "3 results", "tool_call_id": "c1"},
        ]
    )

    assert len(history) == 3
    first, second, third = history
    assert isinstance(first, ModelRequest)
    assert isinstance(first.parts[0], SystemPromptPart)
    assert isinstance(first.parts[1], UserPromptPart)
    assert isinstance(second, ModelResponse)
    assert isinstance(second.parts[0], ToolCallPart)
    assert second.parts[0].tool_call_id == "c1"
    assert isinstance(third, ModelRequest)
    tool_return = third.parts[0]
    assert isinstance(tool_return, ToolReturnPart)
    assert tool_return.tool_name == "search"
    assert tool_return.content == "3 results"


def test_to_tool_definitions() -> None:
    (definition,) = to_tool_definitions([_SEARCH_SCHEMA])

    assert definition.name == "search"
    assert definition.description == "Search the web"
    assert definition.parameters_json_schema["required"] == ["q"]


def test_from_model_response_collects_text_thinking_and_calls() -> None:
    completion = from_model_response(
        ModelResponse(
            parts=[
                ThinkingPart(content="let me look"),
                TextPart(content="Searching."),
                ToolCallPart(tool_name="search", args='{"q": "cats"}', tool_call_id="c7"),
            ]
        )
    )

    assert completion.message.role == "assistant"
    assert completion.message.content == "Searching."
    assert completion.reasoning == "let me look"
    assert completion.tool_calls[0].id == "c7"
    assert completion.tool_calls[0].function.arguments == '{"q": "cats"}'


def test_from_model_response_without_calls() -> None:
    completion = from_model_response(ModelResponse(parts=[TextPart(content="done")]))

    assert completion.message.tool_calls is None
    assert completion.tool_calls == []


@pytest.mark.asyncio
async def test_client_round_trip_with_function_model() -> None:
    seen: dict = {}

    def respond(messages: list[ModelMessage], info: AgentInfo) -> ModelResponse:
        seen["tools"] = [t.name for t in info.function_tools]
        seen["messages"] = len(messages)
        return ModelResponse(parts=[ToolCallPart(tool_name="search", args={"q": "cats"}, tool_call_id="c1")])

    client = PydanticAIClient(FunctionModel(respond))

    completion = await client.complete(
        model="function",
        messages=[{"role": "user", "content": "find cats"}],
        tool_schemas=[_SEARCH_SCHEMA],
        sampling=SamplingParams(temperature=0.0),
        cancel_token=CancellationToken(),
    )

    assert seen == {"tools": ["search"], "messages": 1}
    assert completion.tool_calls[0].function.name == "search"
    assert completion.usage is not None
