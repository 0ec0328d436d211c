from __future__ import annotations

import pytest
from pydantic import ValidationError

from agentgraph_ai.agent_core.schemas.messages import (
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


class TestMessageMeta:
    def test_skill_meta(self) -> None:
        meta = MessageMeta(skill_id="alpha", droppable=True, priority=0)

        assert meta.skill_id == "alpha"

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"droppable": True, "priority": 1},
            {"skill_id": "a", "summary_id": "s", "droppable": True, "priority": 1},
            {"skill_id": "a", "droppable": True},
        ],
    )
    def test_droppable_requires_one_discriminator_and_priority(self, kwargs) -> None:
        with pytest.raises(ValidationError):
            MessageMeta(**kwargs)

    def test_non_droppable_meta_is_unconstrained(self) -> None:
        assert MessageMeta().droppable is False


class TestMessage:
    def test_droppable_and_skill_views(self) -> None:
        msg = system_message("skill body", meta=MessageMeta(skill_id="alpha", droppable=True, priority=0))

        assert msg.is_droppable is True
        assert msg.skill_id == "alpha"
        assert user_message("hi").is_droppable is False

    def test_text_of_multimodal_content(self) -> None:
        msg = user_message(
            [
                ContentPart(type="text", text="look at "),
                ContentPart(type="image_url", image_url=ImageURL(url="https://img/1.png")),
                ContentPart(type="text", text="this"),
            ]
        )

        assert msg.text == "look at this"

    def test_to_api_strips_meta(self) -> None:
        msg = system_message("x", meta=MessageMeta(summary_id="summary_t", droppable=True, priority=100))

        assert msg.to_api() == {"role": "system", "content": "x"}

    def test_to_api_normalizes_image_parts(self) -> None:
        msg = user_message([ContentPart(type="image", image="https://img/2.png")])

        assert msg.to_api()["content"] == [{"type": "image_url", "image_url": {"url": "https://img/2.png"}}]

    def test_to_api_keeps_tool_fields(self) -> None:
        call = ToolCall(id="c1", function=ToolCallFunction(name="search", arguments='{"q": "x"}'))
        assistant = Message(role="assistant", content="", tool_calls=[call])
        result = tool_result_message("c1", "found", "search")

        out = strip_meta([assistant, result])

        assert out[0]["tool_calls"] == [
            {"id": "c1", "type": "function", "function": {"name": "search", "arguments": '{"q": "x"}'}}
        ]
        assert out[1] == {"role": "tool", "content": "found", "tool_call_id": "c1", "name": "search"}

    def test_unknown_fields_are_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Message(role="user", content="x", tags=["x"])  # type: ignore[call-arg]

    def test_tool_call_name_shortcut(self) -> None:
        assert ToolCall(id="c", function=ToolCallFunction(name="n")).name == "n"
