"""Conversation message models.

``Message`` mirrors the OpenAI-style chat message shape (``tool_calls`` and
``tool_call_id`` keep their wire names) and adds an optional ``meta`` tag used
only inside the runtime. ``Message.to_api`` produces the outbound dict; the
tag is never part of it.

Droppable messages
------------------

A message whose ``meta.droppable`` is set can be evicted by the compactor under
token pressure. It carries exactly one discriminator:

- ``skill_id``: an injected skill body.
- ``summary_id``: a conversation summary or retrieved long-term context.
"""

from __future__ import annotations

from typing import Any, Literal, Optional, Union

from pydantic import Field, model_validator

from .base import BaseSchema

Role = Literal["system", "user", "assistant", "tool"]


class ToolCallFunction(BaseSchema):
    name: str
    arguments: str = ""


class ToolCall(BaseSchema):
    id: str
    type: Literal["function"] = "function"
    function: ToolCallFunction

    @property
    def name(self) -> str:
        return self.function.name


class ImageURL(BaseSchema):
    url: str
    detail: Optional[str] = None


class ContentPart(BaseSchema):
    """One part of multimodal content.

    ``image`` parts are a shorthand accepted from callers; they are rewritten to
    ``image_url`` parts before reaching the LLM.
    """
    type: Literal["text", "image_url", "image"]
    text: Optional[str] = None
    image_url: Optional[ImageURL] = None
    image: Optional[str] = None

    def to_api(self) -> dict[str, Any]:
        if self.type == "image":
            return {"type": "image_url", "image_url": {"url": self.image or ""}}
        return self.model_dump(exclude_none=True)


class MessageMeta(BaseSchema):
    """Runtime-only tag attached to a message."""
    skill_id: Optional[str] = None
    summary_id: Optional[str] = None
    droppable: bool = False
    priority: Optional[int] = None

    @model_validator(mode="after")
    def _check_discriminator(self) -> "MessageMeta":
        if self.droppable:
            if (self.skill_id is None) == (self.summary_id is None):
                raise ValueError("droppable message needs exactly one of skill_id or summary_id")
            if self.priority is None:
                raise ValueError("droppable message needs a priority")
        return self


class Message(BaseSchema):
    role: Role
    content: Union[str, list[ContentPart]] = ""
    tool_calls: Optional[list[ToolCall]] = None
    tool_call_id: Optional[str] = None
    name: Optional[str] = None
    meta: Optional[MessageMeta] = Field(default=None, description="Runtime-only tag, stripped before LLM calls.")

    @property
    def is_droppable(self) -> bool:
        return self.meta is not None and self.meta.droppable

    @property
    def skill_id(self) -> Optional[str]:
        return self.meta.skill_id if self.meta is not None else None

    @property
    def text(self) -> str:
        """Plain-text view of ``content`` (image parts contribute nothing)."""
        if isinstance(self.content, str):
            return self.content
        return "".join(part.text or "" for part in self.content if part.type == "text")

    def to_api(self) -> dict[str, Any]:
        """Return the outbound representation: no ``meta``, normalized content."""
        out: dict[str, Any] = {"role": self.role}
        if isinstance(self.content, str):
            out["content"] = self.content
        else:
            out["content"] = [part.to_api() for part in self.content]
        if self.tool_calls:
            out["tool_calls"] = [call.model_dump() for call in self.tool_calls]
        if self.tool_call_id is not None:
            out["tool_call_id"] = self.tool_call_id
        if self.name is not None:
            out["name"] = self.name
        return out


def strip_meta(messages: list[Message]) -> list[dict[str, Any]]:
    """Project messages to their outbound form."""
    return [m.to_api() for m in messages]


def system_message(content: str, **kwargs: Any) -> Message:
    return Message(role="system", content=content, **kwargs)


def user_message(content: Union[str, list[ContentPart]]) -> Message:
    return Message(role="user", content=content)


def tool_result_message(tool_call_id: str, content: str, name: Optional[str] = None) -> Message:
    return Message(role="tool", content=content, tool_call_id=tool_call_id, name=name)
