"""Conversation memory applied before the first predict call.

``MemoryManager.process`` layers three mechanisms over the incoming history:

- a short-term sliding window over the most recent messages,
- an optional conversation summary (per thread), injected as a droppable
  system message,
- optional long-term retrieval from a ``VectorStore``, injected as another
  droppable system message.

Injected messages are tagged with ``summary_id`` so the compactor may evict
them before touching conversation turns. Summaries (priority 100) outrank
retrieved context (priority 90), which outranks skills (alphabetical rank).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Sequence
from uuid import uuid4

from pydantic import Field

from ..schemas.base import BaseSchema
from ..schemas.messages import Message, MessageMeta

logger = logging.getLogger(__name__)

SUMMARY_PRIORITY = 100
CONTEXT_PRIORITY = 90

Summarize = Callable[[Sequence[Message], str], Awaitable[str]]


class MemoryDocument(BaseSchema):
    id: str = Field(default_factory=lambda: str(uuid4()))
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class VectorStore(Protocol):
    """Long-term memory backend."""

    async def add(self, documents: Sequence[MemoryDocument]) -> None:
        ...

    async def search(self, query: str, limit: int = 5) -> list[MemoryDocument]:
        ...

    async def clear(self) -> None:
        ...


class InMemoryVectorStore:
    """Word-overlap scored store for tests and small deployments.

    No embeddings are computed; the score is the number of shared lowercase
    words divided by the size of the larger word set. Documents without any
    overlap are never returned.
    """

    def __init__(self) -> None:
        self._documents: list[MemoryDocument] = []

    async def add(self, documents: Sequence[MemoryDocument]) -> None:
        self._documents.extend(documents)

    async def search(self, query: str, limit: int = 5) -> list[MemoryDocument]:
        query_words = set(re.split(r"\s+", query.lower().strip())) - {""}
        scored: list[tuple[float, int, MemoryDocument]] = []
        for idx, doc in enumerate(self._documents):
            doc_words = set(re.split(r"\s+", doc.content.lower().strip())) - {""}
            overlap = len(query_words & doc_words)
            if overlap == 0:
                continue
            scored.append((overlap / max(len(query_words), len(doc_words), 1), idx, doc))
        scored.sort(key=lambda item: (-item[0], item[1]))
        return [doc for _, _, doc in scored[:limit]]

    async def clear(self) -> None:
        self._documents.clear()

    def __len__(self) -> int:
        return len(self._documents)


@dataclass(frozen=True)
class ShortTermConfig:
    max_messages: int = 50


@dataclass(frozen=True)
class SummarizerConfig:
    enabled: bool = False
    threshold: int = 50


@dataclass(frozen=True)
class LongTermConfig:
    retrieve_limit: int = 3
    min_persist_chars: int = 20


@dataclass(frozen=True)
class MemoryConfig:
    short_term: ShortTermConfig = field(default_factory=ShortTermConfig)
    summarizer: SummarizerConfig = field(default_factory=SummarizerConfig)
    long_term: LongTermConfig = field(default_factory=LongTermConfig)


@dataclass
class MemoryProcessResult:
    messages: list[Message]
    summarized: bool = False
    summary: Optional[str] = None
    dropped_count: int = 0


async def default_summarize(messages: Sequence[Message], thread_id: str) -> str:
    """Concatenate the first user and assistant turns into a short digest."""
    user_texts = [m.text for m in messages if m.role == "user" and m.text]
    assistant_texts = [m.text for m in messages if m.role == "assistant" and m.text]
    return "\n".join(
        [
            f"User discussed: {', '.join(user_texts[:3])[:200]}...",
            f"Assistant covered: {', '.join(assistant_texts[:3])[:200]}...",
        ]
    )


def _insert_after_first_system(messages: list[Message], message: Message) -> None:
    idx = next((i for i, m in enumerate(messages) if m.role == "system"), None)
    messages.insert(0 if idx is None else idx + 1, message)


def _window(messages: Sequence[Message], max_messages: int) -> list[Message]:
    """Keep the last ``max_messages`` messages plus a leading system prompt.

    The window never begins with tool results whose originating call fell
    outside it.
    """
    if len(messages) <= max_messages:
        return list(messages)
    head: list[Message] = []
    body = list(messages)
    if body and body[0].role == "system" and not body[0].is_droppable:
        head = [body.pop(0)]
    tail = body[-max_messages:] if max_messages > 0 else []
    while tail and tail[0].role == "tool":
        tail.pop(0)
    return head + tail


class MemoryManager:
    """Short-term, summary and long-term memory for agent threads.

    Summaries are kept per thread id inside the manager; ``clear`` resets every
    thread (and the vector store) for test isolation.
    """

    def __init__(
        self,
        config: Optional[MemoryConfig] = None,
        *,
        vector_store: Optional[VectorStore] = None,
        summarize: Optional[Summarize] = None,
    ) -> None:
        self._config = config or MemoryConfig()
        self._store = vector_store
        self._summarize = summarize or default_summarize
        self._summaries: dict[str, str] = {}

    @property
    def config(self) -> MemoryConfig:
        return self._config

    async def process(
        self, messages: Sequence[Message], thread_id: str = "default", *, generate_summary: bool = True
    ) -> MemoryProcessResult:
        """Apply summary generation, windowing and retrieval to ``messages``."""
        result = MemoryProcessResult(messages=list(messages))

        threshold = self._config.summarizer.threshold
        if self._config.summarizer.enabled and generate_summary and len(messages) > threshold:
            older = list(messages[: len(messages) - threshold // 2])
            result.summary = await self._summarize(older, thread_id)
            self._summaries[thread_id] = result.summary
            result.summarized = True
            logger.debug("Summarized %s messages for thread %s", len(older), thread_id)

        windowed = _window(result.messages, self._config.short_term.max_messages)
        result.dropped_count = len(result.messages) - len(windowed)
        result.messages = windowed

        existing = self._summaries.get(thread_id)
        if existing:
            _insert_after_first_system(
                result.messages,
                Message(
                    role="system",
                    content=f"[CONVERSATION SUMMARY]\n{existing}",
                    meta=MessageMeta(summary_id=f"summary_{thread_id}", droppable=True, priority=SUMMARY_PRIORITY),
                ),
            )

        if self._store is not None:
            await self._inject_context(result.messages, messages, thread_id)

        return result

    async def _inject_context(self, out: list[Message], original: Sequence[Message], thread_id: str) -> None:
        last_user = next((m for m in reversed(original) if m.role == "user"), None)
        if last_user is None or not isinstance(last_user.content, str) or not last_user.content:
            return
        assert self._store is not None
        docs = await self._store.search(last_user.content, self._config.long_term.retrieve_limit)
        if not docs:
            return
        context = Message(
            role="system",
            content="[RELEVANT CONTEXT]\n" + "\n---\n".join(d.content for d in docs),
            meta=MessageMeta(summary_id=f"context_{thread_id}", droppable=True, priority=CONTEXT_PRIORITY),
        )
        summary_idx = next(
            (i for i, m in enumerate(out) if m.meta is not None and (m.meta.summary_id or "").startswith("summary_")),
            None,
        )
        if summary_idx is not None:
            out.insert(summary_idx + 1, context)
        else:
            _insert_after_first_system(out, context)

    async def persist(self, messages: Sequence[Message], thread_id: str) -> int:
        """Store sufficiently long conversation turns in the vector store.

        Returns:
            Number of documents written (0 without a vector store).
        """
        if self._store is None:
            return 0
        docs = [
            MemoryDocument(content=m.content, metadata={"role": m.role, "thread_id": thread_id})
            for m in messages
            if m.role in ("user", "assistant")
            and isinstance(m.content, str)
            and len(m.content) > self._config.long_term.min_persist_chars
        ]
        if docs:
            await self._store.add(docs)
        return len(docs)

    def get_summary(self, thread_id: str) -> Optional[str]:
        return self._summaries.get(thread_id)

    def set_summary(self, thread_id: str, summary: str) -> None:
        self._summaries[thread_id] = summary

    def clear_thread(self, thread_id: str) -> None:
        self._summaries.pop(thread_id, None)

    async def clear(self) -> None:
        self._summaries.clear()
        if self._store is not None:
            await self._store.clear()
