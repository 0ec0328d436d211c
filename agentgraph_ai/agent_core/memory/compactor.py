from __future__ import annotations

"""Token-budget compaction of message history.

``compact`` keeps a message list under ``CompactionConfig.max_tokens``:

1. Total the history with a message-level estimator (per-message overhead,
   image and tool-call costs, CJK weighting).
2. Under budget: return the input unchanged.
3. Remove droppable messages one at a time, lowest priority first (ties go to
   the earliest index). Skill priorities are recomputed on every call as the
   alphabetical rank of the skill names present, so the outcome does not
   depend on injection order.
4. Still over budget: trim the oldest non-pinned messages from the front.
   Pinned messages are non-droppable system messages and the last user
   message. An assistant message carrying tool calls is always removed
   together with its tool results.
5. If what remains still cannot fit, raise ``ContextOverflowError``; message
   content is never truncated.

Running ``compact`` again on its own output at the same budget is a no-op.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

from ..errors import ContextOverflowError
from ..schemas.messages import Message
from .token_estimator import estimate_message_tokens

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompactionConfig:
    """Budget and estimator used by ``compact``.

    ``estimate_tokens`` must be message-level; a content-only estimator
    undercounts and lets the history overrun the budget.
    """

    max_tokens: int
    estimate_tokens: Callable[[Message], int] = estimate_message_tokens


@dataclass(frozen=True)
class InjectedSkill:
    name: str
    priority: int


@dataclass
class CompactionResult:
    messages: list[Message]
    occurred: bool = False
    dropped_skills: list[str] = field(default_factory=list)
    dropped_messages: int = 0
    orphan_tool_calls: list[str] = field(default_factory=list)
    recommendation: Optional[str] = None


def skill_priorities(
    messages: Sequence[Message], current_skills: Optional[Sequence[InjectedSkill]] = None
) -> dict[str, int]:
    """Map each skill name to its alphabetical rank (0 is evicted first)."""
    names = {m.meta.skill_id for m in messages if m.meta is not None and m.meta.skill_id}
    if current_skills:
        names.update(s.name for s in current_skills)
    return {name: rank for rank, name in enumerate(sorted(names))}


def _effective_priority(message: Message, ranks: dict[str, int]) -> int:
    meta = message.meta
    assert meta is not None
    if meta.skill_id is not None:
        return ranks[meta.skill_id]
    return meta.priority or 0


def _last_user_index(messages: Sequence[Message]) -> int:
    for idx in range(len(messages) - 1, -1, -1):
        if messages[idx].role == "user":
            return idx
    return -1


def _is_pinned(messages: Sequence[Message], idx: int, last_user: int) -> bool:
    msg = messages[idx]
    if msg.role == "system" and not msg.is_droppable:
        return True
    return idx == last_user


def _trim_group(messages: Sequence[Message], idx: int) -> list[int]:
    """Indices that must leave the history together with ``messages[idx]``."""
    msg = messages[idx]
    if msg.role == "assistant" and msg.tool_calls:
        call_ids = {c.id for c in msg.tool_calls}
        return [idx] + [
            j for j in range(idx + 1, len(messages)) if messages[j].role == "tool" and messages[j].tool_call_id in call_ids
        ]
    if msg.role == "tool" and msg.tool_call_id is not None:
        for j in range(idx - 1, -1, -1):
            owner = messages[j]
            if owner.role == "assistant" and owner.tool_calls and any(c.id == msg.tool_call_id for c in owner.tool_calls):
                return _trim_group(messages, j)
    return [idx]


def find_orphan_tool_calls(messages: Sequence[Message]) -> list[str]:
    """Ids of tool calls that have no tool-result message in ``messages``."""
    answered = {m.tool_call_id for m in messages if m.role == "tool" and m.tool_call_id}
    orphans: list[str] = []
    for m in messages:
        if m.role == "assistant" and m.tool_calls:
            orphans.extend(c.id for c in m.tool_calls if c.id not in answered)
    return orphans


def _overflow_recommendation(messages: Sequence[Message], costs: Sequence[int], max_tokens: int) -> str:
    largest = max(range(len(costs)), key=lambda i: costs[i]) if costs else -1
    if largest >= 0 and costs[largest] > max_tokens:
        role = messages[largest].role
        return (
            f"Message {largest} ({role}) alone needs {costs[largest]} tokens; "
            f"shorten it or raise max_tokens above {costs[largest]}."
        )
    return "Pinned messages (system prompt and latest user message) do not fit; shorten them or raise max_tokens."


def compact(
    messages: Sequence[Message],
    config: CompactionConfig,
    current_skills: Optional[Sequence[InjectedSkill]] = None,
) -> CompactionResult:
    """Fit ``messages`` into ``config.max_tokens``.

    Args:
        messages: The history to compact. The input sequence is not modified.
        config: Budget and message-level estimator.
        current_skills: Skills injected into this conversation; their names take
            part in the alphabetical priority ranking even when not present.

    Returns:
        A ``CompactionResult`` holding the surviving messages and what was dropped.

    Raises:
        ContextOverflowError: if the remaining history cannot fit.
    """
    working = list(messages)
    costs = [config.estimate_tokens(m) for m in working]
    total = sum(costs)
    if total <= config.max_tokens:
        return CompactionResult(messages=working, orphan_tool_calls=find_orphan_tool_calls(working))

    start_total = total
    result = CompactionResult(messages=working, occurred=True)
    ranks = skill_priorities(working, current_skills)

    while total > config.max_tokens:
        candidates = [i for i, m in enumerate(working) if m.is_droppable]
        if not candidates:
            break
        victim = min(candidates, key=lambda i: (_effective_priority(working[i], ranks), i))
        dropped = working.pop(victim)
        costs.pop(victim)
        total = sum(costs)
        if dropped.skill_id is not None:
            result.dropped_skills.append(dropped.skill_id)
        else:
            result.dropped_messages += 1

    while total > config.max_tokens:
        last_user = _last_user_index(working)
        start = next((i for i in range(len(working)) if not _is_pinned(working, i, last_user)), None)
        if start is None:
            break
        group = _trim_group(working, start)
        for idx in sorted(group, reverse=True):
            working.pop(idx)
            costs.pop(idx)
        result.dropped_messages += len(group)
        total = sum(costs)

    if total > config.max_tokens:
        recommendation = _overflow_recommendation(working, costs, config.max_tokens)
        logger.warning("Compaction cannot fit history: %s > %s tokens", total, config.max_tokens)
        raise ContextOverflowError(total, config.max_tokens, recommendation)

    result.messages = working
    result.orphan_tool_calls = find_orphan_tool_calls(working)
    result.recommendation = (
        f"Dropped {len(result.dropped_skills)} skills and {result.dropped_messages} messages to fit context."
    )
    logger.debug(
        "Compacted history from %s to %s tokens (skills dropped=%s, messages dropped=%s)",
        start_total,
        total,
        result.dropped_skills,
        result.dropped_messages,
    )
    return result
