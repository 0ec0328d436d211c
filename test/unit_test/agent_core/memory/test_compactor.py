from __future__ import annotations

import pytest

from agentgraph_ai.agent_core.errors import ContextOverflowError
from agentgraph_ai.agent_core.memory.compactor import (
    CompactionConfig,
    InjectedSkill,
    compact,
    find_orphan_tool_calls,
    skill_priorities,
)
from agentgraph_ai.agent_core.schemas.messages import (
    Message,
    MessageMeta,
    ToolCall,
    ToolCallFunction,
    system_message,
    tool_result_message,
    user_message,
)

FLAT = CompactionConfig(max_tokens=0, estimate_tokens=lambda m: 10)


def _budget(max_tokens: int) -> CompactionConfig:
    return CompactionConfig(max_tokens=max_tokens, estimate_tokens=FLAT.estimate_tokens)


def _skill(name: str, rank: int = 0) -> Message:
    return system_message(f"skill {name}", meta=MessageMeta(skill_id=name, droppable=True, priority=rank))


def _summary(summary_id: str, priority: int) -> Message:
    return system_message(summary_id, meta=MessageMeta(summary_id=summary_id, droppable=True, priority=priority))


def _assistant_calls(*call_ids: str) -> Message:
    return Message(
        role="assistant",
        content="",
        tool_calls=[ToolCall(id=c, function=ToolCallFunction(name="search", arguments="{}")) for c in call_ids],
    )


def _tokens(messages: list[Message]) -> int:
    return sum(FLAT.estimate_tokens(m) for m in messages)


def test_under_budget_is_untouched() -> None:
    messages = [system_message("sys"), user_message("hi")]

    result = compact(messages, _budget(20))

    assert result.occurred is False
    assert result.messages == messages
    assert result.dropped_messages == 0


def test_drops_lowest_ranked_skill_first() -> None:
    messages = [system_message("sys"), _skill("alpha"), _skill("zebra"), user_message("hi")]

    result = compact(messages, _budget(30))

    assert result.occurred is True
    assert result.dropped_skills == ["alpha"]
    assert [m.skill_id for m in result.messages] == [None, "zebra", None]


def test_skill_ranking_ignores_injection_order_and_stored_priority() -> None:
    messages = [system_message("sys"), _skill("zebra", rank=0), _skill("alpha", rank=5), user_message("hi")]

    result = compact(messages, _budget(30))

    assert result.dropped_skills == ["alpha"]


def test_summaries_outlive_skills() -> None:
    messages = [system_message("sys"), _summary("summary_t", 100), _summary("context_t", 90), _skill("alpha"), user_message("hi")]

    result = compact(messages, _budget(30))

    assert result.dropped_skills == ["alpha"]
    assert result.dropped_messages == 1
    remaining = [m.meta.summary_id for m in result.messages if m.meta is not None]
    assert remaining == ["summary_t"]


def test_successful_pass_reports_what_was_dropped() -> None:
    messages = [system_message("sys"), _summary("summary_t", 100), _summary("context_t", 90), _skill("alpha"), user_message("hi")]

    result = compact(messages, _budget(30))

    assert result.recommendation == "Dropped 1 skills and 1 messages to fit context."
    assert compact([user_message("hi")], _budget(30)).recommendation is None


def test_trims_oldest_non_pinned_turns() -> None:
    messages = [system_message("sys"), user_message("u1"), Message(role="assistant", content="a1"), user_message("u2")]

    result = compact(messages, _budget(30))

    assert [m.text for m in result.messages] == ["sys", "a1", "u2"]
    assert result.dropped_messages == 1


def test_tool_call_and_results_leave_together() -> None:
    messages = [
        system_message("sys"),
        user_message("u1"),
        _assistant_calls("c1", "c2"),
        tool_result_message("c1", "r1"),
        tool_result_message("c2", "r2"),
        Message(role="assistant", content="answer"),
        user_message("u2"),
    ]

    result = compact(messages, _budget(40))

    assert [m.role for m in result.messages] == ["system", "assistant", "user"]
    assert result.dropped_messages == 4
    assert result.orphan_tool_calls == []
    assert find_orphan_tool_calls(result.messages) == []


def test_orphan_tool_result_is_trimmed_alone() -> None:
    messages = [system_message("sys"), tool_result_message("gone", "r"), user_message("u1"), user_message("u2")]

    result = compact(messages, _budget(30))

    assert [m.text for m in result.messages] == ["sys", "u1", "u2"]


def test_result_fits_and_compaction_is_idempotent() -> None:
    messages = [system_message("sys"), _skill("alpha"), _skill("beta")]
    for i in range(5):
        messages += [user_message(f"u{i}"), _assistant_calls(f"c{i}"), tool_result_message(f"c{i}", "r")]

    first = compact(messages, _budget(60))
    second = compact(first.messages, _budget(60))

    assert _tokens(first.messages) <= 60
    assert second.occurred is False
    assert second.messages == first.messages


def test_overflow_when_pinned_messages_do_not_fit() -> None:
    config = CompactionConfig(max_tokens=50, estimate_tokens=lambda m: len(m.text))
    messages = [system_message("x" * 100), user_message("y" * 10)]

    with pytest.raises(ContextOverflowError) as exc_info:
        compact(messages, config)

    assert exc_info.value.current_tokens == 110
    assert exc_info.value.max_tokens == 50
    assert "Message 0 (system)" in exc_info.value.recommendation


def test_input_is_not_mutated() -> None:
    messages = [system_message("sys"), _skill("alpha"), user_message("hi")]
    snapshot = list(messages)

    compact(messages, _budget(20))

    assert messages == snapshot


def test_skill_priorities_include_current_skills() -> None:
    ranks = skill_priorities([_skill("beta")], [InjectedSkill(name="alpha", priority=0)])

    assert ranks == {"alpha": 0, "beta": 1}
