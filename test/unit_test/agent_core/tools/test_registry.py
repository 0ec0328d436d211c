from __future__ import annotations

import pytest

from agentgraph_ai.agent_core.errors import ToolConflictError
from agentgraph_ai.agent_core.schemas.domain import ToolSourceType
from agentgraph_ai.agent_core.tools.base import Tool, ToolContext, ToolSource
from agentgraph_ai.agent_core.tools.registry import ToolRegistry


def _tool(name: str, source: ToolSourceType = ToolSourceType.builtin, namespace=None, result: str = "") -> Tool:
    return Tool(
        name=name,
        description=f"{name} tool",
        execute=lambda args, ctx: result or name,
        source=ToolSource(type=source, namespace=namespace),
    )


def test_registry_is_a_mapping() -> None:
    reg = ToolRegistry()
    reg.register(_tool("search"))

    assert "search" in reg
    assert len(reg) == 1
    assert reg.get("missing") is None
    assert list(reg) == ["search"]
    assert reg.to_schemas()[0]["function"]["name"] == "search"


def test_higher_priority_source_wins() -> None:
    reg = ToolRegistry()
    builtin = _tool("search", ToolSourceType.builtin)
    user = _tool("search", ToolSourceType.user)

    assert reg.register(builtin) is True
    assert reg.register(user) is True
    assert reg["search"] is user
    assert reg.register(_tool("search", ToolSourceType.mcp, "web")) is False
    assert reg["search"] is user


def test_equal_priority_keeps_first() -> None:
    reg = ToolRegistry()
    first = _tool("search", ToolSourceType.mcp, "a")

    reg.register(first)
    reg.register(_tool("search", ToolSourceType.mcp, "b"))

    assert reg["search"] is first


def test_error_strategy_raises() -> None:
    reg = ToolRegistry(conflict_strategy="error")
    reg.register(_tool("search"))

    with pytest.raises(ToolConflictError, match="search"):
        reg.register(_tool("search", ToolSourceType.user))


@pytest.mark.parametrize(
    "pattern,excluded",
    [
        ("mcp", True),
        ("mcp:github", True),
        ("mcp:*", True),
        ("mcp:slack", False),
        ("skill", False),
    ],
)
def test_exclude_sources(pattern: str, excluded: bool) -> None:
    reg = ToolRegistry(exclude_sources=[pattern])

    registered = reg.register(_tool("issues", ToolSourceType.mcp, "github"))

    assert registered is (not excluded)
    assert ("issues" in reg) is (not excluded)


def test_register_all_counts() -> None:
    reg = ToolRegistry()

    counts = reg.register_all([_tool("b"), _tool("a", ToolSourceType.mcp), _tool("a")])

    assert counts == {"registered": 2, "skipped": 1}
    assert [t.name for t in reg.all()] == ["a", "b"]

    reg.clear()
    assert len(reg) == 0


@pytest.mark.asyncio
async def test_tool_run_supports_sync_and_async_callables() -> None:
    async def fetch(args, ctx):
        return {"url": args["url"], "call": ctx.call_id}

    sync_tool = _tool("echo", result="pong")
    async_tool = Tool(name="fetch", description="", execute=fetch)
    ctx = ToolContext(call_id="c1")

    assert await sync_tool.run({}, ctx) == "pong"
    assert await async_tool.run({"url": "u"}, ctx) == {"url": "u", "call": "c1"}


def test_source_full_name() -> None:
    assert ToolSource(type=ToolSourceType.mcp, namespace="github").full == "mcp:github"
    assert ToolSource().full == "builtin"
