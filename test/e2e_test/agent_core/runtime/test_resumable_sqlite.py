"""Interrupt, persist and resume an agent thread through the SQL checkpoint store."""

import json
from typing import Any, Dict, Optional, Sequence

import pytest

from agentgraph_ai.agent_core.cancellation import CancellationToken
from agentgraph_ai.agent_core.llm.base import Completion, SamplingParams
from agentgraph_ai.agent_core.repos.sql import SqlCheckpointStore, create_all, create_engine, create_sessionmaker
from agentgraph_ai.agent_core.runtime import AgentGraph, ResumableExecutor, Skill
from agentgraph_ai.agent_core.schemas.domain import CheckpointStatus
from agentgraph_ai.agent_core.schemas.messages import Message, ToolCall, ToolCallFunction, system_message, user_message
from agentgraph_ai.agent_core.tools import Tool


class DeployAssistantLLM:
    """Asks to deploy once, then summarizes whatever the tool returned."""

    def __init__(self) -> None:
        self.calls = 0

    async def complete(
        self,
        *,
        model: str,
        messages: Sequence[Dict[str, Any]],
        tool_schemas: Sequence[Dict[str, Any]],
        sampling: SamplingParams,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Completion:
        self.calls += 1
        last = messages[-1]
        if last["role"] == "tool":
            return Completion(message=Message(role="assistant", content=f"Deploy finished: {last['content']}"))
        call = ToolCall(id="deploy-1", function=ToolCallFunction(name="deploy", arguments=json.dumps({"env": "prod"})))
        return Completion(message=Message(role="assistant", content="Deploying.", tool_calls=[call]))


@pytest.fixture
async def store():
    engine = create_engine("sqlite+aiosqlite:///:memory:")
    await create_all(engine)
    yield SqlCheckpointStore(session_factory=create_sessionmaker(engine))
    await engine.dispose()


def _agent(llm: DeployAssistantLLM) -> AgentGraph:
    deploy = Tool(
        name="deploy",
        description="Deploy the service",
        execute=lambda args, ctx: "should not run in-process",
        requires_approval=True,
    )
    return AgentGraph(llm=llm, model="test", tools=[deploy], skills=[Skill(name="ops", content="Be careful.")])


@pytest.mark.asyncio
async def test_interrupt_and_approve_across_executors(store: SqlCheckpointStore) -> None:
    first = await ResumableExecutor(_agent(DeployAssistantLLM())).invoke(
        [system_message("You are an ops bot."), user_message("ship it")], thread_id="deploy-42", store=store
    )

    assert first.interrupted is True
    assert first.pending_approval.deferred_tools == ["deploy"]
    stored = await store.load("deploy-42")
    assert stored.metadata.status == CheckpointStatus.pending_approval
    assert stored.state.messages[1].skill_id == "ops"

    executed: list = []

    async def run_tool(name: str, args: Dict[str, Any], token: Optional[CancellationToken]) -> str:
        executed.append((name, args))
        return "v1.2.3 live"

    llm = DeployAssistantLLM()
    final = await ResumableExecutor(_agent(llm)).invoke(
        [], thread_id="deploy-42", store=store, resume=True, approval_decision=True, tool_executor=run_tool
    )

    assert executed == [("deploy", {"env": "prod"})]
    assert llm.calls == 1
    assert final.text == "Deploy finished: v1.2.3 live"
    assert [m.status for m in await store.list("deploy-42")] == [
        CheckpointStatus.completed,
        CheckpointStatus.active,
        CheckpointStatus.pending_approval,
    ]


@pytest.mark.asyncio
async def test_rejection_is_final(store: SqlCheckpointStore) -> None:
    await ResumableExecutor(_agent(DeployAssistantLLM())).invoke(
        [user_message("ship it")], thread_id="deploy-43", store=store
    )

    result = await ResumableExecutor(_agent(DeployAssistantLLM())).invoke(
        [], thread_id="deploy-43", store=store, resume=True, approval_decision=False
    )

    assert result.finish_reason == "approval_rejected"
    assert (await store.load("deploy-43")).metadata.status == CheckpointStatus.completed
