from __future__ import annotations

"""Predict/execute agent loop on top of the step graph.

``AgentGraph`` wires two nodes into a ``StateGraph``::

    predict --(done)--> END
    predict --(tool calls)--> execute --> predict

Before the first predict call the history passes through the optional
``MemoryManager`` and skills are injected as droppable system messages.

The domain step limit (``max_steps``) is enforced by the predict node, which
stops gracefully. The graph engine's own ceiling is ``max_steps *
graph_step_multiplier`` and only trips if routing misbehaves.
"""

import logging
from typing import Iterable, Mapping, Optional, Sequence, Union

from ..cancellation import CancellationToken
from ..memory.compactor import CompactionConfig, InjectedSkill
from ..memory.manager import MemoryManager
from ..memory.token_estimator import TokenEstimatorConfig, estimate_message_tokens
from ..policy.models import ApprovalConfig
from ..schemas.messages import Message
from ..tools.base import Tool
from ..llm.base import LLMClient, SamplingParams
from .graph import CompiledGraph, StateGraph
from .models import AgentGraphEvents, AgentGraphResult, AgentState, Skill, new_state
from .nodes import AgentNodes, inject_skills

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 10
DEFAULT_GRAPH_STEP_MULTIPLIER = 3


def _tool_map(tools: Union[Mapping[str, Tool], Iterable[Tool], None]) -> Mapping[str, Tool]:
    if tools is None:
        return {}
    if isinstance(tools, Mapping):
        return tools
    return {tool.name: tool for tool in tools}


class AgentGraph:
    """Run an agent conversation until the model stops calling tools.

    Args:
        llm: LLM invocation boundary.
        model: Model identifier passed to ``llm``.
        tools: Tools available to the model (mapping, iterable or ``ToolRegistry``).
        skills: Skills injected once per fresh invocation.
        max_steps: Domain limit on predict calls.
        sampling: Sampling parameters for every LLM call.
        max_context_tokens: Token budget; enables compaction when set.
        token_estimator: Estimator constants used for the budget.
        approval_config: Approval gate configuration.
        memory: Optional conversation memory applied to fresh invocations.
        thread_id: Default memory thread id.
        events: Observer callbacks.
        graph_step_multiplier: Engine ceiling as a multiple of ``max_steps``.
    """

    def __init__(
        self,
        *,
        llm: LLMClient,
        model: str,
        tools: Union[Mapping[str, Tool], Iterable[Tool], None] = None,
        skills: Sequence[Skill] = (),
        max_steps: int = DEFAULT_MAX_STEPS,
        sampling: Optional[SamplingParams] = None,
        max_context_tokens: Optional[int] = None,
        token_estimator: Optional[TokenEstimatorConfig] = None,
        approval_config: Optional[ApprovalConfig] = None,
        memory: Optional[MemoryManager] = None,
        thread_id: str = "default",
        events: Optional[AgentGraphEvents] = None,
        graph_step_multiplier: int = DEFAULT_GRAPH_STEP_MULTIPLIER,
    ) -> None:
        self.llm = llm
        self.model = model
        self.tools = _tool_map(tools)
        self.skills = list(skills)
        self.max_steps = max_steps
        self.sampling = sampling or SamplingParams()
        self.approval_config = approval_config
        self.memory = memory
        self.thread_id = thread_id
        self.events = events
        self.graph_step_multiplier = graph_step_multiplier
        self.compaction_config: Optional[CompactionConfig] = None
        if max_context_tokens is not None:
            estimator = token_estimator or TokenEstimatorConfig()
            self.compaction_config = CompactionConfig(
                max_tokens=max_context_tokens,
                estimate_tokens=lambda m: estimate_message_tokens(m, estimator),
            )

    @property
    def engine_max_steps(self) -> int:
        return self.max_steps * self.graph_step_multiplier

    def create_nodes(self, injected: Sequence[InjectedSkill] = ()) -> AgentNodes:
        return AgentNodes(
            llm=self.llm,
            model=self.model,
            sampling=self.sampling,
            compaction=self.compaction_config,
            skills=injected,
            events=self.events,
        )

    def injected_skills(self) -> list[InjectedSkill]:
        return [InjectedSkill(name=s.name, priority=rank) for rank, s in enumerate(sorted(self.skills, key=lambda s: s.name))]

    async def prepare_messages(
        self, messages: Sequence[Message], thread_id: Optional[str] = None
    ) -> tuple[list[Message], list[InjectedSkill]]:
        """Apply memory and skill injection to the input of a fresh invocation."""
        prepared = list(messages)
        if self.memory is not None:
            processed = await self.memory.process(prepared, thread_id or self.thread_id)
            prepared = processed.messages
        if self.skills:
            return inject_skills(prepared, self.skills)
        return prepared, []

    def build_graph(self, nodes: AgentNodes) -> CompiledGraph:
        g = StateGraph(AgentState)
        g.add_node("predict", nodes.predict)
        g.add_node("execute", nodes.execute)
        g.add_conditional_edge("predict", nodes.route_after_predict)
        g.add_edge("execute", "predict")
        return g.compile()

    async def invoke(
        self,
        messages: Sequence[Message],
        *,
        cancel_token: Optional[CancellationToken] = None,
        thread_id: Optional[str] = None,
    ) -> AgentGraphResult:
        """
        Run the loop from ``messages`` until completion or the step limit.

        Raises:
            StepBudgetExceededError: The engine ceiling was hit.
            ContextOverflowError: History cannot fit the token budget.
            AgentCancelledError: ``cancel_token`` fired.
            FatalToolError: A tool opted out of error absorption.
        """
        prepared, injected = await self.prepare_messages(messages, thread_id)
        nodes = self.create_nodes(injected)
        initial = new_state(
            prepared,
            tools=self.tools,
            max_steps=self.max_steps,
            cancel_token=cancel_token,
            approval_config=self.approval_config,
        )
        logger.debug("Agent invoke: messages=%s max_steps=%s", len(prepared), self.max_steps)
        final: AgentState = await self.build_graph(nodes).invoke(initial, max_steps=self.engine_max_steps)  # type: ignore[assignment]

        if self.memory is not None:
            await self.memory.persist(final["messages"], thread_id or self.thread_id)

        return AgentGraphResult(
            text=final["output"],
            reasoning=final["reasoning"],
            steps=nodes.steps,
            usage=final.get("usage"),
            finish_reason=final.get("finish_reason"),
            compaction=nodes.compaction_result,
            state=final,
        )

    async def invoke_resumable(self, messages: Sequence[Message], **options):  # type: ignore[no-untyped-def]
        """Shortcut for ``ResumableExecutor(self).invoke(messages, **options)``."""
        from .engine import ResumableExecutor

        return await ResumableExecutor(self).invoke(messages, **options)
