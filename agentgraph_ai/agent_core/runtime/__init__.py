"""LangGraph-based execution runtime for agent invocations.

 The runtime takes a conversation and drives the predict/execute loop:

 - ``predict`` calls the LLM and records its reply.
 - ``execute`` runs the requested tools, gated by the approval policy, and
   appends one tool result per call.

 ``AgentGraph`` runs the loop in one go on top of the generic ``StateGraph``.
 ``ResumableExecutor`` drives the same nodes itself so it can write
 checkpoints at safe points, interrupt for approval and resume after a crash
 or a human decision. ``ParallelExecutor`` fans one state out into
 concurrent branches.
"""

from .agent_graph import AgentGraph
from .engine import APPROVAL_REJECTED, ResumableExecutor, ToolExecutor
from .graph import END, CompiledGraph, StateGraph
from .models import (
    AgentGraphEvents,
    AgentGraphResult,
    AgentState,
    ResumableResult,
    Skill,
    deserialize_state,
    new_state,
    serialize_state,
)
from .nodes import CANCELLED_RESULT, AgentNodes, inject_skills
from .parallel import ParallelBranch, ParallelExecutor, clone_state_for_branch, default_reducer

__all__ = [
    "APPROVAL_REJECTED",
    "AgentGraph",
    "AgentGraphEvents",
    "AgentGraphResult",
    "AgentNodes",
    "AgentState",
    "CANCELLED_RESULT",
    "CompiledGraph",
    "END",
    "ParallelBranch",
    "ParallelExecutor",
    "ResumableExecutor",
    "ResumableResult",
    "Skill",
    "StateGraph",
    "ToolExecutor",
    "clone_state_for_branch",
    "default_reducer",
    "deserialize_state",
    "inject_skills",
    "new_state",
    "serialize_state",
]
