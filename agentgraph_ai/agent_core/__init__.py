"""Core agent runtime, policies, and persistence abstractions.

This package contains the "engine room" of the agent system.

Design overview
---------------

The agent core is built around a predict/execute loop:

- ``predict`` sends the (compacted) conversation and the tool schemas to the
  LLM and records its reply. A reply without tool calls ends the run.
- ``execute`` runs every requested tool call in order. Side-effecting tools
  pass through the approval gate first; failures become tool-result text the
  model can react to.

- Execution is performed on a LangGraph ``StateGraph``
  (``agent_core.runtime.AgentGraph``). The resumable variant
  (``agent_core.runtime.ResumableExecutor``) persists checkpoints at safe
  points via the ``CheckpointStore`` interface, so a run can be interrupted
  for human approval or recovered after a crash without repeating tool calls.

- History is kept within a token budget by ``agent_core.memory``: droppable
  skill and summary messages go first, then the oldest turns, never splitting
  a tool call from its result.

Typical usage
-------------

1. Register tools in a ``ToolRegistry``.
2. Build an ``AgentGraph`` (``factory.build_agent_graph`` reads limits from
   settings).
3. Call ``invoke`` for a one-shot run, or ``invoke_resumable`` with a thread
   id and a checkpoint store (``factory.build_checkpoint_store``).
4. If the result is ``interrupted``, resume later with an approval decision.
"""

from .cancellation import CancellationToken
from .errors import (
    AgentCancelledError,
    AgentRuntimeError,
    CheckpointError,
    CheckpointStoreError,
    ContextOverflowError,
    FatalToolError,
    RecoverableError,
    StepBudgetExceededError,
)
from .factory import build_agent_graph, build_checkpoint_store
from .runtime import AgentGraph, ResumableExecutor, ResumableResult, Skill
from .schemas.domain import AutonomyProfile, CheckpointStatus, RiskLevel
from .tools import Tool, ToolRegistry

__all__ = [
    "AgentCancelledError",
    "AgentGraph",
    "AgentRuntimeError",
    "AutonomyProfile",
    "CancellationToken",
    "CheckpointError",
    "CheckpointStatus",
    "CheckpointStoreError",
    "ContextOverflowError",
    "FatalToolError",
    "RecoverableError",
    "ResumableExecutor",
    "ResumableResult",
    "RiskLevel",
    "Skill",
    "StepBudgetExceededError",
    "Tool",
    "ToolRegistry",
    "build_agent_graph",
    "build_checkpoint_store",
]
