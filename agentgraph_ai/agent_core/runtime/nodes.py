from __future__ import annotations

"""Predict and execute node logic of the agent loop.

``AgentNodes`` is created once per invocation. It owns the step records and
the compaction summary of that invocation, and exposes the two node
functions wired into the graph by ``AgentGraph`` and driven directly by the
resumable executor.

predict
-------

1. Raise ``AgentCancelledError`` if the cancellation token fired.
2. Stop gracefully (``done=True``, no LLM call) once ``step_count`` reaches
   ``max_steps``.
3. Compact the history when a token budget is configured.
4. Call the LLM with metadata-stripped messages and the tool schemas.
5. Append the reply. ``done`` is true iff the reply has no tool calls.

execute
-------

Runs every tool call of the newest assistant message in order, appends one
tool-result message per call and compacts again. Tool failures become
tool-result text and ``FatalToolError`` propagates. A call interrupted by
cancellation, and every call after it, gets a ``[Cancelled]`` result so the
finished calls of the batch stay in the returned patch.
"""

import json
import logging
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Sequence

from ..cancellation import CancellationToken
from ..errors import AgentCancelledError, FatalToolError, RecoverableError
from ..llm.base import LLMClient, SamplingParams
from ..memory.compactor import CompactionConfig, CompactionResult, InjectedSkill, compact
from ..policy.approval import check_approval, parse_tool_arguments
from ..schemas.domain import StepResult, Usage
from ..schemas.messages import Message, MessageMeta, ToolCall, strip_meta, tool_result_message
from ..tools.base import Tool, ToolContext
from .graph import END
from .models import AgentGraphEvents, AgentState, Skill

logger = logging.getLogger(__name__)

CANCELLED_RESULT = "[Cancelled] Execution cancelled"

CallRunner = Callable[[Dict[str, Any]], Awaitable[Any]]


def serialize_tool_result(result: Any) -> str:
    if result is None:
        return ""
    if isinstance(result, str):
        return result
    return json.dumps(result, indent=2, ensure_ascii=False, default=str)


def inject_skills(messages: Sequence[Message], skills: Sequence[Skill]) -> tuple[list[Message], list[InjectedSkill]]:
    """Insert skills as droppable system messages after the first system message.

    Skills are ordered by name and prioritized by alphabetical rank, so the
    result is identical for any input order.
    """
    ordered = sorted(skills, key=lambda s: s.name)
    injected = [InjectedSkill(name=s.name, priority=rank) for rank, s in enumerate(ordered)]
    skill_messages = [
        Message(
            role="system",
            content=s.content,
            meta=MessageMeta(skill_id=s.name, droppable=True, priority=rank),
        )
        for rank, s in enumerate(ordered)
    ]
    out = list(messages)
    first_system = next((i for i, m in enumerate(out) if m.role == "system"), None)
    at = 0 if first_system is None else first_system + 1
    out[at:at] = skill_messages
    return out, injected


class AgentNodes:
    """Per-invocation node functions and bookkeeping."""

    def __init__(
        self,
        *,
        llm: LLMClient,
        model: str,
        sampling: SamplingParams,
        compaction: Optional[CompactionConfig] = None,
        skills: Sequence[InjectedSkill] = (),
        events: Optional[AgentGraphEvents] = None,
    ) -> None:
        self._llm = llm
        self._model = model
        self._sampling = sampling
        self._compaction = compaction
        self._skills = list(skills)
        self._events = events or AgentGraphEvents()
        self.steps: list[StepResult] = []
        self.compaction_result: Optional[CompactionResult] = None

    # ------------------------------------------------------------------
    # bookkeeping
    # ------------------------------------------------------------------

    def _notify(self, callback: Optional[Callable[..., None]], *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("Agent event callback failed")

    def record(self, step: StepResult) -> None:
        self.steps.append(step)
        self._notify(self._events.on_step_finish, step)

    def compact(self, messages: Sequence[Message]) -> list[Message]:
        """Compact ``messages`` if a budget is configured, merging the summary."""
        if self._compaction is None:
            return list(messages)
        result = compact(messages, self._compaction, self._skills)
        if result.occurred:
            if self.compaction_result is None:
                self.compaction_result = result
            else:
                prev = self.compaction_result
                self.compaction_result = CompactionResult(
                    messages=result.messages,
                    occurred=True,
                    dropped_skills=prev.dropped_skills + result.dropped_skills,
                    dropped_messages=prev.dropped_messages + result.dropped_messages,
                    orphan_tool_calls=result.orphan_tool_calls,
                    recommendation=result.recommendation,
                )
        return result.messages

    # ------------------------------------------------------------------
    # predict
    # ------------------------------------------------------------------

    async def predict(self, state: AgentState) -> Dict[str, Any]:
        self._notify(self._events.on_node_enter, "predict")
        token: Optional[CancellationToken] = state.get("cancel_token")
        if token is not None:
            token.raise_if_cancelled()

        if state["step_count"] >= state["max_steps"]:
            logger.info("Step limit reached (%s); stopping", state["max_steps"])
            return {"done": True}

        messages = self.compact(state["messages"])
        request = self._llm.complete(
            model=self._model,
            messages=strip_meta(messages),
            tool_schemas=[tool.to_schema() for tool in state["tools"].values()],
            sampling=self._sampling,
            cancel_token=token,
        )
        completion = await (token.run(request) if token is not None else request)

        reply = completion.message.model_copy(update={"role": "assistant", "meta": None})
        text = reply.text
        self.record(StepResult(type="text", content=text))
        done = not completion.tool_calls

        usage: Optional[Usage] = state.get("usage")
        if completion.usage is not None:
            usage = completion.usage if usage is None else usage.add(completion.usage)

        patch: Dict[str, Any] = {
            "messages": messages + [reply],
            "step_count": state["step_count"] + 1,
            "done": done,
            "output": (text or state["output"]) if done else state["output"],
            "reasoning": state["reasoning"] + (completion.reasoning or ""),
            "finish_reason": completion.finish_reason,
            "usage": usage,
        }
        logger.debug(
            "predict step=%s done=%s tool_calls=%s", patch["step_count"], done, len(completion.tool_calls)
        )
        self._notify(self._events.on_node_exit, "predict", {**state, **patch})
        return patch

    @staticmethod
    def route_after_predict(state: AgentState) -> str:
        return END if state["done"] else "execute"

    # ------------------------------------------------------------------
    # execute
    # ------------------------------------------------------------------

    async def execute(
        self,
        state: AgentState,
        *,
        check_approvals: bool = True,
        runners: Optional[Mapping[str, CallRunner]] = None,
    ) -> Dict[str, Any]:
        """
        Execute the tool calls of the newest assistant message.

        Args:
            state: Current agent state.
            check_approvals: Run the per-call approval check. The resumable
                executor disables it after its batch pre-check.
            runners: Per-call-id replacements for the registered tool (used to
                route approved deferred calls through a caller's executor).

        Returns:
            A patch overwriting ``messages``.
        """
        self._notify(self._events.on_node_enter, "execute")
        history = list(state["messages"])
        last = history[-1] if history else None
        if last is None or last.role != "assistant" or not last.tool_calls:
            return {}

        results: list[Message] = []
        for call in last.tool_calls:
            args = parse_tool_arguments(call.function.arguments)
            self.record(
                StepResult(type="tool_call", tool_name=call.function.name, tool_call_id=call.id, args=args)
            )
            content, is_error = await self._run_call(
                state, call, args, history, check_approvals=check_approvals, runner=(runners or {}).get(call.id)
            )
            results.append(tool_result_message(call.id, content, call.function.name))
            self.record(
                StepResult(
                    type="tool_result",
                    tool_name=call.function.name,
                    tool_call_id=call.id,
                    result=content,
                    is_error=is_error,
                )
            )

        patch = {"messages": self.compact(history + results)}
        self._notify(self._events.on_node_exit, "execute", {**state, **patch})
        return patch

    async def _run_call(
        self,
        state: AgentState,
        call: ToolCall,
        args: Dict[str, Any],
        history: Sequence[Message],
        *,
        check_approvals: bool,
        runner: Optional[CallRunner],
    ) -> tuple[str, bool]:
        token: Optional[CancellationToken] = state.get("cancel_token")
        if token is not None and token.cancelled:
            return CANCELLED_RESULT, True

        name = call.function.name
        if runner is None:
            tool: Optional[Tool] = state["tools"].get(name)
            if tool is None:
                logger.warning("Tool not found: %s", name)
                return f"Tool not found: {name}", True
            if check_approvals:
                decision = await check_approval(tool, call, args, history, state.get("approval_config"))
                if not decision.approved:
                    return decision.message or "", True
            ctx = ToolContext(call_id=call.id, history=tuple(history), cancel_token=token)
            operation = tool.run(args, ctx)
        else:
            operation = runner(args)

        try:
            result = await (token.run(operation) if token is not None else operation)
        except AgentCancelledError:
            if token is None or not token.cancelled:
                raise
            # Finished siblings keep their results; the next predict raises.
            logger.info("Tool %s cancelled mid-flight", name)
            return CANCELLED_RESULT, True
        except FatalToolError:
            raise
        except RecoverableError as e:
            logger.info("Tool %s raised a recoverable error: %s", name, e)
            return e.to_prompt(), True
        except Exception as e:
            logger.warning("Tool %s failed: %s", name, e)
            if runner is not None:
                return f"[Execution Error] {e}", True
            return f"Error: {e}", True
        return serialize_tool_result(result), False
