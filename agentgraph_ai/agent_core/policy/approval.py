from __future__ import annotations

"""Tool approval gate.

Two entry points share one decision procedure:

- ``check_approval`` decides a single call at execution time (plain agent
  loop). A call that is not approved gets a tool-result message explaining why.
- ``check_approval_batch`` classifies a whole batch of pending calls before
  any of them runs (resumable executor). Calls that cannot be cleared now are
  *deferred* and the run is interrupted for a human decision.

Decision order for one call:

1. the tool does not require approval: approved;
2. the tool's source matches ``auto_approve_sources``: approved;
3. the tool's own handler, else the global handler, decides;
4. no handler at all: denied (fail closed).
"""

import inspect
import json
import logging
from typing import Any, Dict, Mapping, Optional, Sequence

from ..schemas.messages import Message, ToolCall
from ..tools.base import Tool
from .models import (
    ApprovalConfig,
    ApprovalHandler,
    ApprovalRequest,
    ApprovalResult,
    BatchApprovalResult,
    risk_requires_approval,
)

logger = logging.getLogger(__name__)

NO_HANDLER_MESSAGE = "[Approval Required] No handler configured. Tool execution denied."
REJECTED_MESSAGE = "[Approval Rejected] Tool execution was denied by user."


def requires_approval(tool: Tool, config: Optional[ApprovalConfig]) -> bool:
    """Whether ``tool`` needs a decision before it may run.

    An explicit ``requires_approval`` flag always applies. A declared ``risk``
    is gated by the configured autonomy profile.
    """
    if tool.requires_approval:
        return True
    if tool.risk is not None and config is not None:
        return risk_requires_approval(
            tool.risk, profile=config.autonomy_profile, threshold=config.require_for_risk_at_or_above
        )
    return False


def is_auto_approved_source(tool: Tool, config: Optional[ApprovalConfig]) -> bool:
    if config is None:
        return False
    return any(s == tool.source.type.value or s == tool.source.full for s in config.auto_approve_sources)


def _resolve_handler(tool: Tool, config: Optional[ApprovalConfig]) -> Optional[ApprovalHandler]:
    if tool.approval_handler is not None:
        return tool.approval_handler
    return config.handler if config is not None else None


async def _ask(handler: ApprovalHandler, request: ApprovalRequest) -> bool:
    decision = handler(request)
    if inspect.isawaitable(decision):
        decision = await decision
    return bool(decision)


def parse_tool_arguments(payload: Optional[str]) -> Dict[str, Any]:
    """Parse a tool call's JSON arguments.

    Empty input gives ``{}``. Single-quoted pseudo-JSON is repaired once.
    Anything unparseable (or not an object) is wrapped as ``{"_raw": payload}``.
    """
    if payload is None or not payload.strip():
        return {}
    for candidate in (payload, payload.replace("'", '"')):
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
        break
    return {"_raw": payload}


async def check_approval(
    tool: Tool,
    call: ToolCall,
    args: Dict[str, Any],
    history: Sequence[Message],
    config: Optional[ApprovalConfig],
) -> ApprovalResult:
    """
    Decide whether one tool call may execute.

    Args:
        tool: The resolved tool.
        call: The pending tool call.
        args: Parsed call arguments.
        history: Conversation messages preceding the call.
        config: Approval configuration (``None`` means no handler and no auto-approval).

    Returns:
        An ``ApprovalResult``; ``message`` carries the tool-result text when not approved.
    """
    if not requires_approval(tool, config):
        return ApprovalResult(approved=True, reason="not_required")

    if is_auto_approved_source(tool, config):
        logger.debug("Tool %s auto-approved by source %s", tool.name, tool.source.full)
        return ApprovalResult(approved=True, reason="auto_approved")

    handler = _resolve_handler(tool, config)
    if handler is None:
        logger.info("Tool %s denied: approval required but no handler configured", tool.name)
        return ApprovalResult(approved=False, reason="no_handler", message=NO_HANDLER_MESSAGE)

    request = ApprovalRequest(
        tool_name=tool.name,
        args=args,
        call_id=call.id,
        history=history,
        source=tool.source.full,
        risk=tool.risk,
    )
    try:
        approved = await _ask(handler, request)
    except Exception as e:
        logger.warning("Approval handler failed for tool %s: %s", tool.name, e)
        return ApprovalResult(approved=False, reason="handler_error", message=f"[Approval Error] {e}")

    if approved:
        return ApprovalResult(approved=True, reason="handler_approved")
    return ApprovalResult(approved=False, reason="handler_rejected", message=REJECTED_MESSAGE)


async def check_approval_batch(
    tool_calls: Sequence[ToolCall],
    tools: Mapping[str, Tool],
    history: Sequence[Message],
    config: Optional[ApprovalConfig],
) -> BatchApprovalResult:
    """
    Classify every pending call as approved or deferred before any executes.

    A call is deferred when its tool is not registered, or when it requires
    approval and neither an auto-approve source nor a handler returning True
    clears it. Handler failures defer the call rather than aborting.

    Args:
        tool_calls: Calls of the newest assistant message.
        tools: Name-to-tool mapping (``ToolRegistry`` or a plain dict).
        history: Conversation messages preceding the calls.
        config: Approval configuration.

    Returns:
        A ``BatchApprovalResult`` listing deferred tool names and call ids.
    """
    deferred_tools: list[str] = []
    deferred_ids: list[str] = []
    approved_ids: list[str] = []

    for call in tool_calls:
        tool = tools.get(call.function.name)
        if tool is None:
            logger.info("Deferring call %s: tool %s is not registered", call.id, call.function.name)
            deferred_ids.append(call.id)
            if call.function.name not in deferred_tools:
                deferred_tools.append(call.function.name)
            continue

        result = await check_approval(tool, call, parse_tool_arguments(call.function.arguments), history, config)
        if result.approved:
            approved_ids.append(call.id)
            continue

        logger.info("Deferring call %s to %s (%s)", call.id, tool.name, result.reason)
        deferred_ids.append(call.id)
        if tool.name not in deferred_tools:
            deferred_tools.append(tool.name)

    return BatchApprovalResult(
        deferred_tools=deferred_tools,
        deferred_call_ids=deferred_ids,
        approved_call_ids=approved_ids,
    )
