from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, Union

from ..schemas.domain import AutonomyProfile, RiskLevel
from ..schemas.messages import Message


@dataclass(frozen=True)
class ApprovalRequest:
    """
    What an approval handler is asked to decide.

    Attributes:
        tool_name: Name of the requested tool.
        args: Parsed call arguments.
        call_id: Id of the tool call.
        history: Conversation messages preceding the call.
        source: Full source string of the tool (``type`` or ``type:namespace``).
        risk: Declared risk of the tool, if any.
    """
    tool_name: str
    args: Dict[str, Any]
    call_id: str
    history: Sequence[Message] = ()
    source: Optional[str] = None
    risk: Optional[RiskLevel] = None


ApprovalHandler = Callable[[ApprovalRequest], Union[bool, Awaitable[bool]]]


@dataclass(frozen=True)
class ApprovalConfig:
    """
    Configuration of the tool approval gate.

    Attributes:
        handler: Global decision callback; a tool's own ``approval_handler`` overrides it.
        auto_approve_sources: Sources cleared without asking, as ``type`` or ``type:namespace``.
        autonomy_profile: How much the agent may do unattended for risk-classified tools.
        require_for_risk_at_or_above: Risk threshold of the ``balanced`` profile.
    """
    handler: Optional[ApprovalHandler] = None
    auto_approve_sources: tuple[str, ...] = field(default_factory=tuple)
    autonomy_profile: AutonomyProfile = AutonomyProfile.balanced
    require_for_risk_at_or_above: RiskLevel = RiskLevel.medium


@dataclass(frozen=True)
class ApprovalResult:
    """
    Outcome of one approval check.

    Attributes:
        approved: Whether the tool may run.
        reason: ``not_required``, ``auto_approved``, ``handler_approved``,
            ``handler_rejected``, ``no_handler`` or ``handler_error``.
        message: Tool-result text used when the call is not approved.
    """
    approved: bool
    reason: str
    message: Optional[str] = None


@dataclass(frozen=True)
class BatchApprovalResult:
    """Classification of one batch of pending tool calls."""
    deferred_tools: list[str]
    deferred_call_ids: list[str]
    approved_call_ids: list[str]

    @property
    def has_deferred(self) -> bool:
        return bool(self.deferred_call_ids)


def _risk_ge(a: RiskLevel, b: RiskLevel) -> bool:
    """Check if risk level 'a' is greater than or equal to 'b'."""
    order = {RiskLevel.low: 0, RiskLevel.medium: 1, RiskLevel.high: 2}
    return order[a] >= order[b]


def risk_requires_approval(risk: RiskLevel, *, profile: AutonomyProfile, threshold: RiskLevel) -> bool:
    """
    Determine if approval is required based on risk and autonomy profile.

    Args:
        risk: The declared risk level of the tool.
        profile: The autonomy profile (e.g. strict, balanced).
        threshold: Minimum risk needing approval under the balanced profile.

    Returns:
        True if approval is required, False otherwise.
    """
    if profile == AutonomyProfile.unrestricted:
        return _risk_ge(risk, RiskLevel.high)
    if profile == AutonomyProfile.strict:
        return True
    return _risk_ge(risk, threshold)
