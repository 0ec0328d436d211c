"""Approval policy for tool side effects."""

from .approval import (
    NO_HANDLER_MESSAGE,
    REJECTED_MESSAGE,
    check_approval,
    check_approval_batch,
    is_auto_approved_source,
    parse_tool_arguments,
    requires_approval,
)
from .models import (
    ApprovalConfig,
    ApprovalHandler,
    ApprovalRequest,
    ApprovalResult,
    BatchApprovalResult,
    risk_requires_approval,
)

__all__ = [
    "ApprovalConfig",
    "ApprovalHandler",
    "ApprovalRequest",
    "ApprovalResult",
    "BatchApprovalResult",
    "NO_HANDLER_MESSAGE",
    "REJECTED_MESSAGE",
    "check_approval",
    "check_approval_batch",
    "is_auto_approved_source",
    "parse_tool_arguments",
    "requires_approval",
    "risk_requires_approval",
]
