"""
Approval state machine shared by ledger entries and broker transactions.

    PENDING -> APPROVED
    PENDING -> REJECTED

APPROVED and REJECTED are terminal.
"""

from typing import Optional

from app.core.errors import InvalidStateError, ValidationError
from app.models.approval import ApprovalDecision, ApprovalStatus


def transition(
    current: ApprovalStatus,
    target: ApprovalStatus,
    actor_id,
    remark: Optional[str] = None,
    rejection_reason: Optional[str] = None,
    subject: str = "Entry",
) -> ApprovalDecision:
    if target == ApprovalStatus.PENDING:
        raise ValidationError("Target status must be APPROVED or REJECTED")
    if current != ApprovalStatus.PENDING:
        raise InvalidStateError(f"{subject} is not pending approval (status {current.value})")
    if target == ApprovalStatus.REJECTED and not (rejection_reason or "").strip():
        raise ValidationError("Rejection reason is required")

    return ApprovalDecision(
        status=target,
        decided_by=actor_id,
        remark=remark,
        rejection_reason=rejection_reason.strip() if target == ApprovalStatus.REJECTED else None,
    )
