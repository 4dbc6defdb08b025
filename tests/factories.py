"""Builders for the policies and actions the scenarios share."""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID, uuid4

from approval_kernel.domain.approval import (
    ApprovalDecision,
    ApprovalDecisionRecord,
    ApprovalPolicy,
    ApprovalRequest,
    PolicyDraft,
    RequestStatus,
    SubmittedAction,
)

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def large_refund_draft(**overrides) -> PolicyDraft:
    """Refunds of $250+ need two approvals from owner or manager."""
    fields = dict(
        name="Large refunds",
        applies_to=frozenset({"refund"}),
        threshold_cents=25000,
        approvers_needed=2,
        approver_roles=frozenset({"owner", "manager"}),
    )
    fields.update(overrides)
    return PolicyDraft(**fields)


def refund_action(amount: str = "300", **overrides) -> SubmittedAction:
    fields = dict(
        action_type="refund",
        amount=Decimal(amount),
        currency="USD",
        reason="guest cancelled within window",
    )
    fields.update(overrides)
    return SubmittedAction(**fields)


def make_policy(
    name: str = "policy",
    applies_to: frozenset[str] = frozenset({"refund"}),
    approvers_needed: int = 1,
    approver_roles: frozenset[str] = frozenset({"owner", "manager"}),
    threshold_cents: int | None = None,
    currency: str = "USD",
    is_active: bool = True,
    scope_id: str | None = None,
    policy_id: UUID | None = None,
) -> ApprovalPolicy:
    return ApprovalPolicy(
        policy_id=policy_id or uuid4(),
        name=name,
        applies_to=applies_to,
        approvers_needed=approvers_needed,
        approver_roles=approver_roles,
        threshold_cents=threshold_cents,
        currency=currency,
        is_active=is_active,
        scope_id=scope_id,
    )


def make_decision(
    approver: str,
    decision: ApprovalDecision = ApprovalDecision.APPROVE,
    request_id: UUID | None = None,
    comment: str = "",
) -> ApprovalDecisionRecord:
    return ApprovalDecisionRecord(
        decision_id=uuid4(),
        request_id=request_id or uuid4(),
        approver=approver,
        decision=decision,
        comment=comment,
        decided_at=T0,
    )


def make_request(
    status: RequestStatus = RequestStatus.PENDING,
    amount: str = "300",
    required_approvals: int = 2,
    approver_roles: frozenset[str] = frozenset({"owner", "manager"}),
    approvers: tuple[str, ...] = (),
    requester_id: str = "clerk-1",
    scope_id: str | None = None,
    created_at: datetime = T0,
    policy_id: UUID | None = None,
    policy_name: str = "Large refunds",
    action_type: str = "refund",
    reason: str = "guest cancelled within window",
    currency: str = "USD",
) -> ApprovalRequest:
    request_id = uuid4()
    return ApprovalRequest(
        request_id=request_id,
        action_type=action_type,
        requester_id=requester_id,
        reason=reason,
        amount=Decimal(amount),
        currency=currency,
        policy_id=policy_id or uuid4(),
        policy_name=policy_name,
        required_approvals=required_approvals,
        approver_roles=approver_roles,
        status=status,
        scope_id=scope_id,
        decisions=tuple(make_decision(a, request_id=request_id) for a in approvers),
        created_at=created_at,
        updated_at=created_at,
    )
