"""
Module: approval_kernel.models.approval
Responsibility: ORM persistence for approval policies, requests and decisions.

Architecture position: Kernel > Models.  May import from db/base.py only
    (plus domain DTOs for ``to_dto`` conversion).

Invariants enforced:
    - Policy invariants: DB check constraints require approvers_needed >= 1
      and a non-negative threshold.
    - Lifecycle: DB check constraint limits status values; the service layer
      enforces transition rules.
    - Linearizable transitions: ``version`` is the mapper's version_id_col.
      Every decision bumps ``decision_count`` so each approve/reject issues
      ``UPDATE ... WHERE version = :expected`` (compare-and-swap).
    - One vote per approver: UNIQUE(request_id, actor_id) on decisions.
    - Decision ordering: UNIQUE(request_id, position).

Failure modes:
    - StaleDataError when the version CAS loses a race.
    - IntegrityError on a duplicate actor decision.
    - ImmutabilityViolationError on decision UPDATE/DELETE.

Audit relevance:
    Requests are never deleted.  Decisions are append-only.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_kernel.db.base import Base, UUIDString
from approval_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from approval_kernel.domain.approval import (
        ApprovalDecisionRecord,
        ApprovalPolicy,
        ApprovalRequest,
    )


class ApprovalPolicyModel(Base):
    """Persistent approval policy.

    Guarantees:
        - version starts at 1 and increments on every UPDATE.
        - Inactive rows are kept for audit; only deletion removes them.
    """

    __tablename__ = "approval_policies"

    __table_args__ = (
        CheckConstraint(
            "approvers_needed >= 1",
            name="ck_approval_policies_approvers_needed",
        ),
        CheckConstraint(
            "threshold_cents IS NULL OR threshold_cents >= 0",
            name="ck_approval_policies_threshold",
        ),
        Index("ix_approval_policies_scope_active", "scope_id", "is_active"),
    )

    policy_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    applies_to: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    threshold_cents: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    approvers_needed: Mapped[int] = mapped_column(Integer, nullable=False)
    approver_roles: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    scope_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<ApprovalPolicy {self.policy_id} {self.name!r} "
            f"v{self.version} active={self.is_active}>"
        )

    def to_dto(self) -> ApprovalPolicy:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.approval import ApprovalPolicy as PolicyDTO

        return PolicyDTO(
            policy_id=self.policy_id,
            name=self.name,
            applies_to=frozenset(self.applies_to),
            approvers_needed=self.approvers_needed,
            approver_roles=frozenset(self.approver_roles),
            threshold_cents=self.threshold_cents,
            currency=self.currency,
            is_active=self.is_active,
            scope_id=self.scope_id,
            description=self.description,
            version=self.version,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class ApprovalRequestModel(Base):
    """Persistent approval request.

    Contract:
        Status transitions are lifecycle-constrained.  Terminal statuses
        (approved, rejected) cannot be changed once set.

    Guarantees:
        - policy_id, policy_name, required_approvals and approver_roles are
          write-once snapshots taken at submission.
        - version is a monotonic compare-and-swap token.
    """

    __tablename__ = "approval_requests"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'pending_second', 'approved', 'rejected')",
            name="ck_approval_requests_valid_status",
        ),
        CheckConstraint(
            "decision_count >= 0",
            name="ck_approval_requests_decision_count",
        ),
        Index("ix_approval_requests_status_created", "status", "created_at"),
        Index("ix_approval_requests_policy_status", "policy_id", "status"),
        Index("ix_approval_requests_scope", "scope_id"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    requester_id: Mapped[str] = mapped_column(String(200), nullable=False)
    reason: Mapped[str] = mapped_column(Text, default="", nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    scope_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    policy_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    policy_name: Mapped[str] = mapped_column(String(200), nullable=False)
    required_approvals: Mapped[int] = mapped_column(Integer, nullable=False)
    approver_roles: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="pending")
    decision_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    request_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict,
    )
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    decisions: Mapped[list["ApprovalDecisionModel"]] = relationship(
        "ApprovalDecisionModel",
        primaryjoin="ApprovalRequestModel.request_id == ApprovalDecisionModel.request_id",
        foreign_keys="ApprovalDecisionModel.request_id",
        order_by="ApprovalDecisionModel.position",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalRequest {self.request_id} "
            f"{self.action_type} status={self.status} v{self.version}>"
        )

    def to_dto(self) -> ApprovalRequest:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.approval import (
            ApprovalRequest as ApprovalRequestDTO,
            RequestStatus,
        )

        return ApprovalRequestDTO(
            request_id=self.request_id,
            action_type=self.action_type,
            requester_id=self.requester_id,
            reason=self.reason,
            amount=self.amount,
            currency=self.currency,
            scope_id=self.scope_id,
            policy_id=self.policy_id,
            policy_name=self.policy_name,
            required_approvals=self.required_approvals,
            approver_roles=frozenset(self.approver_roles),
            status=RequestStatus(self.status),
            decisions=tuple(d.to_dto() for d in self.decisions),
            metadata=dict(self.request_metadata or {}),
            created_at=self.created_at,
            updated_at=self.updated_at,
            resolved_at=self.resolved_at,
            version=self.version,
        )


class ApprovalDecisionModel(Base):
    """Persistent decision record. Append-only.

    Guarantees:
        - UNIQUE(request_id, actor_id): an approver counts at most once.
        - ``position`` is the 1-based order of the decision on its request.
    """

    __tablename__ = "approval_decisions"

    __table_args__ = (
        Index("ix_approval_decisions_request_id", "request_id"),
        UniqueConstraint(
            "request_id", "actor_id",
            name="uq_approval_decisions_actor",
        ),
        UniqueConstraint(
            "request_id", "position",
            name="uq_approval_decisions_position",
        ),
    )

    decision_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    request_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_requests.request_id"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    actor_id: Mapped[str] = mapped_column(String(200), nullable=False)
    actor_roles: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    decision: Mapped[str] = mapped_column(String(50), nullable=False)
    comment: Mapped[str] = mapped_column(Text, default="", nullable=False)
    decided_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<ApprovalDecision {self.decision_id} "
            f"request={self.request_id} "
            f"decision={self.decision}>"
        )

    def to_dto(self) -> ApprovalDecisionRecord:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.approval import (
            ApprovalDecision as ApprovalDecisionEnum,
            ApprovalDecisionRecord as DecisionDTO,
        )

        return DecisionDTO(
            decision_id=self.decision_id,
            request_id=self.request_id,
            approver=self.actor_id,
            decision=ApprovalDecisionEnum(self.decision),
            roles=tuple(self.actor_roles),
            comment=self.comment,
            decided_at=self.decided_at,
        )


# =============================================================================
# ORM-Level Immutability for Decisions (Append-Only)
# =============================================================================


@event.listens_for(ApprovalDecisionModel, "before_update")
def prevent_decision_update(mapper, connection, target):
    """Prevent updates to approval decision records."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalDecision",
        entity_id=str(target.decision_id),
        reason="Approval decisions are immutable -- cannot modify",
    )


@event.listens_for(ApprovalDecisionModel, "before_delete")
def prevent_decision_delete(mapper, connection, target):
    """Prevent deletion of approval decision records."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalDecision",
        entity_id=str(target.decision_id),
        reason="Approval decisions are immutable -- cannot delete",
    )


@event.listens_for(ApprovalRequestModel, "before_delete")
def prevent_request_delete(mapper, connection, target):
    """Requests are retained for audit."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalRequest",
        entity_id=str(target.request_id),
        reason="Approval requests are retained for audit -- cannot delete",
    )
