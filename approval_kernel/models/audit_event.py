"""
Module: approval_kernel.models.audit_event
Responsibility: ORM persistence for the tamper-evident audit hash chain.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Audit records are append-only; no UPDATE or DELETE (ORM listeners).
    - Hash chain integrity: hash = H(entity_type | entity_id | action |
      payload_hash | prev_hash).  Validated by AuditorService.
    - seq is monotonically increasing, allocated by SequenceService.

Audit relevance:
    AuditEvent IS the audit trail.  Every submission, approval, rejection
    and policy edit produces an AuditEvent.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Index, String, event
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, UUIDString
from approval_kernel.exceptions import ImmutabilityViolationError


class AuditAction(str, Enum):
    """Types of auditable actions."""

    # Request lifecycle
    APPROVAL_REQUESTED = "approval_requested"
    APPROVAL_RECORDED = "approval_recorded"
    APPROVAL_GRANTED = "approval_granted"
    APPROVAL_REJECTED = "approval_rejected"

    # Policy lifecycle
    POLICY_CREATED = "policy_created"
    POLICY_UPDATED = "policy_updated"
    POLICY_DELETED = "policy_deleted"


class AuditEvent(Base):
    """
    Audit event with hash chain for tamper evidence.

    Guarantees:
        - seq is globally unique and monotonically increasing.
        - prev_hash is None only for the genesis event.
    """

    __tablename__ = "audit_events"

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_seq", "seq"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(200), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEvent #{self.seq} {self.action} {self.entity_type}:{self.entity_id}>"


@event.listens_for(AuditEvent, "before_update")
def prevent_audit_update(mapper, connection, target):
    """Audit events are append-only."""
    raise ImmutabilityViolationError(
        entity_type="AuditEvent",
        entity_id=str(target.id),
        reason="Audit events are immutable -- cannot modify",
    )


@event.listens_for(AuditEvent, "before_delete")
def prevent_audit_delete(mapper, connection, target):
    """Audit events are append-only."""
    raise ImmutabilityViolationError(
        entity_type="AuditEvent",
        entity_id=str(target.id),
        reason="Audit events are immutable -- cannot delete",
    )
