"""
AuditorService -- tamper-evident audit trail and hash chain maintenance.

Responsibility:
    Creates immutable, hash-chained audit events for every submission,
    decision and policy edit.  Provides chain validation for tamper
    detection and trace queries for forensic review.  It is the default
    ``AuditSink`` implementation; deployments with an external compliance
    log can substitute their own sink.

Architecture position:
    Kernel > Services -- imperative shell, called by ApprovalService and
    PolicyService.

Invariants enforced:
    - Sequence monotonicity via SequenceService (never raw SQL max+1).
    - Audit chain integrity: ``hash = H(payload_hash + prev_hash)``.
    - Append-only: audit events are never modified or deleted.

Failure modes:
    - AuditChainBrokenError: recomputed hash does not match stored hash,
      or prev_hash does not match the predecessor's hash.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.exceptions import AuditChainBrokenError
from approval_kernel.logging_config import get_logger
from approval_kernel.models.audit_event import AuditAction, AuditEvent
from approval_kernel.services.sequence_service import SequenceService
from approval_kernel.utils.hashing import hash_audit_event, hash_payload, to_json_safe

logger = get_logger("services.auditor")


@dataclass(frozen=True)
class AuditTraceEntry:
    """A single entry in an audit trace."""

    seq: int
    action: str
    occurred_at: datetime
    actor_id: str
    payload: dict[str, Any]
    hash: str


@dataclass(frozen=True)
class AuditTrace:
    """Complete audit trace for an entity, in sequence order."""

    entity_type: str
    entity_id: UUID
    entries: tuple[AuditTraceEntry, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def actions(self) -> tuple[str, ...]:
        return tuple(e.action for e in self.entries)


class AuditorService:
    """
    Service for creating and validating tamper-evident audit events.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT interpret or act on audit events.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence_service = SequenceService(session)

    def _get_last_hash(self) -> str | None:
        last_event = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq.desc()).limit(1)
        ).scalar_one_or_none()
        return last_event.hash if last_event else None

    def record(
        self,
        entity_type: str,
        entity_id: UUID,
        action: str,
        actor_id: str,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """
        Append a hash-linked audit event (``AuditSink`` protocol).

        Postconditions:
            - A new ``AuditEvent`` row is flushed with a monotonically
              increasing ``seq`` and a valid hash chain link.
        """
        action_value = AuditAction(action).value
        seq = self._sequence_service.next_value(SequenceService.AUDIT_EVENT)
        prev_hash = self._get_last_hash()

        payload_data = to_json_safe(payload or {})
        computed_payload_hash = hash_payload(payload_data)

        event_hash = hash_audit_event(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action_value,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
        )

        audit_event = AuditEvent(
            seq=seq,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action_value,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            payload=payload_data,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
            hash=event_hash,
        )
        self._session.add(audit_event)
        self._session.flush()

        logger.info(
            "audit_event_created",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action_value,
                "seq": seq,
            },
        )
        return audit_event

    def validate_chain(self) -> bool:
        """
        Validate the entire audit chain.

        Raises:
            AuditChainBrokenError: If chain validation fails at any point.
        """
        events = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq)
        ).scalars().all()

        if not events:
            return True

        if events[0].prev_hash is not None:
            logger.critical("audit_chain_broken", extra={"seq": events[0].seq})
            raise AuditChainBrokenError(str(events[0].id), "None", events[0].prev_hash)

        for i, audit_event in enumerate(events):
            expected_hash = hash_audit_event(
                entity_type=audit_event.entity_type,
                entity_id=str(audit_event.entity_id),
                action=audit_event.action,
                payload_hash=hash_payload(audit_event.payload or {}),
                prev_hash=audit_event.prev_hash,
            )
            if audit_event.hash != expected_hash:
                logger.critical("audit_chain_broken", extra={"seq": audit_event.seq})
                raise AuditChainBrokenError(
                    str(audit_event.id), expected_hash, audit_event.hash,
                )

            if i > 0:
                expected_prev = events[i - 1].hash
                if audit_event.prev_hash != expected_prev:
                    logger.critical("audit_chain_broken", extra={"seq": audit_event.seq})
                    raise AuditChainBrokenError(
                        str(audit_event.id),
                        expected_prev,
                        audit_event.prev_hash or "None",
                    )

        return True

    def get_trace(self, entity_type: str, entity_id: UUID) -> AuditTrace:
        """Complete audit trace for an entity in sequence order."""
        events = self._session.execute(
            select(AuditEvent)
            .where(
                AuditEvent.entity_type == entity_type,
                AuditEvent.entity_id == entity_id,
            )
            .order_by(AuditEvent.seq)
        ).scalars().all()

        return AuditTrace(
            entity_type=entity_type,
            entity_id=entity_id,
            entries=tuple(
                AuditTraceEntry(
                    seq=e.seq,
                    action=e.action,
                    occurred_at=e.occurred_at,
                    actor_id=e.actor_id,
                    payload=e.payload or {},
                    hash=e.hash,
                )
                for e in events
            ),
        )
