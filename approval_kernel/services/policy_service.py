"""
PolicyService -- approval policy store.

Responsibility:
    Create, update, delete and read approval policies.  Validates policy
    invariants, restricts mutations to policy administrators, and writes
    every mutation to the audit sink.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - ``approvers_needed >= 1``; ``applies_to`` and ``approver_roles``
      non-empty; ``threshold_cents`` absent or >= 0; currency is a
      three-letter upper-case code; name non-empty.
    - A policy referenced by an open request cannot be deleted.
    - In-flight requests are unaffected by edits: they carry a snapshot.

Failure modes:
    - InvalidPolicyError on a draft or patch that violates an invariant.
    - UnauthorizedError when the actor holds no policy admin role, or edits
      a policy of another scope without platform authority.
    - PolicyNotFoundError for an unknown policy id.
    - PolicyInUseError when deleting a policy with open requests.
    - ConflictError when a concurrent edit bumped the policy version.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import func, or_, select
from sqlalchemy.orm.exc import StaleDataError

from approval_kernel.db.types import is_valid_currency
from approval_kernel.domain.approval import (
    OPEN_STATUSES,
    POLICY_PATCHABLE_FIELDS,
    ApprovalPolicy,
    AuditSink,
    AuthorizationContext,
    AuthorizationDenial,
    PolicyDraft,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.exceptions import (
    ConflictError,
    InvalidPolicyError,
    PolicyInUseError,
    PolicyNotFoundError,
    UnauthorizedError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.approval import ApprovalPolicyModel, ApprovalRequestModel
from approval_kernel.models.audit_event import AuditAction
from approval_kernel.services.base import BaseService

logger = get_logger("services.policy")

POLICY_ENTITY = "ApprovalPolicy"

DEFAULT_POLICY_ADMIN_ROLES: frozenset[str] = frozenset({
    "owner", "admin", "platform_admin",
})


def validate_policy_fields(fields: Mapping[str, Any]) -> None:
    """Check a complete policy field mapping against the policy invariants.

    Raises:
        InvalidPolicyError: naming the first offending field.
    """
    name = fields.get("name")
    if not isinstance(name, str) or not name.strip():
        raise InvalidPolicyError("name", "must be a non-empty string")

    applies_to = fields.get("applies_to") or ()
    if not applies_to or any(not isinstance(t, str) or not t.strip() for t in applies_to):
        raise InvalidPolicyError("applies_to", "must be a non-empty set of action types")

    approvers_needed = fields.get("approvers_needed")
    if isinstance(approvers_needed, bool) or not isinstance(approvers_needed, int):
        raise InvalidPolicyError("approvers_needed", "must be an integer")
    if approvers_needed < 1:
        raise InvalidPolicyError("approvers_needed", "must be at least 1")

    approver_roles = fields.get("approver_roles") or ()
    if not approver_roles or any(not isinstance(r, str) or not r.strip() for r in approver_roles):
        raise InvalidPolicyError("approver_roles", "must be a non-empty set of roles")

    threshold = fields.get("threshold_cents")
    if threshold is not None:
        if isinstance(threshold, bool) or not isinstance(threshold, int):
            raise InvalidPolicyError("threshold_cents", "must be an integer or absent")
        if threshold < 0:
            raise InvalidPolicyError("threshold_cents", "must be non-negative")

    if not is_valid_currency(fields.get("currency")):
        raise InvalidPolicyError("currency", "must be a three-letter ISO 4217 code")

    scope_id = fields.get("scope_id")
    if scope_id is not None and (not isinstance(scope_id, str) or not scope_id.strip()):
        raise InvalidPolicyError("scope_id", "must be a non-empty string or absent")


def _draft_fields(draft: PolicyDraft) -> dict[str, Any]:
    return {
        "name": draft.name,
        "applies_to": draft.applies_to,
        "threshold_cents": draft.threshold_cents,
        "currency": draft.currency,
        "approvers_needed": draft.approvers_needed,
        "approver_roles": draft.approver_roles,
        "is_active": draft.is_active,
        "scope_id": draft.scope_id,
        "description": draft.description,
    }


def _model_fields(model: ApprovalPolicyModel) -> dict[str, Any]:
    return {
        "name": model.name,
        "applies_to": frozenset(model.applies_to),
        "threshold_cents": model.threshold_cents,
        "currency": model.currency,
        "approvers_needed": model.approvers_needed,
        "approver_roles": frozenset(model.approver_roles),
        "is_active": model.is_active,
        "scope_id": model.scope_id,
        "description": model.description,
    }


def _audit_snapshot(fields: Mapping[str, Any]) -> dict[str, Any]:
    snapshot = dict(fields)
    snapshot["applies_to"] = sorted(fields["applies_to"])
    snapshot["approver_roles"] = sorted(fields["approver_roles"])
    return snapshot


class PolicyService(BaseService[ApprovalPolicyModel]):
    """Policy store with admin-role checks and audited mutations."""

    def __init__(
        self,
        session,
        audit_sink: AuditSink,
        clock: Clock | None = None,
        admin_roles: Iterable[str] = DEFAULT_POLICY_ADMIN_ROLES,
        platform_roles: Iterable[str] = frozenset({"platform_admin"}),
    ):
        super().__init__(session)
        self._audit = audit_sink
        self._clock = clock or SystemClock()
        self._admin_roles = frozenset(admin_roles)
        self._platform_roles = frozenset(platform_roles)

    # -- authorization ---------------------------------------------------

    def _require_admin(self, actor: AuthorizationContext, scope_id: str | None) -> None:
        if actor.roles.isdisjoint(self._admin_roles):
            raise UnauthorizedError(actor.actor_id, AuthorizationDenial.ROLE_NOT_ELIGIBLE.value)
        if actor.roles.isdisjoint(self._platform_roles):
            # Global policies and other scopes are platform territory.
            if scope_id is None or scope_id != actor.scope_id:
                raise UnauthorizedError(actor.actor_id, AuthorizationDenial.OUT_OF_SCOPE.value)

    # -- reads -------------------------------------------------------------

    def _load(self, policy_id: UUID, for_update: bool = False) -> ApprovalPolicyModel:
        stmt = select(ApprovalPolicyModel).where(ApprovalPolicyModel.policy_id == policy_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        model = self.session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise PolicyNotFoundError(str(policy_id))
        return model

    def get_policy(self, policy_id: UUID) -> ApprovalPolicy:
        return self._load(policy_id).to_dto()

    def list_policies(
        self,
        scope_id: str | None = None,
        include_inactive: bool = True,
    ) -> list[ApprovalPolicy]:
        """Global policies plus those of ``scope_id``, ordered by name then id."""
        stmt = select(ApprovalPolicyModel)
        if scope_id is None:
            stmt = stmt.where(ApprovalPolicyModel.scope_id.is_(None))
        else:
            stmt = stmt.where(
                or_(
                    ApprovalPolicyModel.scope_id.is_(None),
                    ApprovalPolicyModel.scope_id == scope_id,
                )
            )
        if not include_inactive:
            stmt = stmt.where(ApprovalPolicyModel.is_active.is_(True))
        models = self.session.execute(stmt).scalars().all()
        policies = [m.to_dto() for m in models]
        return sorted(policies, key=lambda p: (p.name, str(p.policy_id)))

    # -- mutations -----------------------------------------------------------

    def create_policy(
        self,
        actor: AuthorizationContext,
        draft: PolicyDraft,
        policy_id: UUID | None = None,
    ) -> ApprovalPolicy:
        """Validate and store a new policy."""
        self._require_admin(actor, draft.scope_id)
        fields = _draft_fields(draft)
        validate_policy_fields(fields)
        return self._insert(actor.actor_id, fields, policy_id or uuid4())

    def seed_policy(self, draft: PolicyDraft, policy_id: UUID | None = None) -> ApprovalPolicy:
        """Store a configuration-supplied policy without an admin actor."""
        fields = _draft_fields(draft)
        validate_policy_fields(fields)
        return self._insert("system", fields, policy_id or uuid4())

    def _insert(self, actor_id: str, fields: dict[str, Any], policy_id: UUID) -> ApprovalPolicy:
        now = self._clock.now()
        model = ApprovalPolicyModel(
            policy_id=policy_id,
            name=fields["name"].strip(),
            applies_to=sorted(fields["applies_to"]),
            threshold_cents=fields["threshold_cents"],
            currency=fields["currency"],
            approvers_needed=fields["approvers_needed"],
            approver_roles=sorted(fields["approver_roles"]),
            is_active=fields["is_active"],
            scope_id=fields["scope_id"],
            description=fields["description"] or "",
            created_at=now,
            updated_at=now,
        )
        self.session.add(model)
        self.session.flush()

        self._audit.record(
            entity_type=POLICY_ENTITY,
            entity_id=policy_id,
            action=AuditAction.POLICY_CREATED.value,
            actor_id=actor_id,
            payload=_audit_snapshot(fields),
        )
        logger.info(
            "approval_policy_created",
            extra={
                "policy_id": str(policy_id),
                "policy_name": model.name,
                "scope_id": model.scope_id,
            },
        )
        return model.to_dto()

    def update_policy(
        self,
        actor: AuthorizationContext,
        policy_id: UUID,
        patch: Mapping[str, Any],
    ) -> ApprovalPolicy:
        """Apply a partial update and bump the policy version.

        Raises:
            InvalidPolicyError: Unknown patch field, or the merged policy
                violates an invariant.
        """
        unknown = sorted(set(patch) - POLICY_PATCHABLE_FIELDS)
        if unknown:
            raise InvalidPolicyError(unknown[0], "is not a patchable policy field")

        model = self._load(policy_id, for_update=True)
        self._require_admin(actor, model.scope_id)

        merged = _model_fields(model)
        for key, value in patch.items():
            if key in ("applies_to", "approver_roles") and value is not None:
                value = frozenset(value)
            merged[key] = value
        validate_policy_fields(merged)
        if "scope_id" in patch:
            self._require_admin(actor, merged["scope_id"])

        model.name = merged["name"].strip()
        model.applies_to = sorted(merged["applies_to"])
        model.threshold_cents = merged["threshold_cents"]
        model.currency = merged["currency"]
        model.approvers_needed = merged["approvers_needed"]
        model.approver_roles = sorted(merged["approver_roles"])
        model.is_active = bool(merged["is_active"])
        model.scope_id = merged["scope_id"]
        model.description = merged["description"] or ""
        model.updated_at = self._clock.now()

        try:
            self.session.flush()
        except StaleDataError as exc:
            raise ConflictError(POLICY_ENTITY, str(policy_id)) from exc

        self._audit.record(
            entity_type=POLICY_ENTITY,
            entity_id=policy_id,
            action=AuditAction.POLICY_UPDATED.value,
            actor_id=actor.actor_id,
            payload={
                "changed_fields": sorted(patch),
                "policy": _audit_snapshot(merged),
                "version": model.version,
            },
        )
        logger.info(
            "approval_policy_updated",
            extra={
                "policy_id": str(policy_id),
                "changed_fields": sorted(patch),
                "version": model.version,
            },
        )
        return model.to_dto()

    def open_request_count(self, policy_id: UUID) -> int:
        return self.session.execute(
            select(func.count())
            .select_from(ApprovalRequestModel)
            .where(
                ApprovalRequestModel.policy_id == policy_id,
                ApprovalRequestModel.status.in_([s.value for s in OPEN_STATUSES]),
            )
        ).scalar_one()

    def delete_policy(self, actor: AuthorizationContext, policy_id: UUID) -> None:
        """Physically remove a policy no open request references.

        Raises:
            PolicyInUseError: One or more open requests reference it.
        """
        # Exclusive row lock; submissions hold a shared lock on the same row.
        model = self._load(policy_id, for_update=True)
        self._require_admin(actor, model.scope_id)

        open_count = self.open_request_count(policy_id)
        if open_count:
            logger.warning(
                "approval_policy_delete_refused",
                extra={"policy_id": str(policy_id), "open_requests": open_count},
            )
            raise PolicyInUseError(str(policy_id), open_count)

        snapshot = _audit_snapshot(_model_fields(model))
        self.session.delete(model)
        try:
            self.session.flush()
        except StaleDataError as exc:
            raise ConflictError(POLICY_ENTITY, str(policy_id)) from exc

        self._audit.record(
            entity_type=POLICY_ENTITY,
            entity_id=policy_id,
            action=AuditAction.POLICY_DELETED.value,
            actor_id=actor.actor_id,
            payload=snapshot,
        )
        logger.info("approval_policy_deleted", extra={"policy_id": str(policy_id)})
