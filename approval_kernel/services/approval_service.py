"""
ApprovalService -- approval request lifecycle management.

Responsibility:
    Manages the lifecycle of approval requests: submission, approval and
    rejection.  Delegates policy matching, approver eligibility and status
    computation to the pure engines, and persists the outcome.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/ and the
    pure engines.

Invariants enforced:
    - Requirement snapshot: policy id, name, required approvals and
      approver roles are frozen on the request at submission.
    - The snapshot is taken from the stored policy row, re-read under a
      shared lock, never from a possibly stale candidate list; a request
      cannot reference a policy that is being deleted.
    - Lifecycle state machine enforced before persisting transitions.
    - Idempotent consent: an actor decides at most once per request
      (eligibility check + UNIQUE(request_id, actor_id)).
    - Linearizable transitions: the request row is loaded FOR UPDATE and
      every decision is a version compare-and-swap.
    - Every submit/approve/reject is written to the audit sink.

Failure modes:
    - InvalidActionError on a malformed submission.
    - CurrencyMismatchError when a candidate policy uses another currency.
    - RequestNotFoundError if request_id not found.
    - TerminalStateError on a decision against an approved/rejected request.
    - ValidationError on a blank rejection reason.
    - UnauthorizedError when the actor may not decide.
    - ConflictError when a concurrent decision won the race.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from approval_engines.authorization import (
    DEFAULT_PLATFORM_ROLES,
    explain_denial,
)
from approval_engines.matcher import match_policy
from approval_engines.transitions import (
    next_status_after_approval,
    next_status_after_rejection,
)
from approval_kernel.db.types import is_valid_currency
from approval_kernel.domain.approval import (
    DEFAULT_POLICY,
    TERMINAL_STATUSES,
    ApprovalDecision,
    ApprovalPolicy,
    ApprovalRequest,
    AuditSink,
    AuthorizationContext,
    RequestStatus,
    SubmittedAction,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.exceptions import (
    ConflictError,
    InvalidActionError,
    RequestNotFoundError,
    TerminalStateError,
    UnauthorizedError,
    ValidationError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.approval import (
    ApprovalDecisionModel,
    ApprovalPolicyModel,
    ApprovalRequestModel,
)
from approval_kernel.models.audit_event import AuditAction
from approval_kernel.services.base import BaseService
from approval_kernel.utils.hashing import to_json_safe

logger = get_logger("services.approval")

REQUEST_ENTITY = "ApprovalRequest"


def validate_action(action: SubmittedAction) -> None:
    """Reject malformed submissions before any policy lookup.

    Raises:
        InvalidActionError: naming the first offending field.
    """
    if not isinstance(action.action_type, str) or not action.action_type.strip():
        raise InvalidActionError("action_type", "must be a non-empty action type")
    amount = action.amount
    if isinstance(amount, bool) or not isinstance(amount, (Decimal, int)):
        raise InvalidActionError("amount", "must be a Decimal or an integer")
    if isinstance(amount, Decimal) and not amount.is_finite():
        raise InvalidActionError("amount", "must be finite")
    if amount < 0:
        raise InvalidActionError("amount", "must be non-negative")
    if not is_valid_currency(action.currency):
        raise InvalidActionError("currency", "must be a three-letter ISO 4217 code")


class ApprovalService(BaseService[ApprovalRequestModel]):
    """Manages approval request/decision lifecycle."""

    def __init__(
        self,
        session,
        audit_sink: AuditSink,
        clock: Clock | None = None,
        default_policy: ApprovalPolicy = DEFAULT_POLICY,
        platform_roles: Iterable[str] = DEFAULT_PLATFORM_ROLES,
        requester_may_approve: bool = True,
    ) -> None:
        super().__init__(session)
        self._audit = audit_sink
        self._clock = clock or SystemClock()
        self._default_policy = default_policy
        self._platform_roles = frozenset(platform_roles)
        self._requester_may_approve = requester_may_approve

    # -- submission ----------------------------------------------------------

    def _active_policies(self) -> tuple[ApprovalPolicy, ...]:
        models = self.session.execute(
            select(ApprovalPolicyModel).where(ApprovalPolicyModel.is_active.is_(True))
        ).scalars().all()
        return tuple(m.to_dto() for m in models)

    def _lock_policy(self, policy_id: UUID) -> ApprovalPolicy | None:
        """Re-read a policy row, holding a shared lock until commit.

        The lock conflicts with the exclusive lock taken by
        ``PolicyService.delete_policy``, so a policy cannot disappear between
        this read and the insert of the request that references it.
        """
        model = self.session.execute(
            select(ApprovalPolicyModel)
            .where(ApprovalPolicyModel.policy_id == policy_id)
            .with_for_update(read=True)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def _resolve_policy(
        self,
        action: SubmittedAction,
        candidates: tuple[ApprovalPolicy, ...],
    ) -> ApprovalPolicy:
        """Match ``action`` and confirm the winner against the stored row.

        ``candidates`` may be a cached copy.  When the winning policy has
        since been deleted, deactivated or edited, matching is repeated
        against the store inside this transaction.
        """
        policy = match_policy(action, candidates, default=self._default_policy)
        while not policy.is_default:
            stored = self._lock_policy(policy.policy_id)
            if stored is not None and stored.is_active and stored.version == policy.version:
                return stored
            logger.info(
                "approval_policy_candidates_stale",
                extra={"policy_id": str(policy.policy_id), "policy_deleted": stored is None},
            )
            policy = match_policy(action, self._active_policies(), default=self._default_policy)
        return policy

    def submit(
        self,
        action: SubmittedAction,
        context: AuthorizationContext,
        policies: Iterable[ApprovalPolicy] | None = None,
    ) -> ApprovalRequest:
        """Create a pending request governed by the matching policy.

        Args:
            action: The sensitive action to gate.
            context: The requesting actor.
            policies: Current policy set; loaded from the store when omitted
                (the gateway passes its cached set).
        """
        validate_action(action)
        if not isinstance(action.amount, Decimal):
            action = replace(action, amount=Decimal(action.amount))
        candidates = tuple(policies) if policies is not None else self._active_policies()
        policy = self._resolve_policy(action, candidates)

        request_id = uuid4()
        now = self._clock.now()
        model = ApprovalRequestModel(
            request_id=request_id,
            action_type=action.action_type.strip(),
            requester_id=context.actor_id,
            reason=action.reason or "",
            amount=action.amount,
            currency=action.currency,
            scope_id=action.scope_id,
            policy_id=policy.policy_id,
            policy_name=policy.name,
            required_approvals=policy.approvers_needed,
            approver_roles=sorted(policy.approver_roles),
            status=RequestStatus.PENDING.value,
            decision_count=0,
            request_metadata=to_json_safe(dict(action.metadata or {})),
            created_at=now,
            updated_at=now,
        )
        self.session.add(model)
        self.session.flush()

        self._audit.record(
            entity_type=REQUEST_ENTITY,
            entity_id=request_id,
            action=AuditAction.APPROVAL_REQUESTED.value,
            actor_id=context.actor_id,
            payload={
                "action_type": model.action_type,
                "amount": str(action.amount),
                "currency": action.currency,
                "scope_id": action.scope_id,
                "policy_id": str(policy.policy_id),
                "policy_name": policy.name,
                "policy_version": policy.version,
                "required_approvals": policy.approvers_needed,
                "approver_roles": sorted(policy.approver_roles),
            },
        )

        logger.info(
            "approval_request_submitted",
            extra={
                "request_id": str(request_id),
                "action_type": model.action_type,
                "policy_id": str(policy.policy_id),
                "required_approvals": policy.approvers_needed,
                "default_policy": policy.is_default,
            },
        )
        return model.to_dto()

    # -- decisions -----------------------------------------------------------

    def approve(self, request_id: UUID, context: AuthorizationContext) -> ApprovalRequest:
        """Record an approval; resolve the request when the count is met."""
        return self._decide(request_id, context, ApprovalDecision.APPROVE, "")

    def reject(
        self,
        request_id: UUID,
        context: AuthorizationContext,
        reason: str,
    ) -> ApprovalRequest:
        """Reject immediately, regardless of approvals already recorded."""
        return self._decide(request_id, context, ApprovalDecision.REJECT, reason)

    def _decide(
        self,
        request_id: UUID,
        context: AuthorizationContext,
        decision: ApprovalDecision,
        comment: str,
    ) -> ApprovalRequest:
        model = self._load_request_model(request_id, for_update=True)
        current_status = RequestStatus(model.status)

        if current_status in TERMINAL_STATUSES:
            raise TerminalStateError(str(request_id), current_status.value)

        if decision == ApprovalDecision.REJECT and (not comment or not comment.strip()):
            raise ValidationError("reason", "a rejection must state a reason")

        denial = explain_denial(
            context,
            model.to_dto(),
            platform_roles=self._platform_roles,
            requester_may_approve=self._requester_may_approve,
        )
        if denial is not None:
            logger.warning(
                "approval_decision_denied",
                extra={
                    "request_id": str(request_id),
                    "decision": decision.value,
                    "denial": denial.value,
                },
            )
            raise UnauthorizedError(context.actor_id, denial.value, str(request_id))

        now = self._clock.now()
        approvals_so_far = sum(
            1 for d in model.decisions if d.decision == ApprovalDecision.APPROVE.value
        )
        if decision == ApprovalDecision.APPROVE:
            new_status = next_status_after_approval(
                current_status, approvals_so_far + 1, model.required_approvals,
            )
        else:
            new_status = next_status_after_rejection(current_status)

        model.decisions.append(
            ApprovalDecisionModel(
                decision_id=uuid4(),
                request_id=model.request_id,
                position=model.decision_count + 1,
                actor_id=context.actor_id,
                actor_roles=sorted(context.roles),
                decision=decision.value,
                comment=comment.strip() if comment else "",
                decided_at=now,
            )
        )
        model.decision_count = model.decision_count + 1
        model.status = new_status.value
        model.updated_at = now
        if new_status in TERMINAL_STATUSES:
            model.resolved_at = now

        try:
            self.session.flush()
        except (StaleDataError, IntegrityError) as exc:
            logger.info(
                "approval_decision_conflict",
                extra={"request_id": str(request_id), "decision": decision.value},
            )
            raise ConflictError(REQUEST_ENTITY, str(request_id)) from exc

        self._audit.record(
            entity_type=REQUEST_ENTITY,
            entity_id=model.request_id,
            action=self._audit_action(decision, new_status).value,
            actor_id=context.actor_id,
            payload={
                "decision": decision.value,
                "actor_roles": sorted(context.roles),
                "comment": comment.strip() if comment else "",
                "from_status": current_status.value,
                "new_status": new_status.value,
                "approvals": approvals_so_far + (1 if decision == ApprovalDecision.APPROVE else 0),
                "required_approvals": model.required_approvals,
            },
        )

        logger.info(
            "approval_decision_recorded",
            extra={
                "request_id": str(request_id),
                "decision": decision.value,
                "from_status": current_status.value,
                "new_status": new_status.value,
            },
        )
        return model.to_dto()

    @staticmethod
    def _audit_action(decision: ApprovalDecision, new_status: RequestStatus) -> AuditAction:
        if decision == ApprovalDecision.REJECT:
            return AuditAction.APPROVAL_REJECTED
        if new_status == RequestStatus.APPROVED:
            return AuditAction.APPROVAL_GRANTED
        return AuditAction.APPROVAL_RECORDED

    # -- reads -----------------------------------------------------------------

    def get_request(self, request_id: UUID) -> ApprovalRequest:
        return self._load_request_model(request_id).to_dto()

    def _load_request_model(
        self,
        request_id: UUID,
        for_update: bool = False,
    ) -> ApprovalRequestModel:
        """Load request model by request_id, raise if not found."""
        stmt = select(ApprovalRequestModel).where(
            ApprovalRequestModel.request_id == request_id,
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        model = self.session.execute(stmt).scalar_one_or_none()

        if model is None:
            raise RequestNotFoundError(str(request_id))

        return model

