"""
Approval domain types (``approval_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the dual-control approval engine.  Defines the
request lifecycle state machine, policy data, submitted actions, actor
authorization context, request/decision records and urgency rules.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Lifecycle state machine -- ``REQUEST_TRANSITIONS`` defines the only
  valid status transitions.  Terminal states have no outgoing edges.
* Requirement snapshot -- ``ApprovalRequest`` captures ``policy_id``,
  ``policy_name``, ``required_approvals`` and ``approver_roles`` at
  submission time; later policy edits never change them.
* Consent projection -- ``ApprovalRequest.approvals`` holds approve
  decisions only, so ``len(approvals) <= required_approvals`` holds for
  rejected requests as well.
* Explicit default -- ``DEFAULT_POLICY`` is a real policy object, never
  a ``None`` special case.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any, Protocol
from uuid import UUID


# =========================================================================
# Request Status Lifecycle
# =========================================================================


class RequestStatus(str, Enum):
    """Approval request lifecycle states."""

    PENDING = "pending"
    PENDING_SECOND = "pending_second"
    APPROVED = "approved"
    REJECTED = "rejected"


REQUEST_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.PENDING: frozenset({
        RequestStatus.PENDING_SECOND,
        RequestStatus.APPROVED,
        RequestStatus.REJECTED,
    }),
    # Self-edge: the second of three approvals leaves the request waiting.
    RequestStatus.PENDING_SECOND: frozenset({
        RequestStatus.PENDING_SECOND,
        RequestStatus.APPROVED,
        RequestStatus.REJECTED,
    }),
    RequestStatus.APPROVED: frozenset(),
    RequestStatus.REJECTED: frozenset(),
}

OPEN_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.PENDING,
    RequestStatus.PENDING_SECOND,
})

TERMINAL_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.APPROVED,
    RequestStatus.REJECTED,
})

# Queue ordering: lower sorts first.
STATUS_PRIORITY: dict[RequestStatus, int] = {
    RequestStatus.PENDING_SECOND: 0,
    RequestStatus.PENDING: 1,
    RequestStatus.APPROVED: 2,
    RequestStatus.REJECTED: 3,
}


class ApprovalDecision(str, Enum):
    """Decision types that an approver can make."""

    APPROVE = "approve"
    REJECT = "reject"


class AuthorizationDenial(str, Enum):
    """Why an actor may not decide on a request."""

    NOT_OPEN = "not_open"
    ALREADY_DECIDED = "already_decided"
    ROLE_NOT_ELIGIBLE = "role_not_eligible"
    OUT_OF_SCOPE = "out_of_scope"
    REQUESTER_CANNOT_APPROVE = "requester_cannot_approve"


# Action-type tags used by the campground platform.  Policies may name
# other tags; these are the ones the refund/payout/config workflows submit.
REFUND = "refund"
PAYOUT = "payout"
CONFIG_CHANGE = "config_change"
KNOWN_ACTION_TYPES: frozenset[str] = frozenset({REFUND, PAYOUT, CONFIG_CHANGE})


def to_cents(amount: Decimal) -> int:
    """Major currency units -> integer cents (half-up)."""
    return int((amount * 100).to_integral_value(rounding=ROUND_HALF_UP))


# =========================================================================
# Policy Types
# =========================================================================


@dataclass(frozen=True)
class ApprovalPolicy:
    """A rule mapping action types and an amount floor to approver demands.

    ``threshold_cents`` of ``None`` means the policy applies regardless of
    amount; ``scope_id`` of ``None`` means the policy is global.
    """

    policy_id: UUID
    name: str
    applies_to: frozenset[str]
    approvers_needed: int
    approver_roles: frozenset[str]
    threshold_cents: int | None = None
    currency: str = "USD"
    is_active: bool = True
    scope_id: str | None = None
    description: str = ""
    version: int = 1
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_default(self) -> bool:
        return self.policy_id == DEFAULT_POLICY_ID

    def covers(self, action_type: str) -> bool:
        return action_type in self.applies_to


DEFAULT_POLICY_ID = UUID(int=0)
DEFAULT_POLICY_NAME = "Default (single approval)"
DEFAULT_BASELINE_APPROVER_ROLES: frozenset[str] = frozenset({
    "owner", "manager", "admin", "finance",
})


def make_default_policy(
    approver_roles: frozenset[str] = DEFAULT_BASELINE_APPROVER_ROLES,
) -> ApprovalPolicy:
    """Build the fallback policy: one approval from any baseline role."""
    return ApprovalPolicy(
        policy_id=DEFAULT_POLICY_ID,
        name=DEFAULT_POLICY_NAME,
        applies_to=KNOWN_ACTION_TYPES,
        approvers_needed=1,
        approver_roles=frozenset(approver_roles),
        description="Applied when no configured policy matches the action.",
    )


DEFAULT_POLICY = make_default_policy()


# Fields a policy patch may touch.
POLICY_PATCHABLE_FIELDS: frozenset[str] = frozenset({
    "name",
    "applies_to",
    "threshold_cents",
    "currency",
    "approvers_needed",
    "approver_roles",
    "is_active",
    "scope_id",
    "description",
})


@dataclass(frozen=True)
class PolicyDraft:
    """Input for policy creation (no identity yet)."""

    name: str
    applies_to: frozenset[str]
    approvers_needed: int
    approver_roles: frozenset[str]
    threshold_cents: int | None = None
    currency: str = "USD"
    is_active: bool = True
    scope_id: str | None = None
    description: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "applies_to", frozenset(self.applies_to))
        object.__setattr__(self, "approver_roles", frozenset(self.approver_roles))


# =========================================================================
# Actions and Actors
# =========================================================================


@dataclass(frozen=True)
class SubmittedAction:
    """A sensitive action proposed by an external workflow.

    ``amount`` is in major currency units (``Decimal("300.00")``).
    """

    action_type: str
    amount: Decimal
    currency: str = "USD"
    scope_id: str | None = None
    reason: str = ""
    metadata: Mapping[str, Any] | None = None

    @property
    def amount_cents(self) -> int:
        return to_cents(self.amount)


@dataclass(frozen=True)
class AuthorizationContext:
    """Already-authenticated actor, as resolved by the identity provider.

    ``roles`` is the single resolved role set (platform role, scoped
    membership and ownership roles flattened once per call).
    """

    actor_id: str
    roles: frozenset[str] = frozenset()
    scope_id: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "roles", frozenset(self.roles))


# =========================================================================
# Request and Decision Records
# =========================================================================


@dataclass(frozen=True)
class ApprovalDecisionRecord:
    """Record of a single decision. Immutable."""

    decision_id: UUID
    request_id: UUID
    approver: str
    decision: ApprovalDecision
    roles: tuple[str, ...] = ()
    comment: str = ""
    decided_at: datetime | None = None


@dataclass(frozen=True)
class ApprovalRequest:
    """Immutable snapshot of an approval request."""

    request_id: UUID
    action_type: str
    requester_id: str
    reason: str
    amount: Decimal
    currency: str
    policy_id: UUID
    policy_name: str
    required_approvals: int
    approver_roles: frozenset[str]
    status: RequestStatus = RequestStatus.PENDING
    scope_id: str | None = None
    decisions: tuple[ApprovalDecisionRecord, ...] = ()
    metadata: Mapping[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    resolved_at: datetime | None = None
    version: int = 1

    @property
    def approvals(self) -> tuple[ApprovalDecisionRecord, ...]:
        return tuple(
            d for d in self.decisions if d.decision == ApprovalDecision.APPROVE
        )

    @property
    def rejection(self) -> ApprovalDecisionRecord | None:
        for d in self.decisions:
            if d.decision == ApprovalDecision.REJECT:
                return d
        return None

    @property
    def decided_by(self) -> frozenset[str]:
        return frozenset(d.approver for d in self.decisions)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def amount_cents(self) -> int:
        return to_cents(self.amount)


# =========================================================================
# Urgency Rules
# =========================================================================


def _as_bool(value: Any, fallback: bool) -> bool:
    return value if isinstance(value, bool) else fallback


def _as_decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not parsed.is_finite():
        return None
    return parsed


@dataclass(frozen=True)
class UrgencyRules:
    """Per-viewer urgency preferences, passed explicitly on every read.

    Never persisted and never authoritative: two viewers may see different
    urgency flags for the same request.
    """

    pending_second_counts: bool = True
    age_threshold_hours: Decimal = Decimal("24")
    policy_threshold_counts: bool = True
    custom_amount_threshold: Decimal | None = None

    @classmethod
    def from_preferences(
        cls,
        prefs: Mapping[str, Any] | None,
        defaults: UrgencyRules | None = None,
    ) -> UrgencyRules:
        """Leniently parse a stored preference mapping.

        Accepts the browser-era keys (``urgentPendingSecond``,
        ``urgentAgeHours`` as a string, ...) as well as snake_case ones.
        Unparseable values fall back to ``defaults``.
        """
        base = defaults or cls()
        if not prefs:
            return base

        def pick(*keys: str) -> Any:
            for key in keys:
                if key in prefs:
                    return prefs[key]
            return None

        age = _as_decimal(pick("age_threshold_hours", "urgentAgeHours"))
        if age is None:
            age = base.age_threshold_hours
        age = max(Decimal("0"), age)

        custom_enabled = pick("custom_amount_enabled", "urgentCustomAmountEnabled")
        custom = _as_decimal(pick("custom_amount_threshold", "urgentCustomAmount"))
        if custom_enabled is False or (custom is not None and custom <= 0):
            custom = None
        elif custom is None and custom_enabled is None:
            custom = base.custom_amount_threshold

        return cls(
            pending_second_counts=_as_bool(
                pick("pending_second_counts", "urgentPendingSecond"),
                base.pending_second_counts,
            ),
            age_threshold_hours=age,
            policy_threshold_counts=_as_bool(
                pick("policy_threshold_counts", "urgentPolicyThreshold"),
                base.policy_threshold_counts,
            ),
            custom_amount_threshold=custom,
        )


# =========================================================================
# AuditSink Protocol
# =========================================================================


class AuditSink(Protocol):
    """Append-only receiver of every submit/approve/reject and policy edit."""

    def record(
        self,
        entity_type: str,
        entity_id: UUID,
        action: str,
        actor_id: str,
        payload: dict[str, Any] | None = None,
    ) -> None:
        ...
