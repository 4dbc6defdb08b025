"""
Module: approval_kernel.selectors.approval_selector
Responsibility: Read-only queue queries over approval requests.  Loads
    requests and the current policy set, then hands them to the pure
    queue engine for urgency annotation, filtering and ordering.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Urgency is computed per call from the viewer's rules and ``now``;
      nothing about it is read from or written to storage.
    - Requests whose policy has been deleted are still listed, annotated
      with no current policy.

Failure modes:
    - ValidationError for an unknown status filter or sort mode.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from uuid import UUID

from sqlalchemy import select

from approval_engines.queue import annotate, build_queue, summarize
from approval_kernel.domain.approval import (
    ApprovalPolicy,
    ApprovalRequest,
    RequestStatus,
    UrgencyRules,
)
from approval_kernel.domain.queue import (
    STATUS_ALL,
    STATUS_OPEN,
    QueueEntry,
    QueueFilter,
    QueueSummary,
    SortMode,
)
from approval_kernel.exceptions import ValidationError
from approval_kernel.models.approval import ApprovalPolicyModel, ApprovalRequestModel
from approval_kernel.selectors.base import BaseSelector

_VALID_STATUS_FILTERS = frozenset({STATUS_ALL, STATUS_OPEN} | {s.value for s in RequestStatus})


def _validate_query(queue_filter: QueueFilter, sort: SortMode | str) -> SortMode:
    if queue_filter.status not in _VALID_STATUS_FILTERS:
        raise ValidationError("status", f"unknown status filter {queue_filter.status!r}")
    try:
        return SortMode(sort)
    except ValueError as exc:
        raise ValidationError("sort", f"unknown sort mode {sort!r}") from exc


class ApprovalSelector(BaseSelector[ApprovalRequestModel]):
    """Queue and summary reads over approval requests."""

    def requests(self, scope_id: str | None = None) -> list[ApprovalRequest]:
        """All requests, or those of one scope."""
        stmt = select(ApprovalRequestModel).order_by(
            ApprovalRequestModel.created_at.desc(),
            ApprovalRequestModel.request_id,
        )
        if scope_id is not None:
            stmt = stmt.where(ApprovalRequestModel.scope_id == scope_id)
        return [m.to_dto() for m in self.session.execute(stmt).scalars().all()]

    def policies(self, active_only: bool = False) -> list[ApprovalPolicy]:
        """Every stored policy across all scopes, ordered by name then id."""
        stmt = select(ApprovalPolicyModel)
        if active_only:
            stmt = stmt.where(ApprovalPolicyModel.is_active.is_(True))
        models = self.session.execute(stmt).scalars().all()
        return sorted((m.to_dto() for m in models), key=lambda p: (p.name, str(p.policy_id)))

    def policy_map(self) -> dict[UUID, ApprovalPolicy]:
        return {p.policy_id: p for p in self.policies()}

    def queue(
        self,
        queue_filter: QueueFilter,
        sort: SortMode | str,
        rules: UrgencyRules,
        now: datetime,
        policies: Iterable[ApprovalPolicy] | None = None,
    ) -> list[QueueEntry]:
        """Filtered, ordered queue for one viewer.

        Args:
            queue_filter: Status/type/urgency/search/scope clauses.
            sort: Ordering mode.
            rules: The viewer's urgency preferences.
            now: Reference time for the age rule.
            policies: Current policy set; read from the store when omitted.
        """
        mode = _validate_query(queue_filter, sort)
        policy_map = (
            {p.policy_id: p for p in policies} if policies is not None else self.policy_map()
        )
        return build_queue(
            self.requests(queue_filter.scope_id),
            policy_map,
            queue_filter,
            mode,
            rules,
            now,
        )

    def summary(
        self,
        rules: UrgencyRules,
        now: datetime,
        scope_id: str | None = None,
        policies: Iterable[ApprovalPolicy] | None = None,
    ) -> QueueSummary:
        """Badge counts over every request in scope, ignoring filters."""
        policy_map = (
            {p.policy_id: p for p in policies} if policies is not None else self.policy_map()
        )
        return summarize(annotate(self.requests(scope_id), policy_map, rules, now))
