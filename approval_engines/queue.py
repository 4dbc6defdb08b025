"""
approval_engines.queue -- Pure queue annotation, filtering and ordering.

Responsibility:
    Turn a set of requests into the ordered, annotated queue a viewer
    sees: attach each request's current policy and urgency flag, apply the
    viewer's filter and sort, and count the summary badges.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Read-only over its
    inputs.

Invariants enforced:
    - Deterministic order: every sort mode ends in a total tiebreak on
      request id, so equal inputs yield an identical sequence.
    - Urgency is recomputed from the supplied rules on every call.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime
from uuid import UUID

from approval_kernel.domain.approval import (
    OPEN_STATUSES,
    STATUS_PRIORITY,
    ApprovalPolicy,
    ApprovalRequest,
    RequestStatus,
    UrgencyRules,
)
from approval_kernel.domain.queue import (
    STATUS_ALL,
    STATUS_OPEN,
    TYPE_ALL,
    QueueEntry,
    QueueFilter,
    QueueSummary,
    SortMode,
)
from approval_engines.urgency import is_urgent

_UNKNOWN_PRIORITY = 99


def annotate(
    requests: Iterable[ApprovalRequest],
    policies: Mapping[UUID, ApprovalPolicy],
    rules: UrgencyRules,
    now: datetime,
) -> list[QueueEntry]:
    """Pair each request with its current policy and urgency flag."""
    entries = []
    for request in requests:
        policy = policies.get(request.policy_id)
        entries.append(
            QueueEntry(
                request=request,
                policy=policy,
                urgent=is_urgent(request, policy, rules, now),
            )
        )
    return entries


def _status_matches(entry: QueueEntry, status: str) -> bool:
    if status == STATUS_ALL:
        return True
    if status == STATUS_OPEN:
        return entry.request.status in OPEN_STATUSES
    return entry.request.status == RequestStatus(status)


def _search_values(entry: QueueEntry) -> list[str]:
    request = entry.request
    values = [
        str(request.request_id),
        request.reason,
        request.requester_id,
        request.action_type,
        request.currency,
        request.policy_name,
    ]
    if entry.policy is not None:
        values.append(entry.policy.name)
    return [v.lower() for v in values if v]


def matches_filter(entry: QueueEntry, queue_filter: QueueFilter) -> bool:
    """Whether ``entry`` passes every clause of ``queue_filter``."""
    if not _status_matches(entry, queue_filter.status):
        return False
    if queue_filter.action_type != TYPE_ALL and entry.request.action_type != queue_filter.action_type:
        return False
    if queue_filter.urgent_only and not entry.urgent:
        return False
    if queue_filter.scope_id is not None and entry.request.scope_id != queue_filter.scope_id:
        return False
    query = queue_filter.search_text.strip().lower()
    if query and not any(query in value for value in _search_values(entry)):
        return False
    return True


def _timestamp(entry: QueueEntry) -> float:
    created_at = entry.request.created_at
    return created_at.timestamp() if created_at is not None else 0.0


def _priority(entry: QueueEntry) -> int:
    return STATUS_PRIORITY.get(entry.request.status, _UNKNOWN_PRIORITY)


def sort_key(entry: QueueEntry, mode: SortMode) -> tuple:
    ts = _timestamp(entry)
    tiebreak = str(entry.request.request_id)
    if mode == SortMode.URGENT:
        return (0 if entry.urgent else 1, _priority(entry), -ts, tiebreak)
    if mode == SortMode.OLDEST:
        return (ts, _priority(entry), tiebreak)
    return (-ts, _priority(entry), tiebreak)


def build_queue(
    requests: Iterable[ApprovalRequest],
    policies: Mapping[UUID, ApprovalPolicy],
    queue_filter: QueueFilter,
    sort: SortMode,
    rules: UrgencyRules,
    now: datetime,
) -> list[QueueEntry]:
    """Annotate, filter and order ``requests`` for one viewer."""
    entries = annotate(requests, policies, rules, now)
    selected = [e for e in entries if matches_filter(e, queue_filter)]
    mode = SortMode(sort)
    return sorted(selected, key=lambda e: sort_key(e, mode))


def summarize(entries: Iterable[QueueEntry]) -> QueueSummary:
    """Summary badge counts over annotated, unfiltered entries."""
    pending = pending_second = urgent = total = 0
    for entry in entries:
        total += 1
        if entry.request.status == RequestStatus.PENDING:
            pending += 1
        elif entry.request.status == RequestStatus.PENDING_SECOND:
            pending_second += 1
        if entry.urgent:
            urgent += 1
    return QueueSummary(
        pending=pending,
        pending_second=pending_second,
        urgent=urgent,
        total=total,
    )
