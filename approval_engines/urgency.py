"""
approval_engines.urgency -- Pure urgency classification for open requests.

Responsibility:
    Derive a per-viewer "urgent" flag for a request from the viewer's
    ``UrgencyRules``.  Recomputed on every read and never persisted.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  ``now`` is an explicit
    argument; the engine never reads a clock.

Invariants enforced:
    - Terminal requests are never urgent.
    - Purity: the result depends only on (request, policy, rules, now).
"""

from __future__ import annotations

from datetime import datetime, timedelta

from approval_kernel.domain.approval import (
    ApprovalPolicy,
    ApprovalRequest,
    RequestStatus,
    UrgencyRules,
)


def is_stale(request: ApprovalRequest, rules: UrgencyRules, now: datetime) -> bool:
    if rules.age_threshold_hours <= 0 or request.created_at is None:
        return False
    cutoff = timedelta(hours=float(rules.age_threshold_hours))
    return now - request.created_at > cutoff


def meets_policy_threshold(
    request: ApprovalRequest,
    policy: ApprovalPolicy | None,
    rules: UrgencyRules,
) -> bool:
    if not rules.policy_threshold_counts or policy is None:
        return False
    if policy.threshold_cents is None:
        return False
    return request.amount_cents >= policy.threshold_cents


def meets_custom_amount(request: ApprovalRequest, rules: UrgencyRules) -> bool:
    threshold = rules.custom_amount_threshold
    if threshold is None or threshold <= 0:
        return False
    return request.amount >= threshold


def is_urgent(
    request: ApprovalRequest,
    policy: ApprovalPolicy | None,
    rules: UrgencyRules,
    now: datetime,
) -> bool:
    """Whether ``request`` is urgent for a viewer holding ``rules``.

    ``policy`` is the request's current policy looked up by id; it may be
    absent when the policy has since been deleted, in which case the
    threshold rule cannot fire.
    """
    if not request.is_open:
        return False
    if rules.pending_second_counts and request.status == RequestStatus.PENDING_SECOND:
        return True
    return (
        is_stale(request, rules, now)
        or meets_policy_threshold(request, policy, rules)
        or meets_custom_amount(request, rules)
    )
