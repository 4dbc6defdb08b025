"""
approval_engines.transitions -- Pure request status transition rules.

Responsibility:
    Compute the status a request moves to after a decision, and validate
    every status change against ``REQUEST_TRANSITIONS``.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Count-based approval: a request is approved exactly when its
      approval count reaches ``required_approvals``.
    - ``pending_second`` is entered only when ``required_approvals >= 2``
      and at least one approval is recorded.
    - Rejection is immediate from any open status.
    - Terminal statuses have no outgoing edges.

Failure modes:
    - InvalidTransitionError for an edge not in ``REQUEST_TRANSITIONS``.
"""

from __future__ import annotations

from approval_kernel.domain.approval import (
    REQUEST_TRANSITIONS,
    RequestStatus,
)
from approval_kernel.exceptions import InvalidTransitionError


def is_valid_transition(from_status: RequestStatus, to_status: RequestStatus) -> bool:
    return to_status in REQUEST_TRANSITIONS.get(from_status, frozenset())


def validate_transition(from_status: RequestStatus, to_status: RequestStatus) -> None:
    """Raise InvalidTransitionError unless the edge is legal."""
    if not is_valid_transition(from_status, to_status):
        raise InvalidTransitionError(from_status.value, to_status.value)


def status_for_approval_count(
    approval_count: int,
    required_approvals: int,
) -> RequestStatus:
    """Status implied by ``approval_count`` approvals out of ``required_approvals``.

    0 approvals is pending; a full set is approved; anything in between
    waits in pending_second.
    """
    if approval_count >= required_approvals:
        return RequestStatus.APPROVED
    if approval_count >= 1:
        return RequestStatus.PENDING_SECOND
    return RequestStatus.PENDING


def next_status_after_approval(
    current: RequestStatus,
    approval_count: int,
    required_approvals: int,
) -> RequestStatus:
    """Status after an approval brings the count to ``approval_count``.

    Raises:
        InvalidTransitionError: ``current`` is terminal.
    """
    target = status_for_approval_count(approval_count, required_approvals)
    validate_transition(current, target)
    return target


def next_status_after_rejection(current: RequestStatus) -> RequestStatus:
    """Rejection always terminates an open request."""
    validate_transition(current, RequestStatus.REJECTED)
    return RequestStatus.REJECTED
