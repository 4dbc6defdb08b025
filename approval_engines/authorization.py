"""
approval_engines.authorization -- Pure approver eligibility evaluation.

Responsibility:
    Decide whether an actor may approve or reject a given request, and
    report the first failed condition as a machine-readable denial.  The
    same predicate gates approval and rejection.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Idempotent consent: an actor who already decided on a request is
      never eligible again.
    - Role eligibility is checked against the role set snapshotted on the
      request at submission, not the live policy.
    - Scope isolation: a scoped request is only decidable from the same
      scope, unless the actor holds a platform-wide role.
"""

from __future__ import annotations

from collections.abc import Iterable

from approval_kernel.domain.approval import (
    ApprovalRequest,
    AuthorizationContext,
    AuthorizationDenial,
)

DEFAULT_PLATFORM_ROLES: frozenset[str] = frozenset({"platform_admin"})


def has_platform_authority(
    context: AuthorizationContext,
    platform_roles: Iterable[str] = DEFAULT_PLATFORM_ROLES,
) -> bool:
    return not context.roles.isdisjoint(platform_roles)


def scope_permits(
    context: AuthorizationContext,
    request: ApprovalRequest,
    platform_roles: Iterable[str] = DEFAULT_PLATFORM_ROLES,
) -> bool:
    if request.scope_id is None:
        return True
    if context.scope_id == request.scope_id:
        return True
    return has_platform_authority(context, platform_roles)


def explain_denial(
    context: AuthorizationContext,
    request: ApprovalRequest,
    platform_roles: Iterable[str] = DEFAULT_PLATFORM_ROLES,
    requester_may_approve: bool = True,
) -> AuthorizationDenial | None:
    """First failed eligibility condition, or None when the actor may decide.

    Conditions are checked in this order: request open, not already
    decided, requester rule, role eligibility, scope.
    """
    if not request.is_open:
        return AuthorizationDenial.NOT_OPEN
    if context.actor_id in request.decided_by:
        return AuthorizationDenial.ALREADY_DECIDED
    if not requester_may_approve and context.actor_id == request.requester_id:
        return AuthorizationDenial.REQUESTER_CANNOT_APPROVE
    if context.roles.isdisjoint(request.approver_roles):
        return AuthorizationDenial.ROLE_NOT_ELIGIBLE
    if not scope_permits(context, request, platform_roles):
        return AuthorizationDenial.OUT_OF_SCOPE
    return None


def can_approve(
    context: AuthorizationContext,
    request: ApprovalRequest,
    platform_roles: Iterable[str] = DEFAULT_PLATFORM_ROLES,
    requester_may_approve: bool = True,
) -> bool:
    """Whether ``context`` may approve (or reject) ``request``."""
    return explain_denial(
        context,
        request,
        platform_roles=platform_roles,
        requester_may_approve=requester_may_approve,
    ) is None
