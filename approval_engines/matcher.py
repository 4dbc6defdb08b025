"""
approval_engines.matcher -- Pure policy matching engine.

Responsibility:
    Select the policy that governs a submitted action from the current
    policy set.  Falls back to the explicit default policy so that every
    sensitive action is governed by a real policy object.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain/ types and exceptions.

Invariants enforced:
    - Deterministic selection: candidates are ordered by a total key
      (threshold desc, approvers desc, scoped before global, id asc);
      identical inputs always yield the identical policy.
    - Inactive policies are never matched.
    - Same-currency thresholds: a candidate whose threshold is expressed
      in another currency is a configuration error.  It is reported even
      when the threshold lies above the action amount: cents in different
      currencies are not comparable, so whether the policy "would have
      applied" is undefined.

Failure modes:
    - CurrencyMismatchError when a candidate's threshold currency differs
      from the action currency.
"""

from __future__ import annotations

from collections.abc import Iterable

from approval_kernel.domain.approval import (
    DEFAULT_POLICY,
    ApprovalPolicy,
    SubmittedAction,
)
from approval_kernel.exceptions import CurrencyMismatchError
from approval_engines.tracer import traced_engine


def policy_applies(policy: ApprovalPolicy, action: SubmittedAction) -> bool:
    """Whether ``policy`` is a candidate for ``action``.

    Active, covering the action type, global or in the action's scope, and
    with no threshold or a threshold at or below the action amount.
    """
    if not policy.is_active:
        return False
    if not policy.covers(action.action_type):
        return False
    if policy.scope_id is not None and policy.scope_id != action.scope_id:
        return False
    if policy.threshold_cents is not None and policy.threshold_cents > action.amount_cents:
        return False
    return True


def _precedence_key(policy: ApprovalPolicy) -> tuple:
    # Absent threshold ranks below a threshold of zero.
    threshold_rank = -1 if policy.threshold_cents is None else policy.threshold_cents
    return (
        -threshold_rank,
        -policy.approvers_needed,
        0 if policy.scope_id is not None else 1,
        str(policy.policy_id),
    )


def rank_candidates(
    action: SubmittedAction,
    policies: Iterable[ApprovalPolicy],
) -> list[ApprovalPolicy]:
    """All applicable policies, strictest first.

    Raises:
        CurrencyMismatchError: A thresholded candidate is in another
            currency, whatever the size of its threshold.
    """
    candidates: list[ApprovalPolicy] = []
    for policy in policies:
        if not policy.is_active or not policy.covers(action.action_type):
            continue
        if policy.scope_id is not None and policy.scope_id != action.scope_id:
            continue
        if policy.threshold_cents is not None and policy.currency != action.currency:
            raise CurrencyMismatchError(
                action_currency=action.currency,
                policy_currency=policy.currency,
                policy_id=str(policy.policy_id),
            )
        if policy_applies(policy, action):
            candidates.append(policy)
    return sorted(candidates, key=_precedence_key)


@traced_engine("policy_matcher", "1.0", fingerprint_fields=("action", "policies"))
def match_policy(
    action: SubmittedAction,
    policies: Iterable[ApprovalPolicy],
    default: ApprovalPolicy = DEFAULT_POLICY,
) -> ApprovalPolicy:
    """Select the governing policy for ``action``.

    Args:
        action: The submitted action.
        policies: The current policy set (inactive ones are skipped).
        default: Policy returned when nothing matches.

    Returns:
        The strictest applicable policy, or ``default``.
    """
    ranked = rank_candidates(action, tuple(policies))
    return ranked[0] if ranked else default
