"""
Config -> Kernel Bridges.

Functions that convert an ApprovalConfigurationSet into kernel-compatible
inputs.  These live in approval_config (the producer) because the kernel
must never import approval_config.

Usage:
    from approval_config.bridges import build_default_policy, build_urgency_rules

    config = get_active_config()
    default_policy = build_default_policy(config)
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID, uuid5

from approval_config.schema import ApprovalConfigurationSet, SeedPolicyDef
from approval_kernel.domain.approval import (
    ApprovalPolicy,
    PolicyDraft,
    UrgencyRules,
    make_default_policy,
)

# Fixed namespace so a seed policy keeps its id across installs.
_SEED_POLICY_NAMESPACE = UUID("5f0c7a8e-2b1d-4c39-9e6a-d3b8f1a4c720")


def build_default_policy(config: ApprovalConfigurationSet) -> ApprovalPolicy:
    """Fallback policy whose approver roles are the configured baseline."""
    return make_default_policy(config.roles.baseline_approver_roles)


def build_urgency_rules(config: ApprovalConfigurationSet) -> UrgencyRules:
    """Default per-viewer urgency rules."""
    custom = config.urgency.custom_amount_threshold
    return UrgencyRules(
        pending_second_counts=config.urgency.pending_second_counts,
        age_threshold_hours=Decimal(config.urgency.age_threshold_hours),
        policy_threshold_counts=config.urgency.policy_threshold_counts,
        custom_amount_threshold=Decimal(custom) if custom is not None else None,
    )


def seed_policy_id(policy: SeedPolicyDef) -> UUID:
    """Deterministic id for a seed policy (name + scope)."""
    return uuid5(_SEED_POLICY_NAMESPACE, f"{policy.scope_id or ''}:{policy.name}")


def build_seed_drafts(config: ApprovalConfigurationSet) -> list[tuple[UUID, PolicyDraft]]:
    """Seed policies as (id, draft) pairs ready for the policy store."""
    return [
        (
            seed_policy_id(p),
            PolicyDraft(
                name=p.name,
                applies_to=frozenset(p.applies_to),
                approvers_needed=p.approvers_needed,
                approver_roles=frozenset(p.approver_roles),
                threshold_cents=p.threshold_cents,
                currency=p.currency,
                is_active=p.is_active,
                scope_id=p.scope_id,
                description=p.description,
            ),
        )
        for p in config.policies
    ]
