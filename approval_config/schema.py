"""
ApprovalConfigurationSet schema.

Defines the human-authored, reviewable configuration artifact for the
approval engine.  YAML files are parsed into these types by the loader,
checked by the validator, and handed to the services layer through
``approval_config.get_active_config()``.

All definitions are declarative data: no executable logic.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Engine behaviour
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EngineSettings:
    """Transaction and cache behaviour of the approval gateway."""

    max_conflict_retries: int = 3
    policy_cache_ttl_seconds: float = 30.0
    # When False the requester may never decide on their own request.
    requester_may_approve: bool = True


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RoleSettings:
    """Role names the engine gives special meaning to."""

    baseline_approver_roles: frozenset[str] = frozenset({
        "owner", "manager", "admin", "finance",
    })
    platform_roles: frozenset[str] = frozenset({"platform_admin"})
    policy_admin_roles: frozenset[str] = frozenset({
        "owner", "admin", "platform_admin",
    })


# ---------------------------------------------------------------------------
# Urgency defaults
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UrgencyRulesDef:
    """Default urgency rules for viewers with no stored preferences.

    Decimal values are kept as strings, as authored.
    """

    pending_second_counts: bool = True
    age_threshold_hours: str = "24"
    policy_threshold_counts: bool = True
    custom_amount_threshold: str | None = None


# ---------------------------------------------------------------------------
# Seed policies
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SeedPolicyDef:
    """A policy installed into an empty policy store."""

    name: str
    applies_to: tuple[str, ...]
    approvers_needed: int
    approver_roles: tuple[str, ...]
    threshold_cents: int | None = None
    currency: str = "USD"
    scope_id: str | None = None
    description: str = ""
    is_active: bool = True


# ---------------------------------------------------------------------------
# Configuration set
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ApprovalConfigurationSet:
    """Root configuration artifact."""

    config_id: str
    version: int
    engine: EngineSettings = field(default_factory=EngineSettings)
    roles: RoleSettings = field(default_factory=RoleSettings)
    urgency: UrgencyRulesDef = field(default_factory=UrgencyRulesDef)
    policies: tuple[SeedPolicyDef, ...] = ()
    checksum: str = ""
