"""
Configuration Validator (``approval_config.validator``).

Responsibility
--------------
Validates an ``ApprovalConfigurationSet`` before it is handed to the
services layer.

Invariants enforced
-------------------
* Engine settings are in range (at least one attempt, non-negative TTL).
* Baseline approver roles and policy admin roles are non-empty.
* Urgency defaults parse as finite, non-negative decimals.
* Seed policies satisfy the same invariants the policy store enforces,
  and their names are unique.

Failure modes
-------------
* Validation errors (``ConfigValidationResult.errors``) -> the
  configuration MUST NOT be used.
* Validation warnings -> usable but should be reviewed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from approval_config.schema import ApprovalConfigurationSet, SeedPolicyDef
from approval_kernel.exceptions import InvalidPolicyError
from approval_kernel.services.policy_service import validate_policy_fields


@dataclass
class ConfigValidationResult:
    """
    Result of configuration validation.

    ``is_valid`` returns ``True`` only when ``errors`` is empty.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def validate_configuration(config: ApprovalConfigurationSet) -> ConfigValidationResult:
    """Run every validation check and collect the findings."""
    result = ConfigValidationResult()
    _validate_engine(config, result)
    _validate_roles(config, result)
    _validate_urgency(config, result)
    _validate_seed_policies(config, result)
    return result


def _validate_engine(config: ApprovalConfigurationSet, result: ConfigValidationResult) -> None:
    if config.engine.max_conflict_retries < 1:
        result.add_error("engine.max_conflict_retries must be at least 1")
    if config.engine.policy_cache_ttl_seconds < 0:
        result.add_error("engine.policy_cache_ttl_seconds must be non-negative")
    if not config.engine.requester_may_approve:
        result.add_warning(
            "engine.requester_may_approve is false: requesters cannot decide on their own requests"
        )


def _validate_roles(config: ApprovalConfigurationSet, result: ConfigValidationResult) -> None:
    if not config.roles.baseline_approver_roles:
        result.add_error("roles.baseline_approver_roles must not be empty")
    if not config.roles.policy_admin_roles:
        result.add_error("roles.policy_admin_roles must not be empty")
    if not config.roles.platform_roles:
        result.add_warning("roles.platform_roles is empty: no actor can act across scopes")


def _parse_decimal(value: str) -> Decimal | None:
    try:
        parsed = Decimal(value)
    except (InvalidOperation, ValueError):
        return None
    return parsed if parsed.is_finite() else None


def _validate_urgency(config: ApprovalConfigurationSet, result: ConfigValidationResult) -> None:
    age = _parse_decimal(config.urgency.age_threshold_hours)
    if age is None or age < 0:
        result.add_error(
            f"urgency.age_threshold_hours must be a non-negative number, "
            f"got {config.urgency.age_threshold_hours!r}"
        )
    custom = config.urgency.custom_amount_threshold
    if custom is not None:
        parsed = _parse_decimal(custom)
        if parsed is None or parsed <= 0:
            result.add_error(
                f"urgency.custom_amount_threshold must be a positive number, got {custom!r}"
            )


def _seed_fields(policy: SeedPolicyDef) -> dict:
    return {
        "name": policy.name,
        "applies_to": frozenset(policy.applies_to),
        "threshold_cents": policy.threshold_cents,
        "currency": policy.currency,
        "approvers_needed": policy.approvers_needed,
        "approver_roles": frozenset(policy.approver_roles),
        "is_active": policy.is_active,
        "scope_id": policy.scope_id,
        "description": policy.description,
    }


def _validate_seed_policies(
    config: ApprovalConfigurationSet,
    result: ConfigValidationResult,
) -> None:
    seen: set[tuple[str, str | None]] = set()
    for index, policy in enumerate(config.policies):
        label = f"policies[{index}] ({policy.name!r})"
        key = (policy.name, policy.scope_id)
        if key in seen:
            result.add_error(f"{label}: duplicate policy name in scope {policy.scope_id!r}")
        seen.add(key)
        try:
            validate_policy_fields(_seed_fields(policy))
        except InvalidPolicyError as exc:
            result.add_error(f"{label}: {exc}")
