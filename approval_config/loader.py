"""
Configuration Loader (``approval_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into typed
``approval_config.schema`` dataclass instances.  Runtime callers use
``approval_config.get_active_config()`` instead of calling this directly.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the raw
  document for configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Wrongly typed values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from approval_config.schema import (
    ApprovalConfigurationSet,
    EngineSettings,
    RoleSettings,
    SeedPolicyDef,
    UrgencyRulesDef,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _parse_bool(value: Any, key: str) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"{key} must be true or false, got {value!r}")
    return value


def _parse_roles(value: Any, key: str) -> frozenset[str]:
    if isinstance(value, str) or not isinstance(value, (list, tuple, set)):
        raise ValueError(f"{key} must be a list of role names, got {value!r}")
    return frozenset(str(v) for v in value)


def _parse_optional_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def parse_engine_settings(data: dict[str, Any]) -> EngineSettings:
    """Parse EngineSettings; absent keys take the schema defaults."""
    defaults = EngineSettings()
    return EngineSettings(
        max_conflict_retries=int(data.get("max_conflict_retries", defaults.max_conflict_retries)),
        policy_cache_ttl_seconds=float(
            data.get("policy_cache_ttl_seconds", defaults.policy_cache_ttl_seconds)
        ),
        requester_may_approve=_parse_bool(
            data.get("requester_may_approve", defaults.requester_may_approve),
            "engine.requester_may_approve",
        ),
    )


def parse_role_settings(data: dict[str, Any]) -> RoleSettings:
    """Parse RoleSettings; absent keys take the schema defaults."""
    defaults = RoleSettings()
    return RoleSettings(
        baseline_approver_roles=_parse_roles(
            data.get("baseline_approver_roles", sorted(defaults.baseline_approver_roles)),
            "roles.baseline_approver_roles",
        ),
        platform_roles=_parse_roles(
            data.get("platform_roles", sorted(defaults.platform_roles)),
            "roles.platform_roles",
        ),
        policy_admin_roles=_parse_roles(
            data.get("policy_admin_roles", sorted(defaults.policy_admin_roles)),
            "roles.policy_admin_roles",
        ),
    )


def parse_urgency(data: dict[str, Any]) -> UrgencyRulesDef:
    """Parse the default urgency rules."""
    defaults = UrgencyRulesDef()
    return UrgencyRulesDef(
        pending_second_counts=_parse_bool(
            data.get("pending_second_counts", defaults.pending_second_counts),
            "urgency.pending_second_counts",
        ),
        age_threshold_hours=str(data.get("age_threshold_hours", defaults.age_threshold_hours)),
        policy_threshold_counts=_parse_bool(
            data.get("policy_threshold_counts", defaults.policy_threshold_counts),
            "urgency.policy_threshold_counts",
        ),
        custom_amount_threshold=_parse_optional_str(data.get("custom_amount_threshold")),
    )


def parse_seed_policy(data: dict[str, Any]) -> SeedPolicyDef:
    """
    Parse a ``SeedPolicyDef`` from a dict.

    Required keys: ``name``, ``applies_to``, ``approvers_needed``,
    ``approver_roles``.
    """
    threshold = data.get("threshold_cents")
    return SeedPolicyDef(
        name=data["name"],
        applies_to=tuple(data["applies_to"]),
        approvers_needed=data["approvers_needed"],
        approver_roles=tuple(data["approver_roles"]),
        threshold_cents=threshold,
        currency=data.get("currency", "USD"),
        scope_id=_parse_optional_str(data.get("scope_id")),
        description=data.get("description", ""),
        is_active=data.get("is_active", True),
    )


def parse_configuration_set(data: dict[str, Any]) -> ApprovalConfigurationSet:
    """Parse a whole configuration document."""
    return ApprovalConfigurationSet(
        config_id=data["config_id"],
        version=int(data.get("version", 1)),
        engine=parse_engine_settings(data.get("engine") or {}),
        roles=parse_role_settings(data.get("roles") or {}),
        urgency=parse_urgency(data.get("urgency") or {}),
        policies=tuple(parse_seed_policy(p) for p in data.get("policies") or ()),
        checksum=compute_checksum(data),
    )


def load_configuration_set(path: Path) -> ApprovalConfigurationSet:
    """Load and parse a configuration YAML file."""
    return parse_configuration_set(load_yaml_file(path))


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
