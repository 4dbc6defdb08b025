"""
approval_config -- single public entrypoint for approval engine configuration.

Responsibility:
    Provides the ONLY way to obtain engine configuration at runtime through
    ``get_active_config()``.  YAML loading is internal tooling.

Architecture position:
    Configuration -- sits above ``approval_kernel`` and below
    ``approval_services``.  The kernel MUST NEVER import from
    ``approval_config``; ``bridges`` translates the configuration set into
    kernel inputs.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - Validation before use: a configuration with errors is never returned.
    - Deterministic checksum: the same YAML always produces the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``ConfigurationError`` -- parse or validation failures.

Audit relevance:
    Every successful ``get_active_config()`` call emits an
    ``APPROVAL_CONFIG_TRACE`` log entry containing the config_id, version,
    checksum and seed policy count.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml

from approval_config.loader import load_configuration_set
from approval_config.schema import ApprovalConfigurationSet
from approval_config.validator import validate_configuration
from approval_kernel.exceptions import ConfigurationError

_logger = logging.getLogger("approval_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(config_path: Path | str | None = None) -> ApprovalConfigurationSet:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: YAML file to load.  Defaults to the bundled
            ``approval_config/sets/default.yaml``.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigurationError: If the file cannot be parsed or fails validation.
    """
    path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH

    try:
        config = load_configuration_set(path)
    except (KeyError, ValueError, TypeError, yaml.YAMLError) as exc:
        raise ConfigurationError([f"{path}: {type(exc).__name__}: {exc}"]) from exc

    validation = validate_configuration(config)
    if not validation.is_valid:
        raise ConfigurationError(validation.errors)
    for warning in validation.warnings:
        _logger.warning("approval_config_warning", extra={"warning": warning})

    _logger.info(
        "APPROVAL_CONFIG_TRACE",
        extra={
            "trace_type": "APPROVAL_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "seed_policy_count": len(config.policies),
            "max_conflict_retries": config.engine.max_conflict_retries,
        },
    )
    return config


__all__ = [
    "ApprovalConfigurationSet",
    "ConfigurationError",
    "DEFAULT_CONFIG_PATH",
    "get_active_config",
]
