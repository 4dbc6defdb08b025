"""Utility modules for the approval kernel."""

from approval_kernel.utils.hashing import (
    canonicalize_json,
    hash_audit_event,
    hash_payload,
    to_json_safe,
)

__all__ = [
    "hash_payload",
    "hash_audit_event",
    "canonicalize_json",
    "to_json_safe",
]
