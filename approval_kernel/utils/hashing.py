"""
Canonical JSON and SHA-256 helpers for the audit chain.

The same payload must always hash to the same digest, on any backend and
in any process, so every payload is reduced to canonical JSON first:
sorted keys, no whitespace, Decimals normalized, sets sorted.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

GENESIS_MARKER = "GENESIS"


def _encode_special(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return str(obj.normalize())
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    raise TypeError(f"Cannot encode {type(obj).__name__} in an audit payload")


def canonicalize_json(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_encode_special)


def to_json_safe(data: Any) -> Any:
    """Round-trip through canonical JSON so a payload fits a JSON column."""
    return json.loads(canonicalize_json(data))


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_payload(payload: dict) -> str:
    """Hex SHA-256 of the canonical form of ``payload``."""
    return _sha256(canonicalize_json(payload))


def hash_audit_event(
    entity_type: str,
    entity_id: str,
    action: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """Chain hash of one audit event.

    Folds in the previous event's hash (``GENESIS`` for the first event),
    so editing any earlier event breaks every hash after it.
    """
    return _sha256(
        "|".join((entity_type, str(entity_id), action, payload_hash, prev_hash or GENESIS_MARKER))
    )
