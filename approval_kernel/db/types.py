"""
Module: approval_kernel.db.types
Responsibility: Value checks shared by the models and services.
Architecture position: Kernel > DB.  May be imported by models/, services/,
    and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - Currency codes are three upper-case ASCII letters.
"""

import re

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


def is_valid_currency(code: str | None) -> bool:
    """True if ``code`` looks like an ISO 4217 alphabetic code."""
    return isinstance(code, str) and bool(_CURRENCY_RE.match(code))
