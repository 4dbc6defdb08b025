"""
Pure approval engines.

Zero I/O: every function here is a deterministic function of its
arguments.  Services load state, call into these engines, and persist the
outcome.
"""

from approval_engines.authorization import (
    DEFAULT_PLATFORM_ROLES,
    can_approve,
    explain_denial,
    has_platform_authority,
)
from approval_engines.matcher import match_policy, policy_applies, rank_candidates
from approval_engines.queue import annotate, build_queue, matches_filter, summarize
from approval_engines.tracer import compute_input_fingerprint, traced_engine
from approval_engines.transitions import (
    is_valid_transition,
    next_status_after_approval,
    next_status_after_rejection,
    status_for_approval_count,
    validate_transition,
)
from approval_engines.urgency import is_urgent

__all__ = [
    # Matcher
    "match_policy",
    "policy_applies",
    "rank_candidates",
    # Authorization
    "DEFAULT_PLATFORM_ROLES",
    "can_approve",
    "explain_denial",
    "has_platform_authority",
    # Transitions
    "is_valid_transition",
    "validate_transition",
    "status_for_approval_count",
    "next_status_after_approval",
    "next_status_after_rejection",
    # Urgency and queue
    "is_urgent",
    "annotate",
    "build_queue",
    "matches_filter",
    "summarize",
    # Tracing
    "traced_engine",
    "compute_input_fingerprint",
]
