"""
Pure domain layer.

This module contains pure data transfer objects and domain logic
with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

All domain objects are immutable and deterministic.
"""

from approval_kernel.domain.approval import (
    DEFAULT_POLICY,
    DEFAULT_POLICY_ID,
    OPEN_STATUSES,
    REQUEST_TRANSITIONS,
    TERMINAL_STATUSES,
    ApprovalDecision,
    ApprovalDecisionRecord,
    ApprovalPolicy,
    ApprovalRequest,
    AuditSink,
    AuthorizationContext,
    AuthorizationDenial,
    PolicyDraft,
    RequestStatus,
    SubmittedAction,
    UrgencyRules,
    make_default_policy,
)
from approval_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from approval_kernel.domain.queue import (
    QueueEntry,
    QueueFilter,
    QueueSummary,
    SortMode,
)

__all__ = [
    # Lifecycle
    "RequestStatus",
    "REQUEST_TRANSITIONS",
    "OPEN_STATUSES",
    "TERMINAL_STATUSES",
    "ApprovalDecision",
    "AuthorizationDenial",
    # Policies
    "ApprovalPolicy",
    "PolicyDraft",
    "DEFAULT_POLICY",
    "DEFAULT_POLICY_ID",
    "make_default_policy",
    # Requests
    "SubmittedAction",
    "AuthorizationContext",
    "ApprovalRequest",
    "ApprovalDecisionRecord",
    "AuditSink",
    # Urgency and queue
    "UrgencyRules",
    "QueueFilter",
    "QueueEntry",
    "QueueSummary",
    "SortMode",
    # Clock
    "Clock",
    "SystemClock",
    "DeterministicClock",
]
