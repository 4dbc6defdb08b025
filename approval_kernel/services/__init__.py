"""Kernel services - the imperative shell over the pure engines."""

from approval_kernel.services.approval_service import ApprovalService, validate_action
from approval_kernel.services.auditor_service import (
    AuditorService,
    AuditTrace,
    AuditTraceEntry,
)
from approval_kernel.services.base import BaseService
from approval_kernel.services.policy_service import PolicyService, validate_policy_fields
from approval_kernel.services.sequence_service import SequenceService

__all__ = [
    "BaseService",
    "ApprovalService",
    "PolicyService",
    "AuditorService",
    "AuditTrace",
    "AuditTraceEntry",
    "SequenceService",
    "validate_action",
    "validate_policy_fields",
]
