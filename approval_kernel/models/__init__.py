"""Domain models for the approval kernel."""

from approval_kernel.models.approval import (
    ApprovalDecisionModel,
    ApprovalPolicyModel,
    ApprovalRequestModel,
)
from approval_kernel.models.audit_event import AuditAction, AuditEvent


def import_all_models() -> None:
    """Ensure every ORM table is registered on Base.metadata."""
    import approval_kernel.models.approval  # noqa: F401
    import approval_kernel.models.audit_event  # noqa: F401
    import approval_kernel.services.sequence_service  # noqa: F401


__all__ = [
    "ApprovalPolicyModel",
    "ApprovalRequestModel",
    "ApprovalDecisionModel",
    "AuditAction",
    "AuditEvent",
    "import_all_models",
]
