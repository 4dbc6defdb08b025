"""
approval_services -- orchestration layer of the approval engine.

``ApprovalGateway`` is the operation set collaborators consume: submit,
approve, reject, queue listing and policy administration.
"""

from approval_services.gateway import ApprovalGateway

__all__ = ["ApprovalGateway"]
