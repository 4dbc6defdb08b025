"""
Approval Kernel - dual-control gate for sensitive financial actions.

Decides whether and when a proposed refund, payout or configuration change
may proceed:
- Policy-driven approver counts and eligible roles
- Segregation of duties (one vote per approver, role-gated)
- Linearizable request transitions via optimistic versioning
- Full auditability via hash chain
"""

__version__ = "0.1.0"
