from church_approvals.models.user import User
from church_approvals.models.organization import Organization, OrganizationRole, OrganizationMembership
from church_approvals.models.transaction import Transaction
from church_approvals.models.approval import ApprovalFlow, ApprovalStep
from church_approvals.models.audit import AuditLog

__all__ = [
    "User",
    "Organization", "OrganizationRole", "OrganizationMembership",
    "Transaction",
    "ApprovalFlow", "ApprovalStep",
    "AuditLog",
]
