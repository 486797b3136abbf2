"""Services for the approval kernel (audit trail and persistence)."""

from approval_kernel.services.audit_log import AuditLog, verify_entries
from approval_kernel.services.instance_repository import InstanceRepository

__all__ = [
    "AuditLog",
    "InstanceRepository",
    "verify_entries",
]
