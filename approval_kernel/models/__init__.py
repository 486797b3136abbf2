"""SQLAlchemy ORM models for the approval engine."""

from approval_kernel.models.audit_entry import AuditEntryModel
from approval_kernel.models.instance_snapshot import InstanceSnapshotModel

__all__ = [
    "AuditEntryModel",
    "InstanceSnapshotModel",
]
