"""
ORM-level append-only enforcement for audit entries.

Audit rows are written once and never changed.  SQLAlchemy fires mapper
events before UPDATE/DELETE statements reach the database; the listeners
registered here intercept them and raise ``ImmutabilityViolationError``,
aborting the flush.

    session.flush()
         |
         v
    [before_update] --> _check_audit_entry_update() --> ImmutabilityViolationError
    [before_delete] --> _check_audit_entry_delete() --> ImmutabilityViolationError

Usage:
    from approval_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # called by create_tables()
"""

from sqlalchemy import event

from approval_kernel.exceptions import ImmutabilityViolationError
from approval_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _check_audit_entry_update(mapper, connection, target):
    """Prevent any updates to AuditEntryModel rows."""
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "AuditEntry",
            "entity_id": str(target.id),
            "operation": "UPDATE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="AuditEntry",
        entity_id=str(target.id),
        reason="Audit entries are immutable and cannot be modified",
    )


def _check_audit_entry_delete(mapper, connection, target):
    """Prevent deletion of AuditEntryModel rows."""
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "AuditEntry",
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="AuditEntry",
        entity_id=str(target.id),
        reason="Audit entries cannot be deleted",
    )


def register_immutability_listeners():
    """Register the append-only listeners (idempotent)."""
    from approval_kernel.models.audit_entry import AuditEntryModel

    if not event.contains(AuditEntryModel, "before_update", _check_audit_entry_update):
        event.listen(AuditEntryModel, "before_update", _check_audit_entry_update)
    if not event.contains(AuditEntryModel, "before_delete", _check_audit_entry_delete):
        event.listen(AuditEntryModel, "before_delete", _check_audit_entry_delete)


def unregister_immutability_listeners():
    """
    Remove the append-only listeners.

    WARNING: Only use this in tests that intentionally tamper with rows to
    verify chain detection.
    """
    from approval_kernel.models.audit_entry import AuditEntryModel

    if event.contains(AuditEntryModel, "before_update", _check_audit_entry_update):
        event.remove(AuditEntryModel, "before_update", _check_audit_entry_update)
    if event.contains(AuditEntryModel, "before_delete", _check_audit_entry_delete):
        event.remove(AuditEntryModel, "before_delete", _check_audit_entry_delete)
