"""
InstanceRepository -- SQLAlchemy persistence for instance snapshots.

Responsibility:
    Saves the latest snapshot of a request instance and appends any audit
    entries not yet persisted; loads both back.

Architecture position:
    Kernel > Services -- imperative shell over ``models/``.  Receives a
    session factory (``approval_kernel.db.engine.get_session_factory()``).

Invariants enforced:
    - Audit rows are only ever inserted; already-stored sequence numbers are
      skipped, never rewritten.
    - Loaded audit trails are re-verified before they are returned.

Failure modes:
    - AuditChainBrokenError on load if stored audit rows do not verify.
    - SQLAlchemy errors propagate after rollback (``session_scope``).
"""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from approval_kernel.db.engine import session_scope
from approval_kernel.domain.audit import AuditEntry, AuditKind
from approval_kernel.domain.instance import InstanceStatus, RequestInstance
from approval_kernel.domain.snapshot import instance_from_dict, instance_to_dict
from approval_kernel.logging_config import get_logger
from approval_kernel.models.audit_entry import AuditEntryModel
from approval_kernel.models.instance_snapshot import InstanceSnapshotModel
from approval_kernel.services.audit_log import verify_entries

logger = get_logger("services.instance_repository")


def _aware(value: datetime) -> datetime:
    # sqlite drops tzinfo; engine timestamps are always UTC
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class InstanceRepository:
    """Snapshot + audit persistence for request instances."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def save(
        self,
        instance: RequestInstance,
        entries: tuple[AuditEntry, ...] | list[AuditEntry] = (),
        now: datetime | None = None,
    ) -> int:
        """
        Upsert the instance snapshot and append unsaved audit entries.

        Returns:
            Number of audit entries newly written.
        """
        updated_at = now or datetime.now(timezone.utc)
        snapshot = instance_to_dict(instance)
        written = 0
        with session_scope(self._session_factory) as session:
            row = session.get(InstanceSnapshotModel, instance.id)
            if row is None:
                row = InstanceSnapshotModel(
                    id=instance.id,
                    definition_id=instance.definition_id,
                    definition_version=instance.definition_version,
                    requester=instance.requester,
                    created_at=instance.created_at,
                    status=instance.status.value,
                    updated_at=updated_at,
                    snapshot=snapshot,
                )
                session.add(row)
            else:
                row.status = instance.status.value
                row.updated_at = updated_at
                row.snapshot = snapshot

            max_seq = session.execute(
                select(func.max(AuditEntryModel.seq)).where(
                    AuditEntryModel.instance_id == instance.id
                )
            ).scalar_one_or_none() or 0

            for entry in entries:
                if entry.seq <= max_seq:
                    continue
                session.add(
                    AuditEntryModel(
                        instance_id=entry.instance_id,
                        seq=entry.seq,
                        timestamp=entry.timestamp,
                        kind=entry.kind.value,
                        payload=entry.payload,
                        prev_hash=entry.prev_hash,
                        hash=entry.hash,
                    )
                )
                written += 1

        logger.info(
            "instance_saved",
            extra={
                "instance_id": str(instance.id),
                "status": instance.status.value,
                "audit_entries_written": written,
            },
        )
        return written

    def load(self, instance_id: UUID) -> tuple[RequestInstance, list[AuditEntry]] | None:
        """
        Load an instance and its verified audit trail, or None if unknown.

        Raises:
            AuditChainBrokenError: If the stored trail fails verification.
        """
        with session_scope(self._session_factory) as session:
            row = session.get(InstanceSnapshotModel, instance_id)
            if row is None:
                return None
            instance = instance_from_dict(row.snapshot)
            rows = session.execute(
                select(AuditEntryModel)
                .where(AuditEntryModel.instance_id == instance_id)
                .order_by(AuditEntryModel.seq)
            ).scalars().all()
            entries = [
                AuditEntry(
                    instance_id=r.instance_id,
                    seq=r.seq,
                    timestamp=_aware(r.timestamp),
                    kind=AuditKind(r.kind),
                    payload=dict(r.payload or {}),
                    prev_hash=r.prev_hash,
                    hash=r.hash,
                )
                for r in rows
            ]
        verify_entries(instance_id, entries)
        return instance, entries

    def list_ids(self, status: InstanceStatus | None = None) -> list[UUID]:
        """Instance ids, oldest first, optionally filtered by status."""
        stmt = select(InstanceSnapshotModel.id).order_by(
            InstanceSnapshotModel.created_at, InstanceSnapshotModel.id
        )
        if status is not None:
            stmt = stmt.where(InstanceSnapshotModel.status == status.value)
        with session_scope(self._session_factory) as session:
            return list(session.execute(stmt).scalars().all())
