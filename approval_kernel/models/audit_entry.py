"""
Module: approval_kernel.models.audit_entry
Responsibility: ORM persistence for per-instance, hash-chained audit entries.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Rows are append-only; UPDATE/DELETE raise ImmutabilityViolationError
      (db/immutability.py).
    - (instance_id, seq) is unique; seq is instance-local and gap-free.
    - hash = H(instance_id | seq | kind | timestamp | payload_hash | prev_hash).
      Validated by AuditLog.verify_chain, not at INSERT time.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, BigInteger, DateTime, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, UUIDString


class AuditEntryModel(Base):
    """One persisted audit entry."""

    __tablename__ = "approval_audit_entries"

    __table_args__ = (
        UniqueConstraint("instance_id", "seq", name="uq_audit_instance_seq"),
        Index("idx_audit_instance", "instance_id"),
        Index("idx_audit_kind", "kind"),
    )

    instance_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False)

    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    kind: Mapped[str] = mapped_column(String(50), nullable=False)

    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEntryModel {self.instance_id}#{self.seq} {self.kind}>"
