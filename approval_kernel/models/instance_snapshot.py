"""
Module: approval_kernel.models.instance_snapshot
Responsibility: ORM persistence for the latest snapshot of a request instance.
Architecture position: Kernel > Models.  May import from db/base.py only.

The snapshot column holds ``approval_kernel.domain.snapshot.instance_to_dict``
output.  Status and definition key are duplicated into indexed columns for
listing queries.  Rows are overwritten on every save; history lives in the
audit entries.
"""

from datetime import datetime

from sqlalchemy import JSON, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base


class InstanceSnapshotModel(Base):
    """Latest persisted state of one request instance (``id`` = instance id)."""

    __tablename__ = "approval_instance_snapshots"

    __table_args__ = (
        Index("idx_snapshot_status", "status"),
        Index("idx_snapshot_definition", "definition_id", "definition_version"),
    )

    definition_id: Mapped[str] = mapped_column(String(100), nullable=False)

    definition_version: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False)

    requester: Mapped[str] = mapped_column(String(200), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    snapshot: Mapped[dict] = mapped_column(JSON, nullable=False)

    def __repr__(self) -> str:
        return f"<InstanceSnapshotModel {self.id} {self.status}>"
