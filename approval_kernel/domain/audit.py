"""
Audit entry types (``approval_kernel.domain.audit``).

Responsibility
--------------
The immutable record type of the per-instance audit trail and the closed
set of entry kinds the engine writes.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  Produced by
``approval_kernel.services.audit_log``; serialized by
``approval_kernel.domain.snapshot``.

Invariants enforced
-------------------
* Entries are ordered by ``seq`` (instance-local, starting at 1, gap-free),
  never by timestamp.
* ``hash`` chains to ``prev_hash``; the first entry's ``prev_hash`` is None.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


class AuditKind(str, Enum):
    """Kinds of audit entries."""

    SUBMITTED = "submitted"
    STEP_ACTIVATED = "step_activated"
    APPROVERS_RESOLVED = "approvers_resolved"
    RESOLUTION_DEFERRED = "resolution_deferred"
    DECISION_RECORDED = "decision_recorded"
    STEP_COMPLETED = "step_completed"
    STEP_REJECTED = "step_rejected"
    STEP_ESCALATED = "step_escalated"
    STEP_BLOCKED = "step_blocked"
    STEP_REASSIGNED = "step_reassigned"
    STEP_HALTED = "step_halted"
    EDGE_TAKEN = "edge_taken"
    NOTIFICATION_SENT = "notification_sent"
    INSTANCE_BLOCKED = "instance_blocked"
    INSTANCE_APPROVED = "instance_approved"
    INSTANCE_REJECTED = "instance_rejected"
    INSTANCE_CANCELLED = "instance_cancelled"
    ENGINE_FAULT = "engine_fault"


@dataclass(frozen=True)
class AuditEntry:
    """One hash-chained audit record."""

    instance_id: UUID
    seq: int
    timestamp: datetime
    kind: AuditKind
    payload: dict[str, Any] = field(default_factory=dict)
    prev_hash: str | None = None
    hash: str = ""
