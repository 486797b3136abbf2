"""
Snapshot codec (``approval_kernel.domain.snapshot``).

Responsibility
--------------
Converts ``RequestInstance`` (with its step states) and its audit entries
to and from JSON-compatible dicts.  Request fields are written as
``{"kind", "value"}`` pairs so that ``TypedValue`` kinds survive the wire.

Architecture position
---------------------
**Kernel domain layer** -- pure functions, ZERO I/O.  Used by the
execution engine (``snapshot``), the instance repository and the HTTP
layer.

Invariants enforced
-------------------
* ``instance_from_dict(instance_to_dict(i)) == i`` -- in particular
  ``step_states`` and ``status`` are reproduced exactly.
* Sets are written as sorted lists so snapshots are byte-stable.
* Timer handles are process-local and are written as-is; a restored
  instance re-registers deadlines through its engine, not the snapshot.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from approval_kernel.domain.audit import AuditEntry, AuditKind
from approval_kernel.domain.instance import (
    Decision,
    DecisionAction,
    InstanceStatus,
    Priority,
    RequestInstance,
    ResolutionPurpose,
    StepState,
    StepStatus,
)
from approval_kernel.domain.values import TypedValue

SNAPSHOT_SCHEMA_VERSION = 1


def _dt(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value is not None else None


# =========================================================================
# Decisions and steps
# =========================================================================


def decision_to_dict(decision: Decision) -> dict[str, Any]:
    return {
        "principal": decision.principal,
        "action": decision.action.value,
        "timestamp": _dt(decision.timestamp),
        "comment": decision.comment,
        "delegate_to": decision.delegate_to,
    }


def decision_from_dict(data: dict[str, Any]) -> Decision:
    return Decision(
        principal=data["principal"],
        action=DecisionAction(data["action"]),
        timestamp=_parse_dt(data["timestamp"]),
        comment=data.get("comment"),
        delegate_to=data.get("delegate_to"),
    )


def step_to_dict(step: StepState) -> dict[str, Any]:
    return {
        "node_id": step.node_id,
        "status": step.status.value,
        "activated_at": _dt(step.activated_at),
        "resolved_approvers": sorted(step.resolved_approvers),
        "required_approvers": sorted(step.required_approvers),
        "decisions": [decision_to_dict(d) for d in step.decisions],
        "deadline": _dt(step.deadline),
        "escalated": step.escalated,
        "blocked": step.blocked,
        "pending_resolution": (
            step.pending_resolution.value if step.pending_resolution else None
        ),
        "resolution_attempts": step.resolution_attempts,
        "next_resolution_at": _dt(step.next_resolution_at),
        "timer_handle": step.timer_handle,
        "completed_at": _dt(step.completed_at),
    }


def step_from_dict(data: dict[str, Any]) -> StepState:
    pending = data.get("pending_resolution")
    return StepState(
        node_id=data["node_id"],
        status=StepStatus(data["status"]),
        activated_at=_parse_dt(data["activated_at"]),
        resolved_approvers=set(data.get("resolved_approvers", ())),
        required_approvers=set(data.get("required_approvers", ())),
        decisions=[decision_from_dict(d) for d in data.get("decisions", ())],
        deadline=_parse_dt(data.get("deadline")),
        escalated=bool(data.get("escalated", False)),
        blocked=bool(data.get("blocked", False)),
        pending_resolution=ResolutionPurpose(pending) if pending else None,
        resolution_attempts=int(data.get("resolution_attempts", 0)),
        next_resolution_at=_parse_dt(data.get("next_resolution_at")),
        timer_handle=data.get("timer_handle"),
        completed_at=_parse_dt(data.get("completed_at")),
    )


# =========================================================================
# Instance
# =========================================================================


def instance_to_dict(instance: RequestInstance) -> dict[str, Any]:
    """Serialize an instance and its step states."""
    return {
        "schema_version": SNAPSHOT_SCHEMA_VERSION,
        "id": str(instance.id),
        "definition_id": instance.definition_id,
        "definition_version": instance.definition_version,
        "fields": {
            name: value.to_dict() for name, value in sorted(instance.fields.items())
        },
        "requester": instance.requester,
        "title": instance.title,
        "priority": instance.priority.value,
        "status": instance.status.value,
        "current_node_ids": sorted(instance.current_node_ids),
        "step_states": {
            node_id: step_to_dict(step)
            for node_id, step in sorted(instance.step_states.items())
        },
        "created_at": _dt(instance.created_at),
        "completed_at": _dt(instance.completed_at),
        "blocked_reason": instance.blocked_reason,
    }


def instance_from_dict(data: dict[str, Any]) -> RequestInstance:
    """Rebuild an instance from ``instance_to_dict`` output.

    Raises:
        ValueError: On an unknown ``schema_version`` or malformed values.
    """
    version = data.get("schema_version", SNAPSHOT_SCHEMA_VERSION)
    if version != SNAPSHOT_SCHEMA_VERSION:
        raise ValueError(f"Unsupported snapshot schema version: {version}")
    return RequestInstance(
        id=UUID(data["id"]),
        definition_id=data["definition_id"],
        definition_version=int(data["definition_version"]),
        fields={
            name: TypedValue.from_dict(value)
            for name, value in data.get("fields", {}).items()
        },
        requester=data["requester"],
        created_at=_parse_dt(data["created_at"]),
        status=InstanceStatus(data["status"]),
        current_node_ids=set(data.get("current_node_ids", ())),
        step_states={
            node_id: step_from_dict(step)
            for node_id, step in data.get("step_states", {}).items()
        },
        title=data.get("title", ""),
        priority=Priority(data.get("priority", Priority.MEDIUM.value)),
        blocked_reason=data.get("blocked_reason"),
        completed_at=_parse_dt(data.get("completed_at")),
    )


# =========================================================================
# Audit entries
# =========================================================================


def audit_entry_to_dict(entry: AuditEntry) -> dict[str, Any]:
    return {
        "instance_id": str(entry.instance_id),
        "seq": entry.seq,
        "timestamp": _dt(entry.timestamp),
        "kind": entry.kind.value,
        "payload": entry.payload,
        "prev_hash": entry.prev_hash,
        "hash": entry.hash,
    }


def audit_entry_from_dict(data: dict[str, Any]) -> AuditEntry:
    return AuditEntry(
        instance_id=UUID(data["instance_id"]),
        seq=int(data["seq"]),
        timestamp=_parse_dt(data["timestamp"]),
        kind=AuditKind(data["kind"]),
        payload=dict(data.get("payload", {})),
        prev_hash=data.get("prev_hash"),
        hash=data["hash"],
    )


def build_snapshot(
    instance: RequestInstance,
    entries: list[AuditEntry] | tuple[AuditEntry, ...],
) -> dict[str, Any]:
    """Full persisted snapshot: the instance plus its audit trail."""
    snapshot = instance_to_dict(instance)
    snapshot["audit"] = [audit_entry_to_dict(e) for e in entries]
    return snapshot


def restore_snapshot(data: dict[str, Any]) -> tuple[RequestInstance, list[AuditEntry]]:
    """Inverse of ``build_snapshot``."""
    instance_data = {k: v for k, v in data.items() if k != "audit"}
    entries = [audit_entry_from_dict(e) for e in data.get("audit", ())]
    return instance_from_dict(instance_data), entries
