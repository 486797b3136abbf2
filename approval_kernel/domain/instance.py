"""
Request instance types (``approval_kernel.domain.instance``).

Responsibility
--------------
Runtime state of one request travelling through a workflow definition:
instance lifecycle, per-step state, and the append-only decision record.

Architecture position
---------------------
**Kernel domain layer** -- ZERO I/O.  ``RequestInstance`` and ``StepState``
are mutable, but only the execution engine mutates them, and only while
holding the instance's lock.  ``Decision`` is frozen.

Invariants enforced
-------------------
* IL-1: Instance lifecycle -- ``INSTANCE_TRANSITIONS`` lists the only
  legal status changes.  Terminal statuses have no outgoing edges.
* IL-2: Step lifecycle -- ``STEP_TRANSITIONS``; a step that left
  ACTIVATED never returns to it.
* IL-3: Decisions are append-only; ``StepState.decisions`` is only ever
  appended to.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import UUID

from approval_kernel.domain.values import TypedValue


# =========================================================================
# Instance lifecycle (IL-1)
# =========================================================================


class InstanceStatus(str, Enum):
    """Request instance lifecycle states."""

    PENDING = "pending"
    ESCALATED = "escalated"
    DELEGATED = "delegated"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    BLOCKED = "blocked"


_OPEN = frozenset({
    InstanceStatus.PENDING,
    InstanceStatus.ESCALATED,
    InstanceStatus.DELEGATED,
    InstanceStatus.BLOCKED,
})

INSTANCE_TRANSITIONS: dict[InstanceStatus, frozenset[InstanceStatus]] = {
    InstanceStatus.PENDING: frozenset({
        InstanceStatus.ESCALATED,
        InstanceStatus.DELEGATED,
        InstanceStatus.APPROVED,
        InstanceStatus.REJECTED,
        InstanceStatus.CANCELLED,
        InstanceStatus.BLOCKED,
    }),
    InstanceStatus.ESCALATED: frozenset({
        InstanceStatus.PENDING,
        InstanceStatus.DELEGATED,
        InstanceStatus.APPROVED,
        InstanceStatus.REJECTED,
        InstanceStatus.CANCELLED,
        InstanceStatus.BLOCKED,
    }),
    InstanceStatus.DELEGATED: frozenset({
        InstanceStatus.PENDING,
        InstanceStatus.ESCALATED,
        InstanceStatus.APPROVED,
        InstanceStatus.REJECTED,
        InstanceStatus.CANCELLED,
        InstanceStatus.BLOCKED,
    }),
    InstanceStatus.BLOCKED: frozenset({
        InstanceStatus.PENDING,
        InstanceStatus.ESCALATED,
        InstanceStatus.REJECTED,
        InstanceStatus.CANCELLED,
    }),
    InstanceStatus.APPROVED: frozenset(),
    InstanceStatus.REJECTED: frozenset(),
    InstanceStatus.CANCELLED: frozenset(),
}

TERMINAL_INSTANCE_STATUSES: frozenset[InstanceStatus] = frozenset({
    InstanceStatus.APPROVED,
    InstanceStatus.REJECTED,
    InstanceStatus.CANCELLED,
})


class Priority(str, Enum):
    """Requester-assigned urgency carried as request metadata."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


# =========================================================================
# Step lifecycle (IL-2)
# =========================================================================


class StepStatus(str, Enum):
    """Per-step states.  Escalation is tracked by ``StepState.escalated``."""

    ACTIVATED = "activated"
    COMPLETED = "completed"
    STEP_REJECTED = "step_rejected"


STEP_TRANSITIONS: dict[StepStatus, frozenset[StepStatus]] = {
    StepStatus.ACTIVATED: frozenset({StepStatus.COMPLETED, StepStatus.STEP_REJECTED}),
    StepStatus.COMPLETED: frozenset(),
    StepStatus.STEP_REJECTED: frozenset(),
}


class ResolutionPurpose(str, Enum):
    """Why a step is waiting on the Directory."""

    INITIAL = "initial"
    ESCALATION = "escalation"


# =========================================================================
# Decisions (IL-3)
# =========================================================================


class DecisionAction(str, Enum):
    """Actions a principal can take on a step."""

    APPROVE = "approve"
    REJECT = "reject"
    DELEGATE = "delegate"
    COMMENT = "comment"


@dataclass(frozen=True)
class Decision:
    """One action by one principal on one step. Immutable."""

    principal: str
    action: DecisionAction
    timestamp: datetime
    comment: str | None = None
    delegate_to: str | None = None


# =========================================================================
# Step and instance state
# =========================================================================


@dataclass
class StepState:
    """Runtime state of an Approval, Condition or Notification node.

    ``required_approvers`` is the subset of ``resolved_approvers`` whose
    approval the decision policy counts as mandatory.
    """

    node_id: str
    status: StepStatus
    activated_at: datetime
    resolved_approvers: set[str] = field(default_factory=set)
    required_approvers: set[str] = field(default_factory=set)
    decisions: list[Decision] = field(default_factory=list)
    deadline: datetime | None = None
    escalated: bool = False
    blocked: bool = False
    pending_resolution: ResolutionPurpose | None = None
    resolution_attempts: int = 0
    next_resolution_at: datetime | None = None
    timer_handle: str | None = None
    completed_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.status is StepStatus.ACTIVATED

    def has_final_decision(self, principal: str) -> bool:
        """True if ``principal`` already approved, rejected or delegated."""
        return any(
            d.principal == principal and d.action is not DecisionAction.COMMENT
            for d in self.decisions
        )

    def transition(self, new_status: StepStatus) -> None:
        allowed = STEP_TRANSITIONS[self.status]
        if new_status not in allowed:
            raise ValueError(
                f"Illegal step transition {self.status.value} -> {new_status.value}"
            )
        self.status = new_status


@dataclass
class RequestInstance:
    """One in-flight execution of a definition against a submitted request."""

    id: UUID
    definition_id: str
    definition_version: int
    fields: dict[str, TypedValue]
    requester: str
    created_at: datetime
    status: InstanceStatus = InstanceStatus.PENDING
    current_node_ids: set[str] = field(default_factory=set)
    step_states: dict[str, StepState] = field(default_factory=dict)
    title: str = ""
    priority: Priority = Priority.MEDIUM
    blocked_reason: str | None = None
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_INSTANCE_STATUSES

    def can_transition(self, new_status: InstanceStatus) -> bool:
        if new_status is self.status:
            return self.status in _OPEN
        return new_status in INSTANCE_TRANSITIONS[self.status]

    def open_steps(self) -> list[StepState]:
        return [
            self.step_states[node_id]
            for node_id in sorted(self.current_node_ids)
            if node_id in self.step_states and self.step_states[node_id].is_open
        ]
