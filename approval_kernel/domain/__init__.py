"""
Pure domain layer.

This package contains the value types of the approval engine with NO
dependencies on:
- ORM (SQLAlchemy)
- Database
- Wall-clock time (except SystemClock)
- I/O

Definitions, decisions and audit entries are immutable.  Request
instances and step states are mutated only by the execution engine.
"""

from approval_kernel.domain.audit import AuditEntry, AuditKind
from approval_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from approval_kernel.domain.collaborators import (
    Directory,
    NotificationEvent,
    Notifier,
    Timer,
)
from approval_kernel.domain.graph import (
    ApprovalConfig,
    ApproverKind,
    ApproverRef,
    Condition,
    ConditionConfig,
    ConditionOperator,
    DecisionPolicy,
    DecisionPolicyKind,
    Edge,
    EndConfig,
    Escalation,
    FieldSpec,
    GraphIndex,
    Node,
    NodeType,
    NotificationConfig,
    StartConfig,
    WorkflowDefinition,
)
from approval_kernel.domain.instance import (
    TERMINAL_INSTANCE_STATUSES,
    Decision,
    DecisionAction,
    InstanceStatus,
    Priority,
    RequestInstance,
    ResolutionPurpose,
    StepState,
    StepStatus,
)
from approval_kernel.domain.values import TypedValue, ValueKind

__all__ = [
    "ApprovalConfig",
    "ApproverKind",
    "ApproverRef",
    "AuditEntry",
    "AuditKind",
    "Clock",
    "Condition",
    "ConditionConfig",
    "ConditionOperator",
    "Decision",
    "DecisionAction",
    "DecisionPolicy",
    "DecisionPolicyKind",
    "DeterministicClock",
    "Directory",
    "Edge",
    "EndConfig",
    "Escalation",
    "FieldSpec",
    "GraphIndex",
    "InstanceStatus",
    "Node",
    "NodeType",
    "NotificationConfig",
    "NotificationEvent",
    "Notifier",
    "Priority",
    "RequestInstance",
    "ResolutionPurpose",
    "StartConfig",
    "StepState",
    "StepStatus",
    "SystemClock",
    "TERMINAL_INSTANCE_STATUSES",
    "Timer",
    "TypedValue",
    "ValueKind",
    "WorkflowDefinition",
]
