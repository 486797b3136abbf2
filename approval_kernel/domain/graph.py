"""
Workflow graph types (``approval_kernel.domain.graph``).

Responsibility
--------------
Pure value objects describing a published workflow definition: nodes with
a closed, type-keyed configuration variant, edges carrying optional branch
conditions, approver references, escalation and decision policies.  Also
provides ``GraphIndex``, the id-keyed arena used for traversal.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, or outer layers.  May import only from
``domain/values``.

Invariants enforced
-------------------
* Node config variant matches node type (checked at construction).
* A ``DecisionPolicy`` of kind QUORUM always carries a threshold.
* Definitions are frozen; a new edit is a new ``version``.
* Graph traversal goes through ``GraphIndex`` (id -> node, id -> edges);
  nodes never hold references to each other.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from approval_kernel.domain.values import TypedValue, ValueKind


# =========================================================================
# Enumerations
# =========================================================================


class NodeType(str, Enum):
    """Kinds of nodes in a workflow graph."""

    START = "start"
    APPROVAL = "approval"
    CONDITION = "condition"
    NOTIFICATION = "notification"
    END = "end"


class ApproverKind(str, Enum):
    """How an approver reference is resolved to principals."""

    ROLE = "role"
    USER = "user"
    MANAGER = "manager"
    DEPARTMENT = "department"


class DecisionPolicyKind(str, Enum):
    """Completion rule for an approval step."""

    ALL_REQUIRED = "all_required"
    QUORUM = "quorum"
    ANY_REJECT_BLOCKS = "any_reject_blocks"


class ConditionOperator(str, Enum):
    """Comparison operators available on edge conditions."""

    EQUALS = "equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    CONTAINS = "contains"


# =========================================================================
# Approval configuration
# =========================================================================


@dataclass(frozen=True)
class ApproverRef:
    """Abstract reference to whoever must act on a step.

    ``value`` names the role, user, or department.  For MANAGER references
    the value is informational; the requester's reporting line is used.
    """

    kind: ApproverKind
    value: str = ""
    required: bool = True


@dataclass(frozen=True)
class DecisionPolicy:
    """Decision policy: AllRequired, Quorum(n) or AnyRejectBlocks."""

    kind: DecisionPolicyKind
    threshold: int | None = None

    def __post_init__(self) -> None:
        if self.kind is DecisionPolicyKind.QUORUM and self.threshold is None:
            raise ValueError("Quorum policy requires a threshold")
        if self.kind is not DecisionPolicyKind.QUORUM and self.threshold is not None:
            raise ValueError(f"{self.kind.value} policy takes no threshold")

    @classmethod
    def all_required(cls) -> DecisionPolicy:
        return cls(DecisionPolicyKind.ALL_REQUIRED)

    @classmethod
    def quorum(cls, n: int) -> DecisionPolicy:
        return cls(DecisionPolicyKind.QUORUM, n)

    @classmethod
    def any_reject_blocks(cls) -> DecisionPolicy:
        return cls(DecisionPolicyKind.ANY_REJECT_BLOCKS)

    def __str__(self) -> str:
        if self.kind is DecisionPolicyKind.QUORUM:
            return f"quorum({self.threshold})"
        return self.kind.value


@dataclass(frozen=True)
class Escalation:
    """Single escalation stage applied when a step's deadline passes."""

    after_seconds: int
    escalate_to: tuple[ApproverRef, ...]
    notify_original_approvers: bool = False


# =========================================================================
# Node configuration variants (closed sum type keyed by NodeType)
# =========================================================================


@dataclass(frozen=True)
class StartConfig:
    pass


@dataclass(frozen=True)
class EndConfig:
    pass


@dataclass(frozen=True)
class ConditionConfig:
    """Condition nodes branch through their outgoing edges; no config."""


@dataclass(frozen=True)
class ApprovalConfig:
    approvers: tuple[ApproverRef, ...]
    decision_policy: DecisionPolicy = field(default_factory=DecisionPolicy.all_required)
    timeout_seconds: int | None = None
    escalation: Escalation | None = None


@dataclass(frozen=True)
class NotificationConfig:
    """``template`` is opaque to the engine and forwarded to the Notifier."""

    template: str


NodeConfig = Union[StartConfig, EndConfig, ConditionConfig, ApprovalConfig, NotificationConfig]

_CONFIG_TYPES: dict[NodeType, type] = {
    NodeType.START: StartConfig,
    NodeType.END: EndConfig,
    NodeType.CONDITION: ConditionConfig,
    NodeType.APPROVAL: ApprovalConfig,
    NodeType.NOTIFICATION: NotificationConfig,
}


@dataclass(frozen=True)
class Node:
    """A node in the workflow graph.

    Contract: frozen; ``config`` is the variant registered for ``type``.
    """

    id: str
    type: NodeType
    config: NodeConfig
    name: str = ""

    def __post_init__(self) -> None:
        expected = _CONFIG_TYPES[self.type]
        if not isinstance(self.config, expected):
            raise ValueError(
                f"Node {self.id!r} of type {self.type.value} requires "
                f"{expected.__name__}, got {type(self.config).__name__}"
            )

    @classmethod
    def start(cls, node_id: str = "start") -> Node:
        return cls(node_id, NodeType.START, StartConfig())

    @classmethod
    def end(cls, node_id: str = "end") -> Node:
        return cls(node_id, NodeType.END, EndConfig())

    @classmethod
    def condition(cls, node_id: str, name: str = "") -> Node:
        return cls(node_id, NodeType.CONDITION, ConditionConfig(), name)

    @classmethod
    def approval(cls, node_id: str, config: ApprovalConfig, name: str = "") -> Node:
        return cls(node_id, NodeType.APPROVAL, config, name)

    @classmethod
    def notification(cls, node_id: str, template: str, name: str = "") -> Node:
        return cls(node_id, NodeType.NOTIFICATION, NotificationConfig(template), name)


# =========================================================================
# Edges and conditions
# =========================================================================


@dataclass(frozen=True)
class Condition:
    """Predicate over one request field."""

    field: str
    operator: ConditionOperator
    value: TypedValue


@dataclass(frozen=True)
class Edge:
    """Directed edge.  An empty ``conditions`` tuple marks the default branch.

    Multiple conditions on one edge are ANDed.
    """

    id: str
    source: str
    target: str
    conditions: tuple[Condition, ...] = ()

    @property
    def is_unconditional(self) -> bool:
        return not self.conditions


# =========================================================================
# Definition
# =========================================================================


@dataclass(frozen=True)
class FieldSpec:
    """A form field a request for this workflow is expected to carry."""

    name: str
    kind: ValueKind
    required: bool = True


@dataclass(frozen=True)
class WorkflowDefinition:
    """An immutable, versioned workflow graph.

    Contract: frozen; structural validity is checked by
    ``approval_engines.validation`` before the definition is published.
    """

    id: str
    version: int
    name: str
    nodes: tuple[Node, ...]
    edges: tuple[Edge, ...]
    fields: tuple[FieldSpec, ...] = ()
    description: str = ""
    category: str = ""

    @property
    def key(self) -> tuple[str, int]:
        return (self.id, self.version)


class GraphIndex:
    """Id-keyed arena over a definition's nodes and edges.

    Edge lists preserve declaration order.
    """

    def __init__(self, definition: WorkflowDefinition) -> None:
        self.definition = definition
        self._nodes: dict[str, Node] = {n.id: n for n in definition.nodes}
        self._outgoing: dict[str, list[Edge]] = {n.id: [] for n in definition.nodes}
        self._incoming: dict[str, list[Edge]] = {n.id: [] for n in definition.nodes}
        for edge in definition.edges:
            self._outgoing.setdefault(edge.source, []).append(edge)
            self._incoming.setdefault(edge.target, []).append(edge)

    def node(self, node_id: str) -> Node:
        return self._nodes[node_id]

    def has_node(self, node_id: str) -> bool:
        return node_id in self._nodes

    def outgoing(self, node_id: str) -> tuple[Edge, ...]:
        return tuple(self._outgoing.get(node_id, ()))

    def incoming(self, node_id: str) -> tuple[Edge, ...]:
        return tuple(self._incoming.get(node_id, ()))

    def node_ids(self) -> tuple[str, ...]:
        return tuple(self._nodes)

    def nodes_of_type(self, node_type: NodeType) -> tuple[Node, ...]:
        return tuple(n for n in self._nodes.values() if n.type is node_type)

    @property
    def start(self) -> Node:
        starts = self.nodes_of_type(NodeType.START)
        if len(starts) != 1:
            raise ValueError(
                f"Definition {self.definition.id!r} has {len(starts)} start nodes"
            )
        return starts[0]
