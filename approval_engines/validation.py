"""
approval_engines.validation -- Structural validation of workflow definitions.

Responsibility:
    Check a ``WorkflowDefinition`` before it is published.  Returns every
    problem found (not only the first) so an author can fix them in one
    pass.  ``DefinitionStore.publish`` refuses definitions with errors.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain types.

Invariants enforced (a definition is accepted iff all hold):
    - Node and edge ids are unique.
    - Exactly one Start node; at least one End node.
    - Every edge references existing nodes.
    - Start has no incoming edges; End nodes have no outgoing edges.
    - At most one outgoing edge per node is unconditional.
    - The graph is acyclic.
    - Every node is reachable from Start and every node reaches an End.
    - Approval nodes have at least one approver reference; role, user and
      department references name their target.
    - ``Quorum(n)`` satisfies ``1 <= n <= count(required approver refs)``.
    - Timeouts and escalation delays are positive; escalation requires a
      timeout and at least one target.
    - Notification templates are non-empty.
    - Condition operators fit the condition value's kind, and conditions on
      declared fields use the declared kind.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass

from approval_engines.tracer import traced_engine
from approval_kernel.domain.graph import (
    ApprovalConfig,
    ApproverKind,
    ApproverRef,
    Condition,
    ConditionOperator,
    DecisionPolicyKind,
    NodeType,
    NotificationConfig,
    WorkflowDefinition,
)
from approval_kernel.domain.values import ORDERED_KINDS, ValueKind


@dataclass(frozen=True)
class ValidationIssue:
    """One structural problem found in a definition."""

    code: str
    message: str
    node_id: str | None = None
    edge_id: str | None = None

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of ``validate_definition``."""

    errors: tuple[ValidationIssue, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def codes(self) -> set[str]:
        return {e.code for e in self.errors}


# =========================================================================
# Graph helpers
# =========================================================================


def _adjacency(
    node_ids: set[str], definition: WorkflowDefinition
) -> tuple[dict[str, list[str]], dict[str, list[str]]]:
    forward: dict[str, list[str]] = {n: [] for n in node_ids}
    backward: dict[str, list[str]] = {n: [] for n in node_ids}
    for edge in definition.edges:
        if edge.source in node_ids and edge.target in node_ids:
            forward[edge.source].append(edge.target)
            backward[edge.target].append(edge.source)
    return forward, backward


def _reachable(roots: list[str], adjacency: dict[str, list[str]]) -> set[str]:
    seen = set(roots)
    queue = deque(roots)
    while queue:
        current = queue.popleft()
        for nxt in adjacency[current]:
            if nxt not in seen:
                seen.add(nxt)
                queue.append(nxt)
    return seen


def _cycle_nodes(forward: dict[str, list[str]]) -> set[str]:
    """Nodes left over after Kahn's topological sort (empty iff acyclic)."""
    indegree = {n: 0 for n in forward}
    for targets in forward.values():
        for t in targets:
            indegree[t] += 1
    queue = deque(n for n, d in indegree.items() if d == 0)
    removed: set[str] = set()
    while queue:
        current = queue.popleft()
        removed.add(current)
        for t in forward[current]:
            indegree[t] -= 1
            if indegree[t] == 0:
                queue.append(t)
    return set(forward) - removed


# =========================================================================
# Per-node checks
# =========================================================================


def _check_ref(ref: ApproverRef, node_id: str, where: str) -> list[ValidationIssue]:
    if ref.kind is not ApproverKind.MANAGER and not ref.value:
        return [ValidationIssue(
            "APPROVER_REF_EMPTY",
            f"{where} {ref.kind.value} reference on node {node_id!r} has no value",
            node_id=node_id,
        )]
    return []


def _check_approval(node_id: str, config: ApprovalConfig) -> list[ValidationIssue]:
    errors: list[ValidationIssue] = []
    if not config.approvers:
        errors.append(ValidationIssue(
            "APPROVAL_NO_APPROVERS",
            f"Approval node {node_id!r} has no approvers",
            node_id=node_id,
        ))
    for ref in config.approvers:
        errors.extend(_check_ref(ref, node_id, "Approver"))

    policy = config.decision_policy
    if policy.kind is DecisionPolicyKind.QUORUM:
        required = sum(1 for ref in config.approvers if ref.required)
        if policy.threshold is None or not 1 <= policy.threshold <= required:
            errors.append(ValidationIssue(
                "QUORUM_OUT_OF_RANGE",
                f"Quorum({policy.threshold}) on node {node_id!r} must be between "
                f"1 and the number of required approver references ({required})",
                node_id=node_id,
            ))

    if config.timeout_seconds is not None and config.timeout_seconds <= 0:
        errors.append(ValidationIssue(
            "TIMEOUT_NOT_POSITIVE",
            f"Approval node {node_id!r} timeout must be positive",
            node_id=node_id,
        ))

    escalation = config.escalation
    if escalation is not None:
        if config.timeout_seconds is None:
            errors.append(ValidationIssue(
                "ESCALATION_WITHOUT_TIMEOUT",
                f"Approval node {node_id!r} has escalation but no timeout",
                node_id=node_id,
            ))
        if escalation.after_seconds <= 0:
            errors.append(ValidationIssue(
                "ESCALATION_DELAY_NOT_POSITIVE",
                f"Escalation on node {node_id!r} must wait a positive number of seconds",
                node_id=node_id,
            ))
        if not escalation.escalate_to:
            errors.append(ValidationIssue(
                "ESCALATION_NO_TARGETS",
                f"Escalation on node {node_id!r} has no targets",
                node_id=node_id,
            ))
        for ref in escalation.escalate_to:
            errors.extend(_check_ref(ref, node_id, "Escalation"))
    return errors


def _check_condition(
    condition: Condition,
    edge_id: str,
    declared: dict[str, ValueKind],
) -> list[ValidationIssue]:
    errors: list[ValidationIssue] = []
    kind = condition.value.kind
    if condition.operator in (ConditionOperator.GREATER_THAN, ConditionOperator.LESS_THAN):
        if kind not in ORDERED_KINDS:
            errors.append(ValidationIssue(
                "CONDITION_OPERATOR_KIND",
                f"Operator {condition.operator.value} on edge {edge_id!r} needs a "
                f"number or date value, got {kind.value}",
                edge_id=edge_id,
            ))
    elif condition.operator is ConditionOperator.CONTAINS and kind is not ValueKind.STRING:
        errors.append(ValidationIssue(
            "CONDITION_OPERATOR_KIND",
            f"Operator contains on edge {edge_id!r} needs a string value, got {kind.value}",
            edge_id=edge_id,
        ))
    expected = declared.get(condition.field)
    if expected is not None and expected is not kind:
        errors.append(ValidationIssue(
            "CONDITION_FIELD_KIND",
            f"Condition on edge {edge_id!r} compares field {condition.field!r} "
            f"({expected.value}) with a {kind.value} value",
            edge_id=edge_id,
        ))
    return errors


# =========================================================================
# Entry point
# =========================================================================


@traced_engine("definition_validation", "1.0", fingerprint_fields=("definition",))
def validate_definition(definition: WorkflowDefinition) -> ValidationResult:
    """Collect every structural error in ``definition``."""
    errors: list[ValidationIssue] = []

    # Identity
    node_ids: set[str] = set()
    for node in definition.nodes:
        if node.id in node_ids:
            errors.append(ValidationIssue(
                "DUPLICATE_NODE_ID", f"Duplicate node id {node.id!r}", node_id=node.id
            ))
        node_ids.add(node.id)
    edge_ids: set[str] = set()
    for edge in definition.edges:
        if edge.id in edge_ids:
            errors.append(ValidationIssue(
                "DUPLICATE_EDGE_ID", f"Duplicate edge id {edge.id!r}", edge_id=edge.id
            ))
        edge_ids.add(edge.id)

    types = {node.id: node.type for node in definition.nodes}
    starts = [n.id for n in definition.nodes if n.type is NodeType.START]
    ends = [n.id for n in definition.nodes if n.type is NodeType.END]
    if len(starts) != 1:
        errors.append(ValidationIssue(
            "START_COUNT", f"Definition must have exactly one start node, found {len(starts)}"
        ))
    if not ends:
        errors.append(ValidationIssue("NO_END", "Definition has no end node"))

    # Edge endpoints and per-node edge rules
    unconditional: dict[str, int] = {}
    declared = {f.name: f.kind for f in definition.fields}
    for edge in definition.edges:
        for endpoint, label in ((edge.source, "source"), (edge.target, "target")):
            if endpoint not in node_ids:
                errors.append(ValidationIssue(
                    "EDGE_UNKNOWN_NODE",
                    f"Edge {edge.id!r} {label} {endpoint!r} does not exist",
                    edge_id=edge.id,
                ))
        if types.get(edge.target) is NodeType.START:
            errors.append(ValidationIssue(
                "START_HAS_INCOMING",
                f"Edge {edge.id!r} enters the start node",
                edge_id=edge.id,
            ))
        if types.get(edge.source) is NodeType.END:
            errors.append(ValidationIssue(
                "END_HAS_OUTGOING",
                f"Edge {edge.id!r} leaves end node {edge.source!r}",
                edge_id=edge.id,
            ))
        if edge.is_unconditional:
            unconditional[edge.source] = unconditional.get(edge.source, 0) + 1
        for condition in edge.conditions:
            errors.extend(_check_condition(condition, edge.id, declared))

    for source, count in sorted(unconditional.items()):
        if count > 1:
            errors.append(ValidationIssue(
                "MULTIPLE_UNCONDITIONAL_EDGES",
                f"Node {source!r} has {count} unconditional outgoing edges",
                node_id=source,
            ))

    # Graph shape
    forward, backward = _adjacency(node_ids, definition)
    cyclic = _cycle_nodes(forward)
    if cyclic:
        errors.append(ValidationIssue(
            "CYCLE",
            f"Definition contains a cycle through {sorted(cyclic)}",
        ))
    if len(starts) == 1:
        from_start = _reachable(starts, forward)
        for node_id in sorted(node_ids - from_start):
            errors.append(ValidationIssue(
                "UNREACHABLE_NODE",
                f"Node {node_id!r} is not reachable from start",
                node_id=node_id,
            ))
    if ends:
        to_end = _reachable(ends, backward)
        for node_id in sorted(node_ids - to_end):
            errors.append(ValidationIssue(
                "NO_PATH_TO_END",
                f"Node {node_id!r} cannot reach an end node",
                node_id=node_id,
            ))

    # Node configuration
    for node in definition.nodes:
        if isinstance(node.config, ApprovalConfig):
            errors.extend(_check_approval(node.id, node.config))
        elif isinstance(node.config, NotificationConfig) and not node.config.template:
            errors.append(ValidationIssue(
                "NOTIFICATION_NO_TEMPLATE",
                f"Notification node {node.id!r} has an empty template",
                node_id=node.id,
            ))

    return ValidationResult(errors=tuple(errors))
