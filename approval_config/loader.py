"""
Definition loader (``approval_config.loader``).

Responsibility
--------------
Loads workflow definitions from YAML files and parses them into the frozen
``approval_kernel.domain.graph`` dataclasses, and publishes the built-in
template gallery into a ``DefinitionStore``.

Architecture position
---------------------
**Config layer**.  Sits above ``approval_kernel`` and below
``approval_services``; the kernel never imports from here.  Structural
validation is not done here: ``DefinitionStore.publish`` validates every
parsed definition before it becomes visible.

YAML shape
----------
::

    id: expense_approval
    version: 1
    name: Expense approval
    fields:
      - {name: amount, kind: number}
    nodes:
      - {id: start, type: start}
      - id: manager_review
        type: approval
        approvers: [{kind: manager}]
        decision_policy: all_required       # or any_reject_blocks, {quorum: 2}
        timeout_seconds: 86400
        escalation:
          after_seconds: 43200
          escalate_to: [{kind: role, value: finance_director}]
      - {id: end, type: end}
    edges:
      - {id: e1, from: start, to: manager_review}
      - id: e2
        from: manager_review
        to: end
        when: [{field: amount, operator: greater_than, value: 1000}]

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with the offending key;
  there are no silent defaults for required keys.
* ``compute_checksum`` is deterministic for equal definitions.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Unknown enum values  -> ``ValueError``.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from approval_kernel.domain.graph import (
    ApprovalConfig,
    ApproverKind,
    ApproverRef,
    Condition,
    ConditionOperator,
    DecisionPolicy,
    DecisionPolicyKind,
    Edge,
    Escalation,
    FieldSpec,
    Node,
    NodeType,
    NotificationConfig,
    WorkflowDefinition,
)
from approval_kernel.domain.values import TypedValue, ValueKind
from approval_kernel.logging_config import get_logger
from approval_kernel.utils.hashing import hash_definition

if TYPE_CHECKING:
    from approval_services.definition_store import DefinitionStore

logger = get_logger("config.loader")

TEMPLATE_DIR = Path(__file__).parent / "templates"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_approver_ref(data: dict[str, Any] | str) -> ApproverRef:
    """Parse ``{kind, value?, required?}``; a bare string is a user id."""
    if isinstance(data, str):
        return ApproverRef(ApproverKind.USER, data)
    return ApproverRef(
        kind=ApproverKind(data["kind"]),
        value=str(data.get("value", "")),
        required=bool(data.get("required", True)),
    )


def parse_decision_policy(data: Any) -> DecisionPolicy:
    """Parse ``all_required``, ``any_reject_blocks`` or ``{quorum: n}``."""
    if data is None:
        return DecisionPolicy.all_required()
    if isinstance(data, str):
        return DecisionPolicy(DecisionPolicyKind(data))
    if isinstance(data, dict) and "quorum" in data:
        return DecisionPolicy.quorum(int(data["quorum"]))
    raise ValueError(f"Cannot parse decision policy from {data!r}")


def parse_escalation(data: dict[str, Any] | None) -> Escalation | None:
    if not data:
        return None
    return Escalation(
        after_seconds=int(data["after_seconds"]),
        escalate_to=tuple(parse_approver_ref(r) for r in data["escalate_to"]),
        notify_original_approvers=bool(data.get("notify_original_approvers", False)),
    )


def parse_typed_value(raw: Any) -> TypedValue:
    """YAML scalars map to kinds by type; ``{kind, value}`` is explicit."""
    if isinstance(raw, dict):
        return TypedValue(ValueKind(raw["kind"]), raw["value"])
    return TypedValue.infer(raw)


def parse_condition(data: dict[str, Any]) -> Condition:
    return Condition(
        field=data["field"],
        operator=ConditionOperator(data["operator"]),
        value=parse_typed_value(data["value"]),
    )


def parse_node(data: dict[str, Any]) -> Node:
    """
    Parse one node; the keys read depend on ``type``.

    Raises:
        KeyError: if ``id``/``type`` or a type-specific required key is missing.
        ValueError: if ``type`` or a nested enum value is unknown.
    """
    node_id = data["id"]
    node_type = NodeType(data["type"])
    name = data.get("name", "")

    if node_type is NodeType.START:
        return Node.start(node_id)
    if node_type is NodeType.END:
        return Node.end(node_id)
    if node_type is NodeType.CONDITION:
        return Node.condition(node_id, name)
    if node_type is NodeType.NOTIFICATION:
        return Node(node_id, node_type, NotificationConfig(data["template"]), name)

    timeout = data.get("timeout_seconds")
    config = ApprovalConfig(
        approvers=tuple(parse_approver_ref(r) for r in data.get("approvers", ())),
        decision_policy=parse_decision_policy(data.get("decision_policy")),
        timeout_seconds=int(timeout) if timeout is not None else None,
        escalation=parse_escalation(data.get("escalation")),
    )
    return Node.approval(node_id, config, name)


def parse_edge(data: dict[str, Any]) -> Edge:
    return Edge(
        id=data["id"],
        source=data["from"],
        target=data["to"],
        conditions=tuple(parse_condition(c) for c in data.get("when", ())),
    )


def parse_field_spec(data: dict[str, Any]) -> FieldSpec:
    return FieldSpec(
        name=data["name"],
        kind=ValueKind(data["kind"]),
        required=bool(data.get("required", True)),
    )


def parse_definition(data: dict[str, Any]) -> WorkflowDefinition:
    """
    Parse a full ``WorkflowDefinition`` from a dict.

    Raises:
        KeyError: if ``id``, ``version``, ``name``, ``nodes`` or ``edges``
            is missing.
    """
    return WorkflowDefinition(
        id=data["id"],
        version=int(data["version"]),
        name=data["name"],
        nodes=tuple(parse_node(n) for n in data["nodes"]),
        edges=tuple(parse_edge(e) for e in data["edges"]),
        fields=tuple(parse_field_spec(f) for f in data.get("fields", ())),
        description=data.get("description", ""),
        category=data.get("category", ""),
    )


def load_definition_file(path: Path) -> WorkflowDefinition:
    return parse_definition(load_yaml_file(path))


# =========================================================================
# Serialisation back to the YAML shape
# =========================================================================


def _ref_to_dict(ref: ApproverRef) -> dict[str, Any]:
    data: dict[str, Any] = {"kind": ref.kind.value}
    if ref.value:
        data["value"] = ref.value
    if not ref.required:
        data["required"] = False
    return data


def _policy_to_data(policy: DecisionPolicy) -> Any:
    if policy.kind is DecisionPolicyKind.QUORUM:
        return {"quorum": policy.threshold}
    return policy.kind.value


def definition_to_dict(definition: WorkflowDefinition) -> dict[str, Any]:
    """Inverse of ``parse_definition``; JSON- and YAML-compatible."""
    nodes: list[dict[str, Any]] = []
    for node in definition.nodes:
        item: dict[str, Any] = {"id": node.id, "type": node.type.value}
        if node.name:
            item["name"] = node.name
        config = node.config
        if isinstance(config, NotificationConfig):
            item["template"] = config.template
        elif isinstance(config, ApprovalConfig):
            item["approvers"] = [_ref_to_dict(r) for r in config.approvers]
            item["decision_policy"] = _policy_to_data(config.decision_policy)
            if config.timeout_seconds is not None:
                item["timeout_seconds"] = config.timeout_seconds
            if config.escalation is not None:
                item["escalation"] = {
                    "after_seconds": config.escalation.after_seconds,
                    "escalate_to": [_ref_to_dict(r) for r in config.escalation.escalate_to],
                    "notify_original_approvers": config.escalation.notify_original_approvers,
                }
        nodes.append(item)

    edges: list[dict[str, Any]] = []
    for edge in definition.edges:
        item = {"id": edge.id, "from": edge.source, "to": edge.target}
        if edge.conditions:
            item["when"] = [
                {"field": c.field, "operator": c.operator.value, "value": c.value.to_dict()}
                for c in edge.conditions
            ]
        edges.append(item)

    return {
        "id": definition.id,
        "version": definition.version,
        "name": definition.name,
        "category": definition.category,
        "description": definition.description,
        "fields": [
            {"name": f.name, "kind": f.kind.value, "required": f.required}
            for f in definition.fields
        ],
        "nodes": nodes,
        "edges": edges,
    }


def compute_checksum(definition: WorkflowDefinition) -> str:
    """Deterministic SHA-256 over the definition's canonical form."""
    return hash_definition(definition_to_dict(definition))


# =========================================================================
# Template gallery
# =========================================================================


def iter_definition_files(directory: Path) -> list[Path]:
    return sorted(
        p for p in directory.iterdir()
        if p.is_file() and p.suffix in (".yaml", ".yml")
    )


def load_definitions(directory: Path) -> list[WorkflowDefinition]:
    return [load_definition_file(p) for p in iter_definition_files(directory)]


def publish_directory(store: DefinitionStore, directory: Path) -> list[WorkflowDefinition]:
    """
    Parse and publish every YAML definition in ``directory``.

    Raises:
        DefinitionValidationError: if any definition fails validation.
        DefinitionVersionError: if a definition is already published at an
            equal or newer version.
    """
    published = []
    for path in iter_definition_files(directory):
        definition = load_definition_file(path)
        store.publish(definition)
        published.append(definition)
        logger.info(
            "definition_loaded",
            extra={
                "definition_id": definition.id,
                "version": definition.version,
                "source_file": path.name,
                "checksum": compute_checksum(definition),
            },
        )
    return published


def load_builtin_templates(store: DefinitionStore) -> list[WorkflowDefinition]:
    """Publish the bundled template gallery."""
    return publish_directory(store, TEMPLATE_DIR)

