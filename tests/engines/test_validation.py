"""
Tests for structural validation of workflow definitions.

A definition is accepted iff it is an acyclic, single-Start graph in which
every node is reachable from Start and reaches an End, and every node's
configuration is well-formed.  All problems are reported at once.
"""

import pytest

from approval_engines.validation import ValidationIssue, validate_definition
from approval_kernel.domain.graph import (
    ApprovalConfig,
    ApproverKind,
    ApproverRef,
    Condition,
    ConditionOperator,
    DecisionPolicy,
    Edge,
    Escalation,
    FieldSpec,
    Node,
    WorkflowDefinition,
)
from approval_kernel.domain.values import TypedValue, ValueKind

BOB = ApproverRef(ApproverKind.USER, "bob")


def make_definition(nodes, edges, fields=()) -> WorkflowDefinition:
    return WorkflowDefinition(
        id="candidate", version=1, name="Candidate",
        nodes=tuple(nodes), edges=tuple(edges), fields=tuple(fields),
    )


def approval(node_id: str = "review", **config) -> Node:
    config.setdefault("approvers", (BOB,))
    return Node.approval(node_id, ApprovalConfig(**config))


def gt(field: str, value) -> tuple[Condition, ...]:
    return (Condition(field, ConditionOperator.GREATER_THAN, TypedValue.infer(value)),)


def linear(**config) -> WorkflowDefinition:
    return make_definition(
        [Node.start(), approval(**config), Node.end()],
        [Edge("e1", "start", "review"), Edge("e2", "review", "end")],
    )


class TestAcceptance:
    """Well-formed graphs are accepted."""

    def test_linear_definition_valid(self):
        result = validate_definition(linear())
        assert result.is_valid
        assert result.errors == ()

    def test_branching_with_default_edge_valid(self):
        definition = make_definition(
            [Node.start(), Node.condition("check"), approval(), Node.end()],
            [
                Edge("e1", "start", "check"),
                Edge("e2", "check", "review", gt("amount", 1000)),
                Edge("e3", "check", "end"),
                Edge("e4", "review", "end"),
            ],
            fields=[FieldSpec("amount", ValueKind.NUMBER)],
        )
        assert validate_definition(definition).is_valid

    def test_diamond_is_acyclic(self):
        definition = make_definition(
            [Node.start(), Node.condition("split"), approval("a"), approval("b"), Node.end()],
            [
                Edge("e1", "start", "split"),
                Edge("e2", "split", "a", gt("amount", 10)),
                Edge("e3", "split", "b"),
                Edge("e4", "a", "end"),
                Edge("e5", "b", "end"),
            ],
        )
        assert validate_definition(definition).is_valid

    def test_quorum_at_required_count_valid(self):
        refs = (BOB, ApproverRef(ApproverKind.USER, "carol"))
        assert validate_definition(
            linear(approvers=refs, decision_policy=DecisionPolicy.quorum(2))
        ).is_valid


class TestGraphShape:
    """Start/End counts, edge endpoints, cycles, reachability."""

    def test_no_start(self):
        definition = make_definition([approval(), Node.end()], [Edge("e2", "review", "end")])
        assert "START_COUNT" in validate_definition(definition).codes()

    def test_two_starts(self):
        definition = make_definition(
            [Node.start("s1"), Node.start("s2"), Node.end()],
            [Edge("e1", "s1", "end"), Edge("e2", "s2", "end")],
        )
        assert "START_COUNT" in validate_definition(definition).codes()

    def test_no_end(self):
        definition = make_definition([Node.start(), approval()], [Edge("e1", "start", "review")])
        assert "NO_END" in validate_definition(definition).codes()

    def test_edge_to_unknown_node(self):
        definition = make_definition(
            [Node.start(), Node.end()],
            [Edge("e1", "start", "end"), Edge("e2", "start", "ghost", gt("amount", 1))],
        )
        assert "EDGE_UNKNOWN_NODE" in validate_definition(definition).codes()

    def test_cycle_detected(self):
        definition = make_definition(
            [Node.start(), approval("a"), approval("b"), Node.end()],
            [
                Edge("e1", "start", "a"),
                Edge("e2", "a", "b"),
                Edge("e3", "b", "a", gt("amount", 1)),
                Edge("e4", "b", "end"),
            ],
        )
        assert "CYCLE" in validate_definition(definition).codes()

    def test_unreachable_node(self):
        definition = make_definition(
            [Node.start(), approval("orphan"), Node.end()],
            [Edge("e1", "start", "end"), Edge("e2", "orphan", "end")],
        )
        issues = [e for e in validate_definition(definition).errors if e.code == "UNREACHABLE_NODE"]
        assert [i.node_id for i in issues] == ["orphan"]

    def test_dead_end_node(self):
        definition = make_definition(
            [Node.start(), Node.condition("check"), approval("stuck"), Node.end()],
            [
                Edge("e1", "start", "check"),
                Edge("e2", "check", "stuck", gt("amount", 1)),
                Edge("e3", "check", "end"),
            ],
        )
        issues = [e for e in validate_definition(definition).errors if e.code == "NO_PATH_TO_END"]
        assert [i.node_id for i in issues] == ["stuck"]

    def test_start_with_incoming_edge(self):
        definition = make_definition(
            [Node.start(), Node.condition("check"), Node.end()],
            [
                Edge("e1", "start", "check"),
                Edge("e2", "check", "start", gt("amount", 1)),
                Edge("e3", "check", "end"),
            ],
        )
        assert "START_HAS_INCOMING" in validate_definition(definition).codes()

    def test_end_with_outgoing_edge(self):
        definition = make_definition(
            [Node.start(), Node.end("done"), Node.end("after")],
            [Edge("e1", "start", "done"), Edge("e2", "done", "after")],
        )
        assert "END_HAS_OUTGOING" in validate_definition(definition).codes()

    def test_two_unconditional_edges(self):
        definition = make_definition(
            [Node.start(), Node.end("a"), Node.end("b")],
            [Edge("e1", "start", "a"), Edge("e2", "start", "b")],
        )
        assert "MULTIPLE_UNCONDITIONAL_EDGES" in validate_definition(definition).codes()

    def test_duplicate_ids(self):
        definition = make_definition(
            [Node.start(), Node.end(), Node.end()],
            [Edge("e1", "start", "end"), Edge("e1", "start", "end", gt("amount", 1))],
        )
        codes = validate_definition(definition).codes()
        assert {"DUPLICATE_NODE_ID", "DUPLICATE_EDGE_ID"} <= codes


class TestApprovalConfig:

    def test_no_approvers(self):
        assert "APPROVAL_NO_APPROVERS" in validate_definition(linear(approvers=())).codes()

    def test_role_without_value(self):
        codes = validate_definition(linear(approvers=(ApproverRef(ApproverKind.ROLE),))).codes()
        assert "APPROVER_REF_EMPTY" in codes

    def test_manager_without_value_ok(self):
        assert validate_definition(linear(approvers=(ApproverRef(ApproverKind.MANAGER),))).is_valid

    @pytest.mark.parametrize("threshold", [0, 3])
    def test_quorum_out_of_range(self, threshold):
        refs = (BOB, ApproverRef(ApproverKind.USER, "carol"))
        result = validate_definition(
            linear(approvers=refs, decision_policy=DecisionPolicy.quorum(threshold))
        )
        assert "QUORUM_OUT_OF_RANGE" in result.codes()

    def test_quorum_counts_only_required_refs(self):
        refs = (BOB, ApproverRef(ApproverKind.USER, "carol", required=False))
        result = validate_definition(
            linear(approvers=refs, decision_policy=DecisionPolicy.quorum(2))
        )
        assert "QUORUM_OUT_OF_RANGE" in result.codes()

    def test_escalation_needs_timeout(self):
        escalation = Escalation(60, (ApproverRef(ApproverKind.ROLE, "finance_director"),))
        assert "ESCALATION_WITHOUT_TIMEOUT" in validate_definition(
            linear(escalation=escalation)
        ).codes()

    def test_escalation_needs_targets(self):
        result = validate_definition(
            linear(timeout_seconds=60, escalation=Escalation(60, ()))
        )
        assert "ESCALATION_NO_TARGETS" in result.codes()

    def test_non_positive_timeout(self):
        assert "TIMEOUT_NOT_POSITIVE" in validate_definition(linear(timeout_seconds=0)).codes()

    def test_empty_notification_template(self):
        definition = make_definition(
            [Node.start(), Node.notification("tell", ""), Node.end()],
            [Edge("e1", "start", "tell"), Edge("e2", "tell", "end")],
        )
        assert "NOTIFICATION_NO_TEMPLATE" in validate_definition(definition).codes()


class TestConditionKinds:

    def test_ordering_on_string_rejected(self):
        definition = make_definition(
            [Node.start(), Node.end("a"), Node.end("b")],
            [Edge("e1", "start", "a", gt("region", "emea")), Edge("e2", "start", "b")],
        )
        assert "CONDITION_OPERATOR_KIND" in validate_definition(definition).codes()

    def test_contains_on_number_rejected(self):
        condition = Condition("amount", ConditionOperator.CONTAINS, TypedValue.number(5))
        definition = make_definition(
            [Node.start(), Node.end("a"), Node.end("b")],
            [Edge("e1", "start", "a", (condition,)), Edge("e2", "start", "b")],
        )
        assert "CONDITION_OPERATOR_KIND" in validate_definition(definition).codes()

    def test_condition_kind_must_match_declared_field(self):
        condition = Condition("amount", ConditionOperator.EQUALS, TypedValue.string("big"))
        definition = make_definition(
            [Node.start(), Node.end("a"), Node.end("b")],
            [Edge("e1", "start", "a", (condition,)), Edge("e2", "start", "b")],
            fields=[FieldSpec("amount", ValueKind.NUMBER)],
        )
        assert "CONDITION_FIELD_KIND" in validate_definition(definition).codes()


class TestReporting:

    def test_all_errors_reported_at_once(self):
        definition = make_definition(
            [Node.start(), approval(approvers=()), Node.end("a"), Node.end("b")],
            [
                Edge("e1", "start", "review"),
                Edge("e2", "review", "a"),
                Edge("e3", "review", "b"),
            ],
        )
        codes = validate_definition(definition).codes()
        assert {"APPROVAL_NO_APPROVERS", "MULTIPLE_UNCONDITIONAL_EDGES"} <= codes

    def test_issue_str_includes_code(self):
        issue = ValidationIssue("CYCLE", "loop")
        assert str(issue) == "[CYCLE] loop"
