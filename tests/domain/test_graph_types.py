"""
Tests for the workflow graph value objects and the instance lifecycle
tables.

Node configs are a closed variant keyed by node type; decision policies
carry a threshold exactly when they are quorums; terminal instance
statuses have no way out.
"""

import pytest

from approval_kernel.domain.graph import (
    ApprovalConfig,
    ApproverKind,
    ApproverRef,
    DecisionPolicy,
    DecisionPolicyKind,
    Edge,
    GraphIndex,
    Node,
    NodeType,
    NotificationConfig,
    WorkflowDefinition,
)
from approval_kernel.domain.instance import (
    INSTANCE_TRANSITIONS,
    TERMINAL_INSTANCE_STATUSES,
    InstanceStatus,
    StepState,
    StepStatus,
)


class TestNodeConfigVariant:
    """Config type must match node type."""

    def test_factories_build_matching_configs(self):
        approval = Node.approval(
            "review", ApprovalConfig(approvers=(ApproverRef(ApproverKind.USER, "bob"),))
        )
        assert approval.type is NodeType.APPROVAL
        assert Node.notification("tell", "done").config == NotificationConfig("done")

    def test_mismatched_config_rejected(self):
        with pytest.raises(ValueError, match="requires ApprovalConfig"):
            Node("review", NodeType.APPROVAL, NotificationConfig("x"))

    def test_nodes_are_frozen(self):
        node = Node.start()
        with pytest.raises(AttributeError):
            node.id = "other"


class TestDecisionPolicy:

    def test_quorum_requires_threshold(self):
        with pytest.raises(ValueError):
            DecisionPolicy(DecisionPolicyKind.QUORUM)

    def test_non_quorum_rejects_threshold(self):
        with pytest.raises(ValueError):
            DecisionPolicy(DecisionPolicyKind.ALL_REQUIRED, 2)

    def test_str(self):
        assert str(DecisionPolicy.quorum(2)) == "quorum(2)"
        assert str(DecisionPolicy.any_reject_blocks()) == "any_reject_blocks"

    def test_default_is_all_required(self):
        config = ApprovalConfig(approvers=(ApproverRef(ApproverKind.MANAGER),))
        assert config.decision_policy.kind is DecisionPolicyKind.ALL_REQUIRED


class TestGraphIndex:
    """Id-keyed arena; edge lists keep declaration order."""

    @pytest.fixture
    def index(self):
        definition = WorkflowDefinition(
            id="branchy",
            version=1,
            name="Branchy",
            nodes=(Node.start(), Node.condition("check"), Node.end("a"), Node.end("b")),
            edges=(
                Edge("e0", "start", "check"),
                Edge("e2", "check", "b"),
                Edge("e1", "check", "a"),
            ),
        )
        return GraphIndex(definition)

    def test_outgoing_preserves_order(self, index):
        assert [e.id for e in index.outgoing("check")] == ["e2", "e1"]

    def test_incoming(self, index):
        assert [e.id for e in index.incoming("a")] == ["e1"]

    def test_start(self, index):
        assert index.start.id == "start"

    def test_nodes_of_type(self, index):
        assert {n.id for n in index.nodes_of_type(NodeType.END)} == {"a", "b"}

    def test_unknown_node(self, index):
        assert not index.has_node("missing")
        assert index.outgoing("missing") == ()


class TestLifecycleTables:
    """Terminal statuses are final; step states never return to activated."""

    def test_terminal_statuses_have_no_transitions(self):
        for status in TERMINAL_INSTANCE_STATUSES:
            assert INSTANCE_TRANSITIONS[status] == frozenset()

    def test_blocked_cannot_jump_to_approved(self):
        assert InstanceStatus.APPROVED not in INSTANCE_TRANSITIONS[InstanceStatus.BLOCKED]

    def test_step_transition_out_of_activated(self, deterministic_clock):
        step = StepState("review", StepStatus.ACTIVATED, deterministic_clock.now())
        step.transition(StepStatus.COMPLETED)
        assert not step.is_open
        with pytest.raises(ValueError):
            step.transition(StepStatus.STEP_REJECTED)
