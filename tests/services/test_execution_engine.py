"""
Tests for the ExecutionEngine state machine.

Covers submission and field checks, decision application under each
decision policy, the order in which invalid decisions are refused,
cancellation, reassignment, notification delivery and the shape of the
resulting audit trail.
"""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from approval_config.loader import load_builtin_templates
from approval_kernel.domain.audit import AuditKind
from approval_kernel.domain.collaborators import NotificationEvent
from approval_kernel.domain.graph import (
    ApprovalConfig,
    ApproverKind,
    ApproverRef,
    Condition,
    ConditionOperator,
    DecisionPolicy,
    Edge,
    FieldSpec,
    Node,
    WorkflowDefinition,
)
from approval_kernel.domain.instance import InstanceStatus, Priority, ResolutionPurpose, StepStatus
from approval_kernel.domain.values import TypedValue, ValueKind
from approval_kernel.exceptions import (
    DefinitionNotFoundError,
    DuplicateDecisionError,
    EmptyApproverSetError,
    EngineInvariantError,
    FieldKindMismatchError,
    InstanceNotFoundError,
    InstanceTerminalError,
    MissingFieldError,
    StepNotActiveError,
    UnauthorizedPrincipalError,
)


def kinds(engine, instance_id) -> list[AuditKind]:
    return [e.kind for e in engine.get_audit_trail(instance_id)]


def user(name: str, required: bool = True) -> ApproverRef:
    return ApproverRef(ApproverKind.USER, name, required)


def role(name: str) -> ApproverRef:
    return ApproverRef(ApproverKind.ROLE, name)


@pytest.fixture
def single(publish, linear_definition):
    return publish(linear_definition())


class TestSubmit:

    def test_submit_activates_first_step(self, engine, single):
        instance_id = engine.submit("single_review", {"amount": 100}, "alice")
        instance = engine.get_instance(instance_id)

        assert instance.status is InstanceStatus.PENDING
        assert instance.current_node_ids == {"review"}
        step = instance.step_states["review"]
        assert step.status is StepStatus.ACTIVATED
        assert step.resolved_approvers == {"bob"}
        assert step.required_approvers == {"bob"}

    def test_submit_audit_sequence(self, engine, single):
        instance_id = engine.submit("single_review", {}, "alice")
        assert kinds(engine, instance_id) == [
            AuditKind.SUBMITTED,
            AuditKind.EDGE_TAKEN,
            AuditKind.STEP_ACTIVATED,
            AuditKind.APPROVERS_RESOLVED,
        ]
        assert [e.seq for e in engine.get_audit_trail(instance_id)] == [1, 2, 3, 4]

    def test_submit_notifies(self, engine, single, notifier):
        instance_id = engine.submit("single_review", {}, "alice", title="Taxi")
        events = notifier.events_for(instance_id, NotificationEvent.SUBMITTED)
        assert len(events) == 1
        assert events[0].payload["requester"] == "alice"
        assert events[0].payload["title"] == "Taxi"

    def test_unknown_definition(self, engine):
        with pytest.raises(DefinitionNotFoundError):
            engine.submit("nope", {}, "alice")
        assert engine.list_instances() == []

    def test_latest_version_used_unless_pinned(self, engine, publish, linear_definition):
        publish(linear_definition(version=1))
        publish(linear_definition(version=2, approvers=(user("carol"),)))

        latest = engine.get_instance(engine.submit("single_review", {}, "alice"))
        pinned = engine.get_instance(engine.submit("single_review", {}, "alice", version=1))

        assert latest.definition_version == 2
        assert latest.step_states["review"].resolved_approvers == {"carol"}
        assert pinned.definition_version == 1
        assert pinned.step_states["review"].resolved_approvers == {"bob"}

    def test_priority_accepts_string(self, engine, single):
        instance = engine.get_instance(
            engine.submit("single_review", {}, "alice", priority="urgent")
        )
        assert instance.priority is Priority.URGENT


class TestFieldConversion:

    @pytest.fixture
    def declared(self, publish, linear_definition):
        return publish(linear_definition(fields=(
            FieldSpec("amount", ValueKind.NUMBER),
            FieldSpec("incurred_on", ValueKind.DATE, required=False),
        )))

    def test_missing_required_field(self, engine, declared):
        with pytest.raises(MissingFieldError) as exc_info:
            engine.submit("single_review", {"incurred_on": "2024-03-01"}, "alice")
        assert exc_info.value.field_name == "amount"

    def test_none_counts_as_missing(self, engine, declared):
        with pytest.raises(MissingFieldError):
            engine.submit("single_review", {"amount": None}, "alice")

    def test_kind_mismatch(self, engine, declared):
        with pytest.raises(FieldKindMismatchError) as exc_info:
            engine.submit("single_review", {"amount": "lots"}, "alice")
        assert exc_info.value.expected_kind == "number"
        assert exc_info.value.actual_kind == "string"

    def test_declared_date_accepts_iso_string(self, engine, declared):
        instance = engine.get_instance(
            engine.submit("single_review", {"amount": 12, "incurred_on": "2024-03-01"}, "alice")
        )
        assert instance.fields["incurred_on"] == TypedValue.of_date(date(2024, 3, 1))

    def test_bad_date_string_is_mismatch(self, engine, declared):
        with pytest.raises(FieldKindMismatchError):
            engine.submit("single_review", {"amount": 12, "incurred_on": "March"}, "alice")

    @pytest.mark.parametrize(
        "raw",
        [{"kind": "number", "value": "NaN"}, {"kind": "number", "value": "sNaN"}, float("inf")],
    )
    def test_non_finite_number_refused(self, engine, publish, linear_definition, raw):
        publish(linear_definition())
        with pytest.raises(FieldKindMismatchError):
            engine.submit("single_review", {"amount": raw}, "alice")
        assert engine.list_instances() == []

    def test_nan_never_reaches_a_branch(self, engine, store):
        load_builtin_templates(store)
        with pytest.raises(FieldKindMismatchError):
            engine.submit("expense_approval", {"amount": {"kind": "number", "value": "NaN"}}, "alice")
        assert engine.list_instances() == []

    def test_wire_form_accepted(self, engine, declared):
        instance = engine.get_instance(
            engine.submit("single_review", {"amount": {"kind": "number", "value": "12.50"}}, "alice")
        )
        assert instance.fields["amount"].value == Decimal("12.50")

    def test_undeclared_fields_inferred(self, engine, declared):
        instance = engine.get_instance(
            engine.submit("single_review", {"amount": 1, "cost_center": "cc-7", "urgent": True}, "alice")
        )
        assert instance.fields["cost_center"] == TypedValue.string("cc-7")
        assert instance.fields["urgent"] == TypedValue.boolean(True)


class TestSingleApprover:

    def test_approve_completes_instance(self, engine, single, notifier):
        instance_id = engine.submit("single_review", {}, "alice")

        assert engine.record_decision(instance_id, "review", "bob", "approve") is InstanceStatus.APPROVED

        instance = engine.get_instance(instance_id)
        assert instance.current_node_ids == set()
        assert instance.step_states["review"].status is StepStatus.COMPLETED
        assert instance.completed_at is not None
        assert kinds(engine, instance_id)[4:] == [
            AuditKind.DECISION_RECORDED,
            AuditKind.STEP_COMPLETED,
            AuditKind.EDGE_TAKEN,
            AuditKind.INSTANCE_APPROVED,
        ]
        assert engine.audit_log.is_sealed(instance_id)
        events = [n.event for n in notifier.events_for(instance_id)]
        assert events[-2:] == [NotificationEvent.APPROVED, NotificationEvent.COMPLETED]

    def test_reject_completes_instance_as_rejected(self, engine, single, notifier):
        instance_id = engine.submit("single_review", {}, "alice")

        status = engine.record_decision(instance_id, "review", "bob", "reject", comment="no receipt")

        assert status is InstanceStatus.REJECTED
        instance = engine.get_instance(instance_id)
        assert instance.step_states["review"].status is StepStatus.STEP_REJECTED
        assert kinds(engine, instance_id)[-2:] == [
            AuditKind.STEP_REJECTED,
            AuditKind.INSTANCE_REJECTED,
        ]
        assert notifier.events_for(instance_id, NotificationEvent.REJECTED)

    def test_decision_payload_recorded(self, engine, single):
        instance_id = engine.submit("single_review", {}, "alice")
        engine.record_decision(instance_id, "review", "bob", "approve", comment="fine")
        entry = next(
            e for e in engine.get_audit_trail(instance_id)
            if e.kind is AuditKind.DECISION_RECORDED
        )
        assert entry.payload["principal"] == "bob"
        assert entry.payload["action"] == "approve"
        assert entry.payload["comment"] == "fine"

    def test_comment_leaves_step_open(self, engine, single):
        instance_id = engine.submit("single_review", {}, "alice")
        engine.record_decision(instance_id, "review", "bob", "comment", comment="looking")
        engine.record_decision(instance_id, "review", "bob", "comment", comment="still looking")

        instance = engine.get_instance(instance_id)
        assert instance.status is InstanceStatus.PENDING
        assert len(instance.step_states["review"].decisions) == 2
        assert engine.record_decision(instance_id, "review", "bob", "approve") is InstanceStatus.APPROVED


class TestDecisionRefusals:
    """Refused decisions leave the instance and its trail untouched."""

    def test_unknown_instance(self, engine):
        with pytest.raises(InstanceNotFoundError):
            engine.record_decision(uuid4(), "review", "bob", "approve")

    def test_unresolved_principal(self, engine, single):
        instance_id = engine.submit("single_review", {}, "alice")
        before = kinds(engine, instance_id)

        with pytest.raises(UnauthorizedPrincipalError) as exc_info:
            engine.record_decision(instance_id, "review", "mallory", "approve")

        assert exc_info.value.principal == "mallory"
        assert kinds(engine, instance_id) == before

    def test_unknown_step(self, engine, single):
        instance_id = engine.submit("single_review", {}, "alice")
        with pytest.raises(StepNotActiveError):
            engine.record_decision(instance_id, "nope", "bob", "approve")

    def test_start_is_not_an_approval_step(self, engine, single):
        instance_id = engine.submit("single_review", {}, "alice")
        with pytest.raises(StepNotActiveError):
            engine.record_decision(instance_id, "start", "bob", "approve")

    def test_duplicate_approval(self, engine, publish, linear_definition):
        publish(linear_definition(approvers=(user("bob"), user("carol"))))
        instance_id = engine.submit("single_review", {}, "alice")
        engine.record_decision(instance_id, "review", "bob", "approve")

        with pytest.raises(DuplicateDecisionError):
            engine.record_decision(instance_id, "review", "bob", "approve")
        with pytest.raises(DuplicateDecisionError):
            engine.record_decision(instance_id, "review", "bob", "reject")

    def test_terminal_instance_refuses_decisions(self, engine, single):
        instance_id = engine.submit("single_review", {}, "alice")
        engine.record_decision(instance_id, "review", "bob", "approve")

        with pytest.raises(InstanceTerminalError) as exc_info:
            engine.record_decision(instance_id, "review", "bob", "comment", comment="late")
        assert exc_info.value.status == "approved"

    def test_unknown_action(self, engine, single):
        instance_id = engine.submit("single_review", {}, "alice")
        with pytest.raises(ValueError):
            engine.record_decision(instance_id, "review", "bob", "shrug")


class TestPolicies:

    def test_all_required_waits_for_everyone(self, engine, publish, linear_definition):
        publish(linear_definition(approvers=(user("bob"), user("carol"))))
        instance_id = engine.submit("single_review", {}, "alice")

        assert engine.record_decision(instance_id, "review", "bob", "approve") is InstanceStatus.PENDING
        assert engine.record_decision(instance_id, "review", "carol", "approve") is InstanceStatus.APPROVED

    def test_optional_approver_not_awaited(self, engine, publish, linear_definition):
        publish(linear_definition(approvers=(user("bob"), user("carol", required=False))))
        instance_id = engine.submit("single_review", {}, "alice")

        assert engine.get_instance(instance_id).step_states["review"].required_approvers == {"bob"}
        assert engine.record_decision(instance_id, "review", "bob", "approve") is InstanceStatus.APPROVED

    def test_any_reject_blocks_first_reject(self, engine, publish, linear_definition):
        publish(linear_definition(
            approvers=(ApproverRef(ApproverKind.DEPARTMENT, "finance"),),
            policy=DecisionPolicy.any_reject_blocks(),
        ))
        instance_id = engine.submit("single_review", {}, "alice")

        assert engine.record_decision(instance_id, "review", "fiona", "reject") is InstanceStatus.REJECTED

    def test_any_reject_blocks_first_approval(self, engine, publish, linear_definition):
        publish(linear_definition(
            approvers=(ApproverRef(ApproverKind.DEPARTMENT, "finance"),),
            policy=DecisionPolicy.any_reject_blocks(),
        ))
        instance_id = engine.submit("single_review", {}, "alice")

        assert engine.record_decision(instance_id, "review", "frank", "approve") is InstanceStatus.APPROVED

    def test_quorum_two_of_three_then_next_step(self, engine, publish, two_step_definition):
        publish(two_step_definition(ApprovalConfig(
            approvers=(role("finance_controller"), role("treasurer"), role("cfo")),
            decision_policy=DecisionPolicy.quorum(2),
        )))
        instance_id = engine.submit("two_step", {}, "alice")

        assert engine.record_decision(instance_id, "first", "carol", "approve") is InstanceStatus.PENDING
        engine.record_decision(instance_id, "first", "tom", "approve")

        instance = engine.get_instance(instance_id)
        assert instance.step_states["first"].status is StepStatus.COMPLETED
        assert instance.current_node_ids == {"second"}

        # third approval on the closed step is recorded but changes nothing
        assert engine.record_decision(instance_id, "first", "cathy", "approve") is InstanceStatus.PENDING
        assert kinds(engine, instance_id)[-1] is AuditKind.DECISION_RECORDED
        assert engine.get_instance(instance_id).current_node_ids == {"second"}

        assert engine.record_decision(instance_id, "second", "dave", "approve") is InstanceStatus.APPROVED

    def test_quorum_single_reject_not_fatal(self, engine, publish, linear_definition):
        publish(linear_definition(
            approvers=(role("finance_controller"), role("treasurer"), role("cfo")),
            policy=DecisionPolicy.quorum(2),
        ))
        instance_id = engine.submit("single_review", {}, "alice")

        assert engine.record_decision(instance_id, "review", "carol", "reject") is InstanceStatus.PENDING
        assert engine.record_decision(instance_id, "review", "tom", "reject") is InstanceStatus.REJECTED

    def test_quorum_counts_required_approvers_only(self, engine, publish, linear_definition):
        publish(linear_definition(
            approvers=(user("carol"), user("tom"), user("gina", required=False)),
            policy=DecisionPolicy.quorum(2),
        ))
        instance_id = engine.submit("single_review", {}, "alice")

        engine.record_decision(instance_id, "review", "carol", "approve")
        assert engine.record_decision(instance_id, "review", "gina", "approve") is InstanceStatus.PENDING
        assert engine.record_decision(instance_id, "review", "tom", "approve") is InstanceStatus.APPROVED


class TestRouting:

    def test_conditional_bypass_skips_approval(self, engine, store):
        load_builtin_templates(store)
        instance_id = engine.submit("expense_approval", {"amount": 500}, "alice")

        instance = engine.get_instance(instance_id)
        assert instance.status is InstanceStatus.APPROVED
        assert "manager_approval" not in instance.step_states
        taken = [
            e.payload["edge_id"] for e in engine.get_audit_trail(instance_id)
            if e.kind is AuditKind.EDGE_TAKEN
        ]
        assert taken == ["e_start", "e_bypass"]

    def test_expense_full_path(self, engine, store, notifier):
        load_builtin_templates(store)
        instance_id = engine.submit(
            "expense_approval", {"amount": 1500, "expense_category": "travel"}, "alice"
        )
        assert engine.get_instance(instance_id).current_node_ids == {"manager_approval"}

        engine.record_decision(instance_id, "manager_approval", "bob", "approve")
        assert engine.get_instance(instance_id).current_node_ids == {"finance_review"}

        status = engine.record_decision(instance_id, "finance_review", "fiona", "approve")

        assert status is InstanceStatus.APPROVED
        assert AuditKind.NOTIFICATION_SENT in kinds(engine, instance_id)
        sent = notifier.events_for(instance_id, NotificationEvent.NOTIFICATION)
        assert sent[0].payload["template"] == "expense_approved"

    def test_no_matching_edge_blocks_instance(self, engine, publish, notifier):
        gated = Condition("amount", ConditionOperator.GREATER_THAN, TypedValue.number(1000))
        publish(WorkflowDefinition(
            id="gated", version=1, name="Gated",
            nodes=(
                Node.start(),
                Node.condition("check"),
                Node.approval("review", ApprovalConfig(approvers=(user("bob"),))),
                Node.end(),
            ),
            edges=(
                Edge("e1", "start", "check"),
                Edge("e2", "check", "review", (gated,)),
                Edge("e3", "review", "end"),
            ),
        ))
        instance_id = engine.submit("gated", {"amount": 5}, "alice")

        instance = engine.get_instance(instance_id)
        assert instance.status is InstanceStatus.BLOCKED
        assert "check" in instance.blocked_reason
        assert kinds(engine, instance_id)[-1] is AuditKind.INSTANCE_BLOCKED
        blocked = notifier.events_for(instance_id, NotificationEvent.BLOCKED)
        assert blocked[0].payload["node_id"] == "check"


class TestEmptyResolution:

    def test_empty_role_blocks_step(self, engine, publish, linear_definition):
        publish(linear_definition(approvers=(role("vacant"),)))
        instance_id = engine.submit("single_review", {}, "alice")

        instance = engine.get_instance(instance_id)
        assert instance.status is InstanceStatus.BLOCKED
        assert instance.step_states["review"].blocked
        assert instance.step_states["review"].resolved_approvers == set()
        assert kinds(engine, instance_id)[-2:] == [
            AuditKind.STEP_BLOCKED,
            AuditKind.INSTANCE_BLOCKED,
        ]

    def test_empty_required_ref_blocks_even_with_others(self, engine, publish, linear_definition):
        publish(linear_definition(approvers=(user("bob"), role("vacant"))))
        instance_id = engine.submit("single_review", {}, "alice")
        assert engine.get_instance(instance_id).status is InstanceStatus.BLOCKED

    def test_empty_optional_ref_tolerated(self, engine, publish, linear_definition):
        publish(linear_definition(approvers=(
            user("bob"), ApproverRef(ApproverKind.ROLE, "vacant", required=False),
        )))
        instance_id = engine.submit("single_review", {}, "alice")
        assert engine.get_instance(instance_id).status is InstanceStatus.PENDING


class TestReassign:

    def test_reassign_unblocks_step(self, engine, publish, linear_definition):
        publish(linear_definition(approvers=(role("vacant"),)))
        instance_id = engine.submit("single_review", {}, "alice")

        status = engine.reassign(instance_id, "review", {"zoe"}, actor="ops")

        assert status is InstanceStatus.PENDING
        instance = engine.get_instance(instance_id)
        assert not instance.step_states["review"].blocked
        assert instance.blocked_reason is None
        assert kinds(engine, instance_id)[-1] is AuditKind.STEP_REASSIGNED
        assert engine.record_decision(instance_id, "review", "zoe", "approve") is InstanceStatus.APPROVED

    def test_reassign_rearms_deadline(self, engine, publish, linear_definition, timer, deterministic_clock):
        publish(linear_definition(approvers=(role("vacant"),), timeout_seconds=600))
        instance_id = engine.submit("single_review", {}, "alice")
        assert timer.pending() == []

        deterministic_clock.advance(100)
        engine.reassign(instance_id, "review", ["zoe"], actor="ops")

        step = engine.get_instance(instance_id).step_states["review"]
        assert step.deadline == deterministic_clock.now() + timedelta(seconds=600)
        assert [d.at for d in timer.pending()] == [step.deadline]

    def test_reassign_empty_set(self, engine, single):
        instance_id = engine.submit("single_review", {}, "alice")
        with pytest.raises(EmptyApproverSetError):
            engine.reassign(instance_id, "review", {""}, actor="ops")

    def test_reassign_closed_step(self, engine, publish, two_step_definition):
        publish(two_step_definition(ApprovalConfig(approvers=(user("bob"),))))
        instance_id = engine.submit("two_step", {}, "alice")
        engine.record_decision(instance_id, "first", "bob", "approve")

        with pytest.raises(StepNotActiveError):
            engine.reassign(instance_id, "first", {"zoe"}, actor="ops")

    def test_reassign_terminal_instance(self, engine, single):
        instance_id = engine.submit("single_review", {}, "alice")
        engine.cancel(instance_id)
        with pytest.raises(InstanceTerminalError):
            engine.reassign(instance_id, "review", {"zoe"}, actor="ops")


class TestCancel:

    def test_cancel_halts_open_steps(self, engine, publish, linear_definition, timer, notifier):
        publish(linear_definition(timeout_seconds=3600))
        instance_id = engine.submit("single_review", {}, "alice")
        assert len(timer.pending()) == 1

        assert engine.cancel(instance_id, actor="alice") is InstanceStatus.CANCELLED

        instance = engine.get_instance(instance_id)
        assert instance.status is InstanceStatus.CANCELLED
        assert instance.current_node_ids == set()
        assert timer.pending() == []
        assert kinds(engine, instance_id)[-2:] == [
            AuditKind.STEP_HALTED,
            AuditKind.INSTANCE_CANCELLED,
        ]
        assert engine.get_audit_trail(instance_id)[-1].payload["actor"] == "alice"
        cancelled = notifier.events_for(instance_id, NotificationEvent.CANCELLED)
        assert cancelled[0].payload["actor"] == "alice"

    def test_cancel_twice(self, engine, single):
        instance_id = engine.submit("single_review", {}, "alice")
        engine.cancel(instance_id)
        with pytest.raises(InstanceTerminalError):
            engine.cancel(instance_id)

    def test_decision_after_cancel(self, engine, single):
        instance_id = engine.submit("single_review", {}, "alice")
        engine.cancel(instance_id)
        with pytest.raises(InstanceTerminalError):
            engine.record_decision(instance_id, "review", "bob", "approve")


class TestNotifierFailure:

    def test_notifier_failure_does_not_affect_state(self, engine, single, notifier, captured_logs):
        notifier.fail = True
        instance_id = engine.submit("single_review", {}, "alice")

        assert engine.record_decision(instance_id, "review", "bob", "approve") is InstanceStatus.APPROVED
        failures = [r for r in captured_logs() if r["message"] == "notification_failed"]
        assert failures


class TestEngineFaults:

    def test_unexpected_error_flags_instance(self, engine, single, monkeypatch):
        def broken_select_edge(edges, fields):
            raise ArithmeticError("comparison failed")

        monkeypatch.setattr("approval_services.execution_engine.select_edge", broken_select_edge)

        with pytest.raises(EngineInvariantError) as exc_info:
            engine.submit("single_review", {}, "alice")

        assert isinstance(exc_info.value.__cause__, ArithmeticError)
        (instance_id,) = engine.list_instances()
        instance = engine.get_instance(instance_id)
        assert instance.status is InstanceStatus.BLOCKED
        assert instance.blocked_reason.startswith("engine fault: unexpected ArithmeticError")
        assert engine.get_audit_trail(instance_id)[-1].kind is AuditKind.ENGINE_FAULT

    def test_fault_is_persisted(self, make_engine, repository, single, monkeypatch):
        engine = make_engine(repository=repository)
        monkeypatch.setattr(
            "approval_services.execution_engine.select_edge",
            lambda edges, fields: 1 / 0,
        )

        with pytest.raises(EngineInvariantError):
            engine.submit("single_review", {}, "alice")

        (instance_id,) = repository.list_ids()
        loaded, entries = repository.load(instance_id)
        assert loaded.status is InstanceStatus.BLOCKED
        assert entries[-1].kind is AuditKind.ENGINE_FAULT

    def test_engine_errors_pass_through_unflagged(self, engine, single):
        instance_id = engine.submit("single_review", {}, "alice")
        with pytest.raises(UnauthorizedPrincipalError):
            engine.record_decision(instance_id, "review", "mallory", "approve")
        assert engine.get_instance(instance_id).status is InstanceStatus.PENDING

    def test_escalation_retry_without_escalation_config(self, engine, single):
        instance_id = engine.submit("single_review", {}, "alice")
        # a restored snapshot can claim an escalation the definition never had
        engine._instances[instance_id].step_states["review"].pending_resolution = (
            ResolutionPurpose.ESCALATION
        )

        with pytest.raises(EngineInvariantError, match="has no escalation"):
            engine.tick()


class TestQueries:

    def test_get_instance_returns_copy(self, engine, single):
        instance_id = engine.submit("single_review", {}, "alice")
        copy = engine.get_instance(instance_id)
        copy.current_node_ids.clear()
        assert engine.get_instance(instance_id).current_node_ids == {"review"}

    def test_list_instances_by_status(self, engine, single, deterministic_clock):
        first = engine.submit("single_review", {}, "alice")
        deterministic_clock.advance(1)
        second = engine.submit("single_review", {}, "erin")
        engine.record_decision(first, "review", "bob", "approve")

        assert engine.list_instances() == [first, second]
        assert engine.list_instances(InstanceStatus.APPROVED) == [first]
        assert engine.list_instances(InstanceStatus.PENDING) == [second]

    def test_snapshot_carries_audit(self, engine, single):
        instance_id = engine.submit("single_review", {}, "alice")
        snapshot = engine.snapshot(instance_id)
        assert snapshot["status"] == "pending"
        assert len(snapshot["audit"]) == 4

    def test_audit_chain_verifies(self, engine, single):
        instance_id = engine.submit("single_review", {}, "alice")
        engine.record_decision(instance_id, "review", "bob", "approve")
        assert engine.audit_log.verify_chain(instance_id)
