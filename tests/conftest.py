"""
Pytest fixtures for the approval engine test suite.

Provides:
- Structured logging configured once per session, context cleared per test
- Deterministic clock and in-process collaborators (static directory,
  recording notifier, in-memory timer)
- Definition builders and an engine factory wired to the shared clock
- An in-memory sqlite session factory for persistence tests

The directory fixture models a small organisation:

    alice, erin  -> report to bob
    bob          -> reports to diana
    role finance_director    = {diana}
    role finance_controller  = {carol}
    role treasurer           = {tom}
    role cfo                 = {cathy}
    department finance       = {fiona, frank}
"""

import json
import logging
from io import StringIO

import pytest

from approval_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from approval_kernel.domain.clock import DeterministicClock
from approval_kernel.domain.graph import (
    ApprovalConfig,
    ApproverKind,
    ApproverRef,
    DecisionPolicy,
    Edge,
    Escalation,
    FieldSpec,
    Node,
    WorkflowDefinition,
)
from approval_kernel.logging_config import (
    LOGGER_ROOT,
    ApprovalJsonFormatter,
    LogContext,
    configure_logging,
    reset_logging,
)
from approval_kernel.services.audit_log import AuditLog
from approval_kernel.services.instance_repository import InstanceRepository
from approval_services.collaborators import InMemoryTimer, RecordingNotifier, StaticDirectory
from approval_services.definition_store import DefinitionStore
from approval_services.execution_engine import ExecutionEngine


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture logs of the approval tree as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, engine):
            engine.submit(...)
            logs = captured_logs()
            assert any(r["message"] == "instance_submitted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(ApprovalJsonFormatter())
    root = logging.getLogger(LOGGER_ROOT)
    previous_level = root.level
    root.addHandler(handler)
    root.setLevel(logging.DEBUG)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Definition builders
# =============================================================================


def user(name: str, required: bool = True) -> ApproverRef:
    return ApproverRef(ApproverKind.USER, name, required)


def build_linear_definition(
    definition_id: str = "single_review",
    version: int = 1,
    approvers: tuple[ApproverRef, ...] = (ApproverRef(ApproverKind.USER, "bob"),),
    policy: DecisionPolicy | None = None,
    timeout_seconds: int | None = None,
    escalation: Escalation | None = None,
    fields: tuple[FieldSpec, ...] = (),
    step_id: str = "review",
) -> WorkflowDefinition:
    """Start -> one approval step -> End."""
    config = ApprovalConfig(
        approvers=approvers,
        decision_policy=policy or DecisionPolicy.all_required(),
        timeout_seconds=timeout_seconds,
        escalation=escalation,
    )
    return WorkflowDefinition(
        id=definition_id,
        version=version,
        name=definition_id.replace("_", " ").title(),
        nodes=(Node.start(), Node.approval(step_id, config), Node.end()),
        edges=(
            Edge("e1", "start", step_id),
            Edge("e2", step_id, "end"),
        ),
        fields=fields,
    )


def build_two_step_definition(
    first: ApprovalConfig,
    second: ApprovalConfig | None = None,
    definition_id: str = "two_step",
) -> WorkflowDefinition:
    """Start -> first -> second -> End."""
    second = second or ApprovalConfig(approvers=(user("dave"),))
    return WorkflowDefinition(
        id=definition_id,
        version=1,
        name="Two Step",
        nodes=(
            Node.start(),
            Node.approval("first", first),
            Node.approval("second", second),
            Node.end(),
        ),
        edges=(
            Edge("e1", "start", "first"),
            Edge("e2", "first", "second"),
            Edge("e3", "second", "end"),
        ),
    )


@pytest.fixture
def linear_definition():
    """Factory for Start -> approval -> End definitions."""
    return build_linear_definition


@pytest.fixture
def two_step_definition():
    """Factory for Start -> approval -> approval -> End definitions."""
    return build_two_step_definition


# =============================================================================
# Collaborators and engine
# =============================================================================


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing."""
    return DeterministicClock()


@pytest.fixture
def directory() -> StaticDirectory:
    return StaticDirectory(
        roles={
            "finance_director": {"diana"},
            "finance_controller": {"carol"},
            "treasurer": {"tom"},
            "cfo": {"cathy"},
            "procurement_lead": {"pete"},
        },
        departments={"finance": {"fiona", "frank"}},
        managers={"alice": "bob", "erin": "bob", "bob": "diana"},
    )


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def timer() -> InMemoryTimer:
    return InMemoryTimer()


@pytest.fixture
def store() -> DefinitionStore:
    return DefinitionStore()


@pytest.fixture
def make_engine(store, directory, notifier, timer, deterministic_clock):
    """
    Factory returning an ExecutionEngine over the shared fixtures.

    The timer callback is bound to ``engine.handle_timeout`` so that
    ``timer.fire_due(clock.now())`` drives escalation.
    """

    def _make(**overrides) -> ExecutionEngine:
        kwargs = {
            "audit_log": AuditLog(deterministic_clock),
            "clock": deterministic_clock,
        }
        kwargs.update(overrides)
        engine_timer = kwargs.pop("timer", timer)
        engine = ExecutionEngine(store, directory, notifier, engine_timer, **kwargs)
        engine_timer.set_callback(engine.handle_timeout)
        return engine

    return _make


@pytest.fixture
def engine(make_engine) -> ExecutionEngine:
    return make_engine()


@pytest.fixture
def publish(store):
    """Publish a definition to the shared store and return it."""

    def _publish(definition: WorkflowDefinition) -> WorkflowDefinition:
        return store.publish(definition)

    return _publish


# =============================================================================
# Persistence
# =============================================================================


@pytest.fixture
def session_factory():
    """In-memory sqlite database with all tables created."""
    init_engine_from_url("sqlite://")
    create_tables()
    yield get_session_factory()
    reset_engine()


@pytest.fixture
def repository(session_factory) -> InstanceRepository:
    return InstanceRepository(session_factory)
