"""
Module: approval_services
Responsibility:
    Stateful services that run workflows: the definition store, approver
    resolution, the execution engine, in-process collaborators and the
    wiring factory that assembles them.

Architecture position:
    Services -- imports ``approval_engines`` (pure math) and
    ``approval_kernel`` (domain, audit, persistence).  Never imported by
    either of them.
"""

from approval_services.approver_resolver import (
    ApproverResolver,
    ResolutionContext,
    ResolvedApprovers,
)
from approval_services.collaborators import (
    InMemoryTimer,
    LoggingNotifier,
    RecordedNotification,
    RecordingNotifier,
    ScheduledDeadline,
    StaticDirectory,
)
from approval_services.definition_store import DefinitionStore
from approval_services.execution_engine import ExecutionEngine
from approval_services.wiring import build_engine

__all__ = [
    "ApproverResolver",
    "DefinitionStore",
    "ExecutionEngine",
    "InMemoryTimer",
    "LoggingNotifier",
    "RecordedNotification",
    "RecordingNotifier",
    "ResolutionContext",
    "ResolvedApprovers",
    "ScheduledDeadline",
    "StaticDirectory",
    "build_engine",
]
