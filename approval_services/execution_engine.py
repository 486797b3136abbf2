"""
approval_services.execution_engine -- Request instance state machine.

Responsibility:
    Drives submitted requests through a published workflow definition:
    activates nodes, resolves approvers, applies decisions under the step's
    decision policy, enforces deadlines with one-stage escalation, handles
    delegation, cancellation and operator reassignment, and records every
    change in the instance's audit trail.

Architecture position:
    Services layer.  Thin coordinator: condition evaluation and policy math
    are delegated to ``approval_engines``; identity, notification and
    scheduling go through the collaborator protocols.

Concurrency model:
    - One ``threading.RLock`` per instance, created on demand.  The registry
      lock only guards lock and instance creation; there is no global lock
      around instance state, so different instances never contend.
    - Directory lookups, Notifier calls and Timer registration/cancellation
      are collected as *effects* while the instance lock is held and run
      after it is released.  Effects that need to touch the instance again
      (applying a resolution, installing a timer handle) re-acquire the lock
      and re-check state first.
    - Decisions on one instance are applied in lock-acquisition order.  A
      timeout racing a decision either sees the step closed (no-op) or
      closes/escalates it first.
    - Cancellation is cooperative: an advance already holding the lock
      finishes its transition; later ones observe the terminal status.

Invariants enforced:
    - ``current_node_ids`` holds only open approval steps; a node is never
      activated twice for an instance (``EngineInvariantError`` otherwise).
    - Terminal statuses (approved, rejected, cancelled) are final; decisions
      raise ``InstanceTerminalError`` and timeouts are ignored.
    - An empty approver set blocks the step; it is never auto-approved.
    - Escalation fires at most once per step; a second expiry blocks.
    - Timeout handling is idempotent: closed, blocked or not-yet-due steps
      are left untouched.

Failure modes:
    - UnauthorizedPrincipalError, DuplicateDecisionError, StepNotActiveError,
      StepBlockedError, InvalidDecisionError, InstanceTerminalError: raised
      to the caller; instance state is unchanged.
    - DirectoryUnavailableError: never raised to callers; the step stays
      activated awaiting resolution and ``tick()`` retries with exponential
      backoff.
    - Notifier failures are logged and never affect instance state.
    - EngineInvariantError: the instance is flagged BLOCKED, an
      ENGINE_FAULT audit entry is written, and the error propagates.
      Any other non-engine exception raised under the instance lock is
      wrapped in EngineInvariantError and handled the same way.
"""

from __future__ import annotations

import copy
import threading
from collections import deque
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

from approval_engines.conditions import select_edge
from approval_engines.decision_policy import StepOutcome, evaluate_step
from approval_kernel.domain.audit import AuditEntry, AuditKind
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.collaborators import (
    Directory,
    NotificationEvent,
    Notifier,
    Timer,
)
from approval_kernel.domain.graph import (
    ApprovalConfig,
    Escalation,
    FieldSpec,
    GraphIndex,
    Node,
    NodeType,
    NotificationConfig,
)
from approval_kernel.domain.instance import (
    Decision,
    DecisionAction,
    InstanceStatus,
    Priority,
    RequestInstance,
    ResolutionPurpose,
    StepState,
    StepStatus,
)
from approval_kernel.domain.snapshot import build_snapshot
from approval_kernel.domain.values import TypedValue, ValueKind
from approval_kernel.exceptions import (
    ApprovalEngineError,
    DirectoryUnavailableError,
    DuplicateDecisionError,
    EmptyApproverSetError,
    EngineInvariantError,
    FieldKindMismatchError,
    InstanceNotFoundError,
    InstanceTerminalError,
    InvalidDecisionError,
    MissingFieldError,
    StepBlockedError,
    StepNotActiveError,
    UnauthorizedPrincipalError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.services.audit_log import AuditLog
from approval_kernel.services.instance_repository import InstanceRepository
from approval_services.approver_resolver import (
    ApproverResolver,
    ResolutionContext,
    ResolvedApprovers,
)
from approval_services.definition_store import DefinitionStore

logger = get_logger("services.execution_engine")


# ---------------------------------------------------------------------------
# Effects (run after the instance lock is released)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _Notify:
    event: NotificationEvent
    payload: dict[str, Any]


@dataclass(frozen=True)
class _Resolve:
    node_id: str
    purpose: ResolutionPurpose


@dataclass(frozen=True)
class _RegisterTimer:
    node_id: str
    at: datetime


@dataclass(frozen=True)
class _CancelTimer:
    handle: str


@dataclass
class _Effects:
    items: list[Any] = field(default_factory=list)

    def notify(self, event: NotificationEvent, payload: dict[str, Any]) -> None:
        self.items.append(_Notify(event, payload))

    def resolve(self, node_id: str, purpose: ResolutionPurpose) -> None:
        self.items.append(_Resolve(node_id, purpose))

    def register_timer(self, node_id: str, at: datetime) -> None:
        self.items.append(_RegisterTimer(node_id, at))

    def cancel_timer(self, handle: str | None) -> None:
        if handle:
            self.items.append(_CancelTimer(handle))


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


class ExecutionEngine:
    """Executes request instances against published workflow definitions.

    Args:
        definitions: Store of published definitions.
        directory: Identity lookup used to resolve approver references.
        notifier: Sink for domain events.
        timer: Deadline scheduler; bind its callback to ``handle_timeout``.
        audit_log: Per-instance audit trail (a fresh one if omitted).
        clock: Time source for deadlines, decisions and audit entries.
        repository: Optional snapshot persistence, written after every
            mutating operation.
        retry_base_seconds: First Directory retry delay; doubles per attempt.
        retry_max_seconds: Upper bound on the retry delay.
        retry_limit: Failed resolution attempts after which the step is
            blocked; 0 retries forever.
    """

    def __init__(
        self,
        definitions: DefinitionStore,
        directory: Directory,
        notifier: Notifier,
        timer: Timer,
        audit_log: AuditLog | None = None,
        clock: Clock | None = None,
        repository: InstanceRepository | None = None,
        retry_base_seconds: int = 30,
        retry_max_seconds: int = 3600,
        retry_limit: int = 0,
    ) -> None:
        self._definitions = definitions
        self._resolver = ApproverResolver(directory)
        self._notifier = notifier
        self._timer = timer
        self._clock = clock or SystemClock()
        self._audit = audit_log or AuditLog(self._clock)
        self._repository = repository
        self._retry_base_seconds = retry_base_seconds
        self._retry_max_seconds = retry_max_seconds
        self._retry_limit = retry_limit

        self._registry_lock = threading.Lock()
        self._instances: dict[UUID, RequestInstance] = {}
        self._locks: dict[UUID, threading.RLock] = {}

    @property
    def definitions(self) -> DefinitionStore:
        return self._definitions

    @property
    def audit_log(self) -> AuditLog:
        return self._audit

    # ------------------------------------------------------------------
    # Lock registry
    # ------------------------------------------------------------------

    def _lock_for(self, instance_id: UUID) -> threading.RLock:
        lock = self._locks.get(instance_id)
        if lock is None:
            with self._registry_lock:
                lock = self._locks.setdefault(instance_id, threading.RLock())
        return lock

    def _get(self, instance_id: UUID) -> RequestInstance:
        instance = self._instances.get(instance_id)
        if instance is None:
            raise InstanceNotFoundError(str(instance_id))
        return instance

    @contextmanager
    def _locked(self, instance_id: UUID) -> Iterator[tuple[RequestInstance, _Effects]]:
        """Hold the instance lock; persist on success, flag engine faults."""
        instance = self._get(instance_id)
        effects = _Effects()
        with self._lock_for(instance_id):
            with LogContext.bind(instance_id=instance_id, definition_id=instance.definition_id):
                try:
                    yield instance, effects
                except EngineInvariantError as exc:
                    self._flag_fault(instance, exc)
                    raise
                except ApprovalEngineError:
                    raise
                except Exception as exc:
                    fault = EngineInvariantError(
                        str(instance_id), f"unexpected {type(exc).__name__}: {exc}"
                    )
                    fault.__cause__ = exc
                    self._flag_fault(instance, fault)
                    raise fault
                self._persist(instance)

    def _persist(self, instance: RequestInstance) -> None:
        if self._repository is not None:
            self._repository.save(
                instance, self._audit.entries(instance.id), now=self._clock.now()
            )

    def _flag_fault(self, instance: RequestInstance, exc: EngineInvariantError) -> None:
        logger.critical(
            "engine_invariant_violated",
            extra={"detail": exc.detail, "status": instance.status.value},
            exc_info=exc,
        )
        if not instance.is_terminal:
            instance.status = InstanceStatus.BLOCKED
            instance.blocked_reason = f"engine fault: {exc.detail}"
        if not self._audit.is_sealed(instance.id):
            self._audit.append(
                instance.id, AuditKind.ENGINE_FAULT, {"detail": exc.detail}
            )
        self._persist(instance)

    # ------------------------------------------------------------------
    # Effects
    # ------------------------------------------------------------------

    def _run_effects(self, instance_id: UUID, effects: _Effects) -> None:
        queue: deque[Any] = deque(effects.items)
        while queue:
            item = queue.popleft()
            if isinstance(item, _Notify):
                self._notify(item.event, instance_id, item.payload)
            elif isinstance(item, _CancelTimer):
                self._timer.cancel(item.handle)
            elif isinstance(item, _RegisterTimer):
                queue.extend(self._register_timer(instance_id, item.node_id, item.at).items)
            elif isinstance(item, _Resolve):
                queue.extend(self._resolve_step(instance_id, item.node_id, item.purpose).items)

    def _notify(
        self,
        event: NotificationEvent,
        instance_id: UUID,
        payload: dict[str, Any],
    ) -> None:
        try:
            self._notifier.notify(event, instance_id, payload)
        except Exception:
            logger.exception(
                "notification_failed",
                extra={"event": event.value},
            )

    def _register_timer(self, instance_id: UUID, node_id: str, at: datetime) -> _Effects:
        handle = self._timer.register_deadline(instance_id, node_id, at)
        with self._locked(instance_id) as (instance, effects):
            step = instance.step_states.get(node_id)
            if (
                instance.is_terminal
                or step is None
                or not step.is_open
                or step.blocked
                or step.deadline != at
            ):
                effects.cancel_timer(handle)
            else:
                effects.cancel_timer(step.timer_handle)
                step.timer_handle = handle
        return effects

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(
        self,
        definition_id: str,
        fields: Mapping[str, Any] | None,
        requester: str,
        title: str = "",
        priority: Priority | str = Priority.MEDIUM,
        version: int | None = None,
    ) -> UUID:
        """
        Create an instance at Start and advance it as far as it can go.

        Returns:
            The new instance id.

        Raises:
            DefinitionNotFoundError: Unknown definition id or version.
            MissingFieldError: A declared required field was not supplied.
            FieldKindMismatchError: A field's kind differs from its declaration.
        """
        definition = self._definitions.get(definition_id, version)
        index = self._definitions.index(definition.id, definition.version)
        typed_fields = _convert_fields(definition.id, definition.fields, fields or {})

        instance = RequestInstance(
            id=uuid4(),
            definition_id=definition.id,
            definition_version=definition.version,
            fields=typed_fields,
            requester=requester,
            created_at=self._clock.now(),
            title=title,
            priority=Priority(priority),
        )
        with self._registry_lock:
            self._instances[instance.id] = instance

        with LogContext.bind(actor_id=requester):
            with self._locked(instance.id) as (inst, effects):
                self._audit.append(inst.id, AuditKind.SUBMITTED, {
                    "definition_id": inst.definition_id,
                    "definition_version": inst.definition_version,
                    "requester": inst.requester,
                    "title": inst.title,
                    "priority": inst.priority.value,
                    "fields": {k: v.to_dict() for k, v in sorted(inst.fields.items())},
                })
                logger.info(
                    "instance_submitted",
                    extra={
                        "definition_id": inst.definition_id,
                        "definition_version": inst.definition_version,
                    },
                )
                effects.notify(NotificationEvent.SUBMITTED, {
                    "definition_id": inst.definition_id,
                    "definition_version": inst.definition_version,
                    "requester": inst.requester,
                    "title": inst.title,
                    "priority": inst.priority.value,
                })
                self._advance(inst, index, index.start.id, effects)
            self._run_effects(instance.id, effects)
        return instance.id

    # ------------------------------------------------------------------
    # Traversal (lock held)
    # ------------------------------------------------------------------

    def _advance(
        self,
        instance: RequestInstance,
        index: GraphIndex,
        from_node_id: str,
        effects: _Effects,
    ) -> None:
        if instance.is_terminal:
            logger.info("advance_skipped_terminal", extra={"from_node": from_node_id})
            return
        edge = select_edge(index.outgoing(from_node_id), instance.fields)
        if edge is None:
            self._block_instance(
                instance,
                f"no outgoing edge of {from_node_id} matched the request fields",
                effects,
                node_id=from_node_id,
            )
            return
        self._audit.append(instance.id, AuditKind.EDGE_TAKEN, {
            "edge_id": edge.id,
            "from": edge.source,
            "to": edge.target,
        })
        self._activate(instance, index, index.node(edge.target), effects)

    def _activate(
        self,
        instance: RequestInstance,
        index: GraphIndex,
        node: Node,
        effects: _Effects,
    ) -> None:
        if node.id in instance.step_states or node.id in instance.current_node_ids:
            raise EngineInvariantError(
                str(instance.id), f"node {node.id} activated twice"
            )
        if node.type is NodeType.START:
            raise EngineInvariantError(str(instance.id), "start node re-entered")

        if node.type is NodeType.END:
            rejected_path = any(
                s.status is StepStatus.STEP_REJECTED for s in instance.step_states.values()
            )
            outcome = InstanceStatus.REJECTED if rejected_path else InstanceStatus.APPROVED
            self._finish(instance, outcome, effects, end_node=node.id)
            return

        now = self._clock.now()
        if node.type is NodeType.APPROVAL:
            config = self._approval_config(instance, node.id)
            step = StepState(
                node_id=node.id,
                status=StepStatus.ACTIVATED,
                activated_at=now,
                pending_resolution=ResolutionPurpose.INITIAL,
            )
            if config.timeout_seconds:
                step.deadline = now + timedelta(seconds=config.timeout_seconds)
                effects.register_timer(node.id, step.deadline)
            instance.step_states[node.id] = step
            instance.current_node_ids.add(node.id)
            self._audit.append(instance.id, AuditKind.STEP_ACTIVATED, {
                "step_id": node.id,
                "type": node.type.value,
                "decision_policy": str(config.decision_policy),
                "deadline": _iso(step.deadline),
            })
            logger.info(
                "step_activated",
                extra={"step": node.id, "deadline": _iso(step.deadline)},
            )
            effects.resolve(node.id, ResolutionPurpose.INITIAL)
            return

        # Condition and Notification nodes complete on activation
        step = StepState(
            node_id=node.id,
            status=StepStatus.COMPLETED,
            activated_at=now,
            completed_at=now,
        )
        instance.step_states[node.id] = step
        self._audit.append(instance.id, AuditKind.STEP_ACTIVATED, {
            "step_id": node.id,
            "type": node.type.value,
        })
        if node.type is NodeType.NOTIFICATION:
            config = node.config
            if not isinstance(config, NotificationConfig):
                raise EngineInvariantError(str(instance.id), f"{node.id} has no notification template")
            self._audit.append(instance.id, AuditKind.NOTIFICATION_SENT, {
                "step_id": node.id,
                "template": config.template,
            })
            effects.notify(NotificationEvent.NOTIFICATION, {
                "step_id": node.id,
                "template": config.template,
                "requester": instance.requester,
                "title": instance.title,
            })
        self._audit.append(instance.id, AuditKind.STEP_COMPLETED, {"step_id": node.id})
        self._advance(instance, index, node.id, effects)

    def _set_status(self, instance: RequestInstance, status: InstanceStatus) -> None:
        if not instance.can_transition(status):
            raise EngineInvariantError(
                str(instance.id),
                f"illegal status change {instance.status.value} -> {status.value}",
            )
        instance.status = status

    def _close_step(
        self,
        instance: RequestInstance,
        step: StepState,
        status: StepStatus,
        effects: _Effects,
    ) -> None:
        step.transition(status)
        step.completed_at = self._clock.now()
        step.pending_resolution = None
        effects.cancel_timer(step.timer_handle)
        step.timer_handle = None
        instance.current_node_ids.discard(step.node_id)

    def _finish(
        self,
        instance: RequestInstance,
        status: InstanceStatus,
        effects: _Effects,
        end_node: str | None = None,
        actor: str | None = None,
    ) -> None:
        """Move to a terminal status, halt open steps and seal the trail."""
        for node_id in sorted(instance.current_node_ids):
            step = instance.step_states[node_id]
            effects.cancel_timer(step.timer_handle)
            step.timer_handle = None
            step.pending_resolution = None
            self._audit.append(instance.id, AuditKind.STEP_HALTED, {"step_id": node_id})
        instance.current_node_ids.clear()
        self._set_status(instance, status)
        instance.completed_at = self._clock.now()
        instance.blocked_reason = None

        kind = {
            InstanceStatus.APPROVED: AuditKind.INSTANCE_APPROVED,
            InstanceStatus.REJECTED: AuditKind.INSTANCE_REJECTED,
            InstanceStatus.CANCELLED: AuditKind.INSTANCE_CANCELLED,
        }[status]
        payload: dict[str, Any] = {"status": status.value}
        if end_node is not None:
            payload["end_node"] = end_node
        if actor is not None:
            payload["actor"] = actor
        self._audit.append(instance.id, kind, payload)
        self._audit.seal(instance.id)

        logger.info("instance_finished", extra={"status": status.value})
        notice = {"status": status.value, "requester": instance.requester, "title": instance.title}
        if status is InstanceStatus.CANCELLED:
            effects.notify(NotificationEvent.CANCELLED, {**notice, "actor": actor})
        else:
            event = (
                NotificationEvent.APPROVED
                if status is InstanceStatus.APPROVED
                else NotificationEvent.REJECTED
            )
            effects.notify(event, notice)
            effects.notify(NotificationEvent.COMPLETED, notice)

    def _block_step(
        self,
        instance: RequestInstance,
        step: StepState,
        reason: str,
        effects: _Effects,
    ) -> None:
        step.blocked = True
        step.pending_resolution = None
        effects.cancel_timer(step.timer_handle)
        step.timer_handle = None
        self._audit.append(instance.id, AuditKind.STEP_BLOCKED, {
            "step_id": step.node_id,
            "reason": reason,
        })
        self._block_instance(instance, reason, effects, node_id=step.node_id)

    def _block_instance(
        self,
        instance: RequestInstance,
        reason: str,
        effects: _Effects,
        node_id: str | None = None,
    ) -> None:
        self._set_status(instance, InstanceStatus.BLOCKED)
        instance.blocked_reason = reason
        self._audit.append(instance.id, AuditKind.INSTANCE_BLOCKED, {
            "node_id": node_id,
            "reason": reason,
        })
        logger.warning("instance_blocked", extra={"node": node_id, "reason": reason})
        effects.notify(NotificationEvent.BLOCKED, {"node_id": node_id, "reason": reason})

    # ------------------------------------------------------------------
    # Approver resolution
    # ------------------------------------------------------------------

    def _resolve_step(
        self,
        instance_id: UUID,
        node_id: str,
        purpose: ResolutionPurpose,
    ) -> _Effects:
        """Resolve a step's approvers outside the lock and apply the result."""
        with self._lock_for(instance_id):
            instance = self._get(instance_id)
            step = instance.step_states.get(node_id)
            if instance.is_terminal or step is None or step.pending_resolution is not purpose:
                return _Effects()
            config = self._approval_config(instance, node_id)
            if purpose is ResolutionPurpose.ESCALATION:
                refs = _escalation_of(instance, node_id, config).escalate_to
            else:
                refs = config.approvers
            context = ResolutionContext(
                requester=instance.requester,
                instance_id=str(instance_id),
                step_id=node_id,
            )

        try:
            resolved = self._resolver.resolve_all(refs, context)
        except DirectoryUnavailableError as exc:
            with self._locked(instance_id) as (instance, effects):
                self._defer_resolution(instance, node_id, purpose, exc, effects)
            return effects

        with self._locked(instance_id) as (instance, effects):
            self._apply_resolution(instance, node_id, purpose, resolved, effects)
        return effects

    def _defer_resolution(
        self,
        instance: RequestInstance,
        node_id: str,
        purpose: ResolutionPurpose,
        exc: DirectoryUnavailableError,
        effects: _Effects,
    ) -> None:
        step = instance.step_states.get(node_id)
        if instance.is_terminal or step is None or step.pending_resolution is not purpose:
            return
        step.resolution_attempts += 1
        delay = min(
            self._retry_base_seconds * 2 ** (step.resolution_attempts - 1),
            self._retry_max_seconds,
        )
        step.next_resolution_at = self._clock.now() + timedelta(seconds=delay)
        self._audit.append(instance.id, AuditKind.RESOLUTION_DEFERRED, {
            "step_id": node_id,
            "purpose": purpose.value,
            "attempt": step.resolution_attempts,
            "next_attempt_at": _iso(step.next_resolution_at),
            "reason": str(exc),
        })
        logger.warning(
            "approver_resolution_deferred",
            extra={
                "step": node_id,
                "attempt": step.resolution_attempts,
                "retry_in_seconds": delay,
            },
        )
        if self._retry_limit and step.resolution_attempts >= self._retry_limit:
            self._block_step(
                instance,
                step,
                f"directory unavailable after {step.resolution_attempts} attempts",
                effects,
            )

    def _apply_resolution(
        self,
        instance: RequestInstance,
        node_id: str,
        purpose: ResolutionPurpose,
        resolved: ResolvedApprovers,
        effects: _Effects,
    ) -> None:
        step = instance.step_states.get(node_id)
        if instance.is_terminal or step is None or step.pending_resolution is not purpose:
            return
        step.pending_resolution = None
        step.resolution_attempts = 0
        step.next_resolution_at = None

        if resolved.is_empty or resolved.empty_required_refs:
            empty = [f"{r.kind.value}:{r.value}" for r in resolved.empty_required_refs]
            detail = ", ".join(empty) if empty else "all references"
            self._block_step(
                instance, step, f"approver set empty for {detail}", effects
            )
            return

        original = sorted(step.resolved_approvers)
        step.resolved_approvers |= resolved.principals
        if purpose is ResolutionPurpose.ESCALATION:
            step.required_approvers = set(resolved.principals)
        elif not step.escalated:
            step.required_approvers = set(resolved.required)

        self._audit.append(instance.id, AuditKind.APPROVERS_RESOLVED, {
            "step_id": node_id,
            "purpose": purpose.value,
            "principals": sorted(resolved.principals),
            "required": sorted(step.required_approvers),
        })
        logger.info(
            "approvers_resolved",
            extra={
                "step": node_id,
                "purpose": purpose.value,
                "principal_count": len(resolved.principals),
            },
        )

        if purpose is ResolutionPurpose.ESCALATION:
            config = self._approval_config(instance, node_id)
            escalation = _escalation_of(instance, node_id, config)
            payload: dict[str, Any] = {
                "step_id": node_id,
                "escalated_to": sorted(resolved.principals),
                "deadline": _iso(step.deadline),
                "notify_original_approvers": escalation.notify_original_approvers,
            }
            if escalation.notify_original_approvers:
                payload["original_approvers"] = original
            effects.notify(NotificationEvent.ESCALATED, payload)

    def tick(self, now: datetime | None = None) -> int:
        """
        Retry approver resolutions deferred by Directory outages.

        Returns:
            Number of steps whose resolution was attempted.
        """
        now = now or self._clock.now()
        with self._registry_lock:
            instance_ids = list(self._instances)
        attempted = 0
        for instance_id in instance_ids:
            due: list[tuple[str, ResolutionPurpose]] = []
            with self._lock_for(instance_id):
                instance = self._instances[instance_id]
                if instance.is_terminal:
                    continue
                for step in instance.open_steps():
                    if step.pending_resolution is None or step.blocked:
                        continue
                    if step.next_resolution_at is None or step.next_resolution_at <= now:
                        due.append((step.node_id, step.pending_resolution))
            for node_id, purpose in due:
                attempted += 1
                with LogContext.bind(instance_id=instance_id, step_id=node_id):
                    self._run_effects(instance_id, _Effects([_Resolve(node_id, purpose)]))
        if attempted:
            logger.info("tick_retried_resolutions", extra={"attempted": attempted})
        return attempted

    def run_due(self, now: datetime | None = None) -> int:
        """
        One scheduler pass: fire expired deadlines, then ``tick``.

        Deadlines are only fired here when the timer is polled (it exposes
        ``fire_due``); a pushing timer delivers them on its own.

        Returns:
            Deadlines fired plus resolutions attempted.
        """
        now = now or self._clock.now()
        fired = 0
        fire_due = getattr(self._timer, "fire_due", None)
        if fire_due is not None:
            fired = fire_due(now)
        return fired + self.tick(now)

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def record_decision(
        self,
        instance_id: UUID,
        step_id: str,
        principal: str,
        action: DecisionAction | str,
        comment: str | None = None,
        delegate_to: str | None = None,
    ) -> InstanceStatus:
        """
        Record one principal's decision on an approval step.

        Returns:
            The instance status after the decision was applied.

        Raises:
            InstanceTerminalError: Instance is approved, rejected or cancelled.
            StepNotActiveError: Step never activated or is not an approval step.
            UnauthorizedPrincipalError: Principal is not a resolved approver.
            DuplicateDecisionError: Principal already approved/rejected/delegated.
            StepBlockedError: Step awaits operator reassignment.
            InvalidDecisionError: Delegate without a valid target.
        """
        action = DecisionAction(action)
        with LogContext.bind(actor_id=principal, step_id=step_id):
            with self._locked(instance_id) as (instance, effects):
                status = self._apply_decision(
                    instance, step_id, principal, action, comment, delegate_to, effects
                )
            self._run_effects(instance_id, effects)
        return status

    def _apply_decision(
        self,
        instance: RequestInstance,
        step_id: str,
        principal: str,
        action: DecisionAction,
        comment: str | None,
        delegate_to: str | None,
        effects: _Effects,
    ) -> InstanceStatus:
        if instance.is_terminal:
            raise InstanceTerminalError(str(instance.id), instance.status.value)
        index = self._definitions.index(instance.definition_id, instance.definition_version)
        step = instance.step_states.get(step_id)
        if (
            step is None
            or not index.has_node(step_id)
            or index.node(step_id).type is not NodeType.APPROVAL
        ):
            raise StepNotActiveError(str(instance.id), step_id)
        if principal not in step.resolved_approvers:
            raise UnauthorizedPrincipalError(str(instance.id), step_id, principal)
        if action is not DecisionAction.COMMENT and step.has_final_decision(principal):
            raise DuplicateDecisionError(str(instance.id), step_id, principal)
        if action is not DecisionAction.COMMENT and step.is_open and step.blocked:
            raise StepBlockedError(str(instance.id), step_id)
        if action is DecisionAction.DELEGATE:
            if not delegate_to or delegate_to == principal:
                raise InvalidDecisionError(step_id, "delegate_to must name another principal")
            if not step.is_open:
                raise StepNotActiveError(str(instance.id), step_id)

        decision = Decision(
            principal=principal,
            action=action,
            timestamp=self._clock.now(),
            comment=comment,
            delegate_to=delegate_to if action is DecisionAction.DELEGATE else None,
        )
        step.decisions.append(decision)
        self._audit.append(instance.id, AuditKind.DECISION_RECORDED, {
            "step_id": step_id,
            "principal": principal,
            "action": action.value,
            "comment": comment,
            "delegate_to": decision.delegate_to,
        })
        logger.info(
            "decision_recorded",
            extra={"step": step_id, "action": action.value, "step_open": step.is_open},
        )

        if not step.is_open or action is DecisionAction.COMMENT:
            return instance.status

        if action is DecisionAction.DELEGATE:
            if delegate_to is None:
                raise EngineInvariantError(str(instance.id), "delegation without a delegate")
            step.resolved_approvers.add(delegate_to)
            self._set_status(instance, InstanceStatus.DELEGATED)
            effects.notify(NotificationEvent.DELEGATED, {
                "step_id": step_id,
                "from": principal,
                "to": delegate_to,
                "comment": comment,
            })
            return instance.status

        config = self._approval_config(instance, step_id)
        evaluation = evaluate_step(
            config.decision_policy,
            step.resolved_approvers,
            step.required_approvers,
            step.decisions,
        )
        if evaluation.outcome is StepOutcome.COMPLETED:
            self._complete_step(
                instance, index, step, evaluation.reason, evaluation.approvals, effects
            )
        elif evaluation.outcome is StepOutcome.REJECTED:
            self._close_step(instance, step, StepStatus.STEP_REJECTED, effects)
            self._audit.append(instance.id, AuditKind.STEP_REJECTED, {
                "step_id": step_id,
                "reason": evaluation.reason,
            })
            logger.info("step_rejected", extra={"step": step_id, "reason": evaluation.reason})
            self._finish(instance, InstanceStatus.REJECTED, effects)
        return instance.status

    def _complete_step(
        self,
        instance: RequestInstance,
        index: GraphIndex,
        step: StepState,
        reason: str,
        approvals: int,
        effects: _Effects,
    ) -> None:
        self._close_step(instance, step, StepStatus.COMPLETED, effects)
        self._audit.append(instance.id, AuditKind.STEP_COMPLETED, {
            "step_id": step.node_id,
            "reason": reason,
            "approvals": approvals,
        })
        logger.info("step_completed", extra={"step": step.node_id})
        if instance.status in (InstanceStatus.ESCALATED, InstanceStatus.DELEGATED):
            self._set_status(instance, InstanceStatus.PENDING)
        self._advance(instance, index, step.node_id, effects)

    # ------------------------------------------------------------------
    # Timeouts
    # ------------------------------------------------------------------

    def handle_timeout(self, instance_id: UUID, step_id: str) -> InstanceStatus:
        """
        Apply an expired deadline.  Safe to call any number of times.

        No-op when the instance is terminal, the step is closed or blocked,
        or the step's current deadline has not passed yet (a stale or
        duplicate delivery after escalation re-armed the deadline).
        """
        with LogContext.bind(step_id=step_id):
            with self._locked(instance_id) as (instance, effects):
                self._apply_timeout(instance, step_id, effects)
                status = instance.status
            self._run_effects(instance_id, effects)
        return status

    def _apply_timeout(
        self,
        instance: RequestInstance,
        step_id: str,
        effects: _Effects,
    ) -> None:
        step = instance.step_states.get(step_id)
        now = self._clock.now()
        if (
            instance.is_terminal
            or step is None
            or not step.is_open
            or step.blocked
            or step.deadline is None
            or now < step.deadline
        ):
            logger.info("timeout_ignored", extra={"status": instance.status.value})
            return

        config = self._approval_config(instance, step_id)
        effects.cancel_timer(step.timer_handle)
        step.timer_handle = None

        if config.escalation is not None and not step.escalated:
            step.escalated = True
            step.deadline = now + timedelta(seconds=config.escalation.after_seconds)
            step.pending_resolution = ResolutionPurpose.ESCALATION
            step.resolution_attempts = 0
            step.next_resolution_at = None
            self._set_status(instance, InstanceStatus.ESCALATED)
            self._audit.append(instance.id, AuditKind.STEP_ESCALATED, {
                "step_id": step_id,
                "new_deadline": _iso(step.deadline),
            })
            logger.info("step_escalated", extra={"new_deadline": _iso(step.deadline)})
            effects.register_timer(step_id, step.deadline)
            effects.resolve(step_id, ResolutionPurpose.ESCALATION)
            return

        reason = (
            "deadline expired after escalation"
            if step.escalated
            else "deadline expired with no escalation configured"
        )
        self._block_step(instance, step, reason, effects)

    # ------------------------------------------------------------------
    # Cancellation and operator intervention
    # ------------------------------------------------------------------

    def cancel(self, instance_id: UUID, actor: str | None = None) -> InstanceStatus:
        """
        Cancel a non-terminal instance and all of its pending timers.

        Raises:
            InstanceTerminalError: The instance is already terminal.
        """
        with LogContext.bind(actor_id=actor):
            with self._locked(instance_id) as (instance, effects):
                if instance.is_terminal:
                    raise InstanceTerminalError(str(instance.id), instance.status.value)
                self._finish(instance, InstanceStatus.CANCELLED, effects, actor=actor)
            self._run_effects(instance_id, effects)
        return InstanceStatus.CANCELLED

    def reassign(
        self,
        instance_id: UUID,
        step_id: str,
        principals: set[str] | list[str] | tuple[str, ...],
        actor: str,
    ) -> InstanceStatus:
        """
        Install an explicit approver set on an open approval step.

        Clears a blocked step, re-arms its deadline and returns the instance
        to pending.  The step's escalation allowance is not restored.

        Raises:
            EmptyApproverSetError: ``principals`` is empty.
            InstanceTerminalError: The instance is terminal.
            StepNotActiveError: The step is not an open approval step.
        """
        chosen = {p for p in principals if p}
        if not chosen:
            raise EmptyApproverSetError(step_id)
        with LogContext.bind(actor_id=actor, step_id=step_id):
            with self._locked(instance_id) as (instance, effects):
                if instance.is_terminal:
                    raise InstanceTerminalError(str(instance.id), instance.status.value)
                index = self._definitions.index(
                    instance.definition_id, instance.definition_version
                )
                step = instance.step_states.get(step_id)
                if (
                    step is None
                    or not step.is_open
                    or index.node(step_id).type is not NodeType.APPROVAL
                ):
                    raise StepNotActiveError(str(instance.id), step_id)
                self._apply_reassignment(instance, index, step, chosen, actor, effects)
                status = instance.status
            self._run_effects(instance_id, effects)
        return status

    def _apply_reassignment(
        self,
        instance: RequestInstance,
        index: GraphIndex,
        step: StepState,
        chosen: set[str],
        actor: str,
        effects: _Effects,
    ) -> None:
        config = self._approval_config(instance, step.node_id)
        now = self._clock.now()

        step.resolved_approvers |= chosen
        step.required_approvers = set(chosen)
        step.blocked = False
        step.pending_resolution = None
        step.resolution_attempts = 0
        step.next_resolution_at = None
        effects.cancel_timer(step.timer_handle)
        step.timer_handle = None
        step.deadline = None
        if config.timeout_seconds:
            step.deadline = now + timedelta(seconds=config.timeout_seconds)
            effects.register_timer(step.node_id, step.deadline)

        if instance.status is InstanceStatus.BLOCKED:
            self._set_status(instance, InstanceStatus.PENDING)
        instance.blocked_reason = None
        self._audit.append(instance.id, AuditKind.STEP_REASSIGNED, {
            "step_id": step.node_id,
            "actor": actor,
            "principals": sorted(chosen),
            "deadline": _iso(step.deadline),
        })
        logger.info(
            "step_reassigned",
            extra={"step": step.node_id, "principal_count": len(chosen)},
        )

        evaluation = evaluate_step(
            config.decision_policy,
            step.resolved_approvers,
            step.required_approvers,
            step.decisions,
        )
        if evaluation.outcome is StepOutcome.COMPLETED:
            self._complete_step(
                instance, index, step, evaluation.reason, evaluation.approvals, effects
            )

    # ------------------------------------------------------------------
    # Queries and recovery
    # ------------------------------------------------------------------

    def get_instance(self, instance_id: UUID) -> RequestInstance:
        """Deep copy of the instance's current state."""
        with self._lock_for(instance_id):
            return copy.deepcopy(self._get(instance_id))

    def get_audit_trail(self, instance_id: UUID) -> tuple[AuditEntry, ...]:
        self._get(instance_id)
        return self._audit.entries(instance_id)

    def snapshot(self, instance_id: UUID) -> dict[str, Any]:
        """JSON-compatible snapshot of the instance and its audit trail."""
        with self._lock_for(instance_id):
            instance = self._get(instance_id)
            return build_snapshot(instance, self._audit.entries(instance_id))

    def list_instances(self, status: InstanceStatus | None = None) -> list[UUID]:
        with self._registry_lock:
            instances = list(self._instances.values())
        return [
            i.id
            for i in sorted(instances, key=lambda i: (i.created_at, str(i.id)))
            if status is None or i.status is status
        ]

    def load_instance(self, instance_id: UUID) -> RequestInstance:
        """
        Load a persisted instance into this engine and re-arm its deadlines.

        Raises:
            InstanceNotFoundError: No repository, or no stored instance.
            AuditChainBrokenError: The stored audit trail does not verify.
        """
        if self._repository is None:
            raise InstanceNotFoundError(str(instance_id))
        loaded = self._repository.load(instance_id)
        if loaded is None:
            raise InstanceNotFoundError(str(instance_id))
        instance, entries = loaded
        self._audit.restore(instance.id, entries, sealed=instance.is_terminal)

        effects = _Effects()
        for step in instance.open_steps():
            step.timer_handle = None
            if step.deadline is not None and not step.blocked:
                effects.register_timer(step.node_id, step.deadline)
        with self._registry_lock:
            self._instances[instance.id] = instance
        logger.info("instance_loaded", extra={"status": instance.status.value})
        self._run_effects(instance.id, effects)
        return self.get_instance(instance.id)

    def _approval_config(self, instance: RequestInstance, node_id: str) -> ApprovalConfig:
        index = self._definitions.index(instance.definition_id, instance.definition_version)
        config = index.node(node_id).config
        if not isinstance(config, ApprovalConfig):
            raise EngineInvariantError(str(instance.id), f"{node_id} is not an approval node")
        return config


def _escalation_of(instance: RequestInstance, node_id: str, config: ApprovalConfig) -> Escalation:
    if config.escalation is None:
        raise EngineInvariantError(str(instance.id), f"{node_id} has no escalation")
    return config.escalation


# ---------------------------------------------------------------------------
# Field conversion
# ---------------------------------------------------------------------------


def _convert_field(name: str, raw: Any, spec: FieldSpec | None) -> TypedValue:
    expected = spec.kind.value if spec is not None else "string|number|bool|date"
    try:
        if isinstance(raw, Mapping) and set(raw) == {"kind", "value"}:
            value = TypedValue.from_dict(dict(raw))
        elif spec is not None and spec.kind is ValueKind.DATE and isinstance(raw, str):
            value = TypedValue.of_date(raw)
        else:
            value = TypedValue.infer(raw)
    except (TypeError, ValueError) as exc:
        raise FieldKindMismatchError(name, expected, type(raw).__name__) from exc

    if spec is not None and value.kind is not spec.kind:
        raise FieldKindMismatchError(name, spec.kind.value, value.kind.value)
    return value


def _convert_fields(
    definition_id: str,
    specs: tuple[FieldSpec, ...],
    raw_fields: Mapping[str, Any],
) -> dict[str, TypedValue]:
    """Convert submitted values to ``TypedValue`` and check declarations.

    Undeclared fields are accepted as-is; a condition that later needs a
    missing field simply does not match.
    """
    by_name = {spec.name: spec for spec in specs}
    for spec in specs:
        if spec.required and raw_fields.get(spec.name) is None:
            raise MissingFieldError(definition_id, spec.name)
    return {
        name: _convert_field(name, raw, by_name.get(name))
        for name, raw in raw_fields.items()
        if raw is not None
    }
