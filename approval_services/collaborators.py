"""
approval_services.collaborators -- In-process Directory, Notifier and Timer.

Responsibility:
    Reference implementations of the collaborator protocols in
    ``approval_kernel.domain.collaborators`` for tests and single-process
    deployments:

    - ``StaticDirectory``: dict-backed roles, departments and reporting lines,
      with an outage switch for exercising retry paths.
    - ``LoggingNotifier``: writes each event as a structured log record.
    - ``RecordingNotifier``: keeps every event in memory.
    - ``InMemoryTimer``: deadline table driven by ``fire_due(now)``.

Architecture position:
    Services layer.  Replaceable by LDAP/HR, message-bus and scheduler
    backed implementations without touching the engine.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from approval_kernel.domain.collaborators import NotificationEvent, TimeoutCallback
from approval_kernel.domain.graph import ApproverKind
from approval_kernel.exceptions import ApprovalEngineError, DirectoryUnavailableError
from approval_kernel.logging_config import get_logger

logger = get_logger("services.collaborators")


# ---------------------------------------------------------------------------
# Directory
# ---------------------------------------------------------------------------


class StaticDirectory:
    """Directory backed by plain dicts.

    ``managers`` maps a principal to their manager(s).  ``fail_next`` makes
    the next N lookups raise ``DirectoryUnavailableError``; ``available``
    toggles a sustained outage.
    """

    def __init__(
        self,
        roles: dict[str, set[str]] | None = None,
        departments: dict[str, set[str]] | None = None,
        managers: dict[str, set[str] | str] | None = None,
    ) -> None:
        self._roles = {k: set(v) for k, v in (roles or {}).items()}
        self._departments = {k: set(v) for k, v in (departments or {}).items()}
        self._managers: dict[str, set[str]] = {}
        for principal, manager in (managers or {}).items():
            self._managers[principal] = {manager} if isinstance(manager, str) else set(manager)
        self._lock = threading.Lock()
        self.available = True
        self.fail_next = 0
        self.lookup_count = 0

    def lookup(self, kind: ApproverKind, value: str) -> set[str]:
        with self._lock:
            self.lookup_count += 1
            if not self.available:
                raise DirectoryUnavailableError(kind.value, value, "directory offline")
            if self.fail_next > 0:
                self.fail_next -= 1
                raise DirectoryUnavailableError(kind.value, value, "transient failure")
            if kind is ApproverKind.ROLE:
                return set(self._roles.get(value, ()))
            if kind is ApproverKind.DEPARTMENT:
                return set(self._departments.get(value, ()))
            if kind is ApproverKind.MANAGER:
                return set(self._managers.get(value, ()))
            return {value} if value else set()

    def add_role_member(self, role: str, principal: str) -> None:
        with self._lock:
            self._roles.setdefault(role, set()).add(principal)


# ---------------------------------------------------------------------------
# Notifiers
# ---------------------------------------------------------------------------


class LoggingNotifier:
    """Notifier that emits each event as a structured log record."""

    def notify(
        self,
        event: NotificationEvent,
        instance_id: UUID,
        payload: dict[str, Any],
    ) -> None:
        logger.info(
            "notification_emitted",
            extra={
                "event": event.value,
                "notified_instance": str(instance_id),
                "payload": payload,
            },
        )


@dataclass(frozen=True)
class RecordedNotification:
    event: NotificationEvent
    instance_id: UUID
    payload: dict[str, Any]


class RecordingNotifier:
    """Notifier that records every event; ``fail`` makes it raise instead."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: list[RecordedNotification] = []
        self.fail = False

    def notify(
        self,
        event: NotificationEvent,
        instance_id: UUID,
        payload: dict[str, Any],
    ) -> None:
        if self.fail:
            raise RuntimeError("notifier offline")
        with self._lock:
            self._events.append(RecordedNotification(event, instance_id, dict(payload)))

    @property
    def events(self) -> list[RecordedNotification]:
        with self._lock:
            return list(self._events)

    def events_for(
        self,
        instance_id: UUID,
        event: NotificationEvent | None = None,
    ) -> list[RecordedNotification]:
        return [
            n for n in self.events
            if n.instance_id == instance_id and (event is None or n.event is event)
        ]


# ---------------------------------------------------------------------------
# Timer
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScheduledDeadline:
    handle: str
    instance_id: UUID
    step_id: str
    at: datetime


class InMemoryTimer:
    """Deadline table; ``fire_due(now)`` delivers expired deadlines.

    Delivery is at-least-once: ``deliver(handle)`` re-sends a deadline that
    already fired, the way a redelivering scheduler would.
    """

    def __init__(self, callback: TimeoutCallback | None = None) -> None:
        self._lock = threading.Lock()
        self._pending: dict[str, ScheduledDeadline] = {}
        self._fired: dict[str, ScheduledDeadline] = {}
        self._callback = callback

    def set_callback(self, callback: TimeoutCallback) -> None:
        self._callback = callback

    def register_deadline(self, instance_id: UUID, step_id: str, at: datetime) -> str:
        handle = str(uuid4())
        with self._lock:
            self._pending[handle] = ScheduledDeadline(handle, instance_id, step_id, at)
        logger.debug(
            "deadline_registered",
            extra={"handle": handle, "step": step_id, "at": at.isoformat()},
        )
        return handle

    def cancel(self, handle: str) -> None:
        with self._lock:
            self._pending.pop(handle, None)

    def pending(self) -> list[ScheduledDeadline]:
        with self._lock:
            return sorted(self._pending.values(), key=lambda d: (d.at, d.handle))

    def fire_due(self, now: datetime) -> int:
        """Deliver every deadline at or before ``now``; returns the count."""
        with self._lock:
            due = sorted(
                (d for d in self._pending.values() if d.at <= now),
                key=lambda d: (d.at, d.handle),
            )
            for deadline in due:
                del self._pending[deadline.handle]
                self._fired[deadline.handle] = deadline
        for deadline in due:
            self._dispatch(deadline)
        return len(due)

    def deliver(self, handle: str) -> None:
        """Deliver (or redeliver) one deadline regardless of its time."""
        with self._lock:
            deadline = self._pending.pop(handle, None) or self._fired.get(handle)
            if deadline is None:
                raise KeyError(handle)
            self._fired[handle] = deadline
        self._dispatch(deadline)

    def _dispatch(self, deadline: ScheduledDeadline) -> None:
        if self._callback is None:
            logger.warning("timer_without_callback", extra={"handle": deadline.handle})
            return
        try:
            self._callback(deadline.instance_id, deadline.step_id)
        except ApprovalEngineError:
            logger.exception(
                "timeout_delivery_failed",
                extra={"handle": deadline.handle, "step": deadline.step_id},
            )
