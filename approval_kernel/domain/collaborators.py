"""
Collaborator ports (``approval_kernel.domain.collaborators``).

Responsibility
--------------
Narrow interfaces for the three external systems the engine consumes:
identity lookup (Directory), event delivery (Notifier) and deadline
scheduling (Timer).  The engine depends only on these protocols;
in-process implementations live in ``approval_services.collaborators``.

Architecture position
---------------------
**Kernel domain layer** -- protocol definitions only.  ZERO I/O.

Failure modes
-------------
* ``Directory.lookup`` raises ``DirectoryUnavailableError``; the engine
  leaves the step awaiting resolution and retries on ``tick()``.
* ``Notifier.notify`` may raise anything; the engine logs and continues.
* ``Timer`` callbacks may be delivered more than once and after the step
  closed; ``handle_timeout`` tolerates both.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from enum import Enum
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from approval_kernel.domain.graph import ApproverKind


class NotificationEvent(str, Enum):
    """Events the engine emits to the Notifier."""

    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    ESCALATED = "escalated"
    DELEGATED = "delegated"
    COMPLETED = "completed"
    NOTIFICATION = "notification"
    CANCELLED = "cancelled"
    BLOCKED = "blocked"


TimeoutCallback = Callable[[UUID, str], Any]


# =========================================================================
# Directory
# =========================================================================


@runtime_checkable
class Directory(Protocol):
    """Pluggable identity / organization lookup."""

    def lookup(self, kind: ApproverKind, value: str) -> set[str]:
        """Return the principals for ``kind``/``value``.

        For ``MANAGER`` the value is the principal whose reporting line is
        followed.  Raises ``DirectoryUnavailableError`` on outage.
        """
        ...


# =========================================================================
# Notifier
# =========================================================================


@runtime_checkable
class Notifier(Protocol):
    """Fire-and-forget event sink."""

    def notify(
        self,
        event: NotificationEvent,
        instance_id: UUID,
        payload: dict[str, Any],
    ) -> None:
        ...


# =========================================================================
# Timer
# =========================================================================


@runtime_checkable
class Timer(Protocol):
    """Deadline scheduler delivering ``on_timeout(instance_id, step_id)``.

    Registration and cancellation must be idempotent; cancelling an unknown
    or already-fired handle is a no-op.
    """

    def register_deadline(self, instance_id: UUID, step_id: str, at: datetime) -> str:
        ...

    def cancel(self, handle: str) -> None:
        ...

    def set_callback(self, callback: TimeoutCallback) -> None:
        ...
