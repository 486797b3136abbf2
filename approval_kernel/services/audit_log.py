"""
AuditLog -- per-instance, hash-chained, append-only audit trail.

Responsibility:
    Records every state change of a request instance as an ``AuditEntry``
    with an instance-local sequence number and a hash link to the previous
    entry.  Provides chain verification and sealing of finished trails.

Architecture position:
    Kernel > Services -- called by the execution engine while it holds the
    instance lock.  Persistence of entries is the instance repository's job;
    this service keeps the authoritative in-process trail.

Invariants enforced:
    - Ordering: ``seq`` starts at 1 and increases by exactly 1 per instance.
      Entries are never ordered by wall-clock time.
    - Chain: ``hash = H(instance_id | seq | kind | timestamp | payload_hash |
      prev_hash)``; ``prev_hash`` of seq 1 is None.
    - Append-only: entries are frozen; ``entries()`` returns a tuple copy.
    - Sealing: once sealed (instance terminal), ``append`` raises.

Failure modes:
    - AuditLogSealedError on append to a sealed trail.
    - AuditChainBrokenError from ``verify_chain`` on any mismatch.

Concurrency:
    One lock per trail; appends to different instances never contend.  The
    registry lock only guards trail creation.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from approval_kernel.domain.audit import AuditEntry, AuditKind
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.exceptions import AuditChainBrokenError, AuditLogSealedError
from approval_kernel.logging_config import get_logger
from approval_kernel.utils.hashing import hash_audit_entry, hash_payload

logger = get_logger("services.audit_log")


def compute_entry_hash(
    instance_id: UUID,
    seq: int,
    kind: AuditKind,
    timestamp_iso: str,
    payload: dict[str, Any],
    prev_hash: str | None,
) -> str:
    return hash_audit_entry(
        instance_id=str(instance_id),
        seq=seq,
        kind=kind.value,
        timestamp=timestamp_iso,
        payload_hash=hash_payload(payload),
        prev_hash=prev_hash,
    )


def verify_entries(instance_id: UUID, entries: Sequence[AuditEntry]) -> bool:
    """
    Validate sequence numbering and hash linkage of one instance's trail.

    Raises:
        AuditChainBrokenError: At the first entry that does not verify.
    """
    prev_hash: str | None = None
    for expected_seq, entry in enumerate(entries, start=1):
        if entry.seq != expected_seq or entry.prev_hash != prev_hash:
            logger.critical(
                "audit_chain_broken",
                extra={"instance_id": str(instance_id), "seq": entry.seq},
            )
            raise AuditChainBrokenError(
                str(instance_id), entry.seq, str(prev_hash), str(entry.prev_hash)
            )
        expected_hash = compute_entry_hash(
            instance_id,
            entry.seq,
            entry.kind,
            entry.timestamp.isoformat(),
            entry.payload,
            entry.prev_hash,
        )
        if entry.hash != expected_hash:
            logger.critical(
                "audit_chain_broken",
                extra={"instance_id": str(instance_id), "seq": entry.seq},
            )
            raise AuditChainBrokenError(
                str(instance_id), entry.seq, expected_hash, entry.hash
            )
        prev_hash = entry.hash
    return True


@dataclass
class _Trail:
    lock: threading.Lock = field(default_factory=threading.Lock)
    entries: list[AuditEntry] = field(default_factory=list)
    sealed: bool = False


class AuditLog:
    """
    In-process audit trail store, one hash chain per instance.

    Contract:
        ``append`` is safe to call concurrently for the same or different
        instances; entries for one instance are totally ordered by ``seq``.
    """

    def __init__(self, clock: Clock | None = None):
        self._clock = clock or SystemClock()
        self._trails: dict[UUID, _Trail] = {}
        self._registry_lock = threading.Lock()

    def _trail(self, instance_id: UUID) -> _Trail:
        trail = self._trails.get(instance_id)
        if trail is None:
            with self._registry_lock:
                trail = self._trails.setdefault(instance_id, _Trail())
        return trail

    def append(
        self,
        instance_id: UUID,
        kind: AuditKind,
        payload: dict[str, Any] | None = None,
    ) -> AuditEntry:
        """
        Append one entry to the instance's chain.

        Raises:
            AuditLogSealedError: If the trail has been sealed.
        """
        payload_data = dict(payload or {})
        trail = self._trail(instance_id)
        with trail.lock:
            if trail.sealed:
                raise AuditLogSealedError(str(instance_id))
            prev_hash = trail.entries[-1].hash if trail.entries else None
            seq = len(trail.entries) + 1
            timestamp = self._clock.now()
            entry_hash = compute_entry_hash(
                instance_id, seq, kind, timestamp.isoformat(), payload_data, prev_hash
            )
            entry = AuditEntry(
                instance_id=instance_id,
                seq=seq,
                timestamp=timestamp,
                kind=kind,
                payload=payload_data,
                prev_hash=prev_hash,
                hash=entry_hash,
            )
            trail.entries.append(entry)

        logger.debug(
            "audit_entry_appended",
            extra={"instance_id": str(instance_id), "seq": seq, "kind": kind.value},
        )
        return entry

    def entries(self, instance_id: UUID) -> tuple[AuditEntry, ...]:
        trail = self._trails.get(instance_id)
        if trail is None:
            return ()
        with trail.lock:
            return tuple(trail.entries)

    def seal(self, instance_id: UUID) -> None:
        """Close the trail; later appends raise ``AuditLogSealedError``."""
        trail = self._trail(instance_id)
        with trail.lock:
            trail.sealed = True
        logger.info("audit_log_sealed", extra={"instance_id": str(instance_id)})

    def is_sealed(self, instance_id: UUID) -> bool:
        trail = self._trails.get(instance_id)
        return trail is not None and trail.sealed

    def verify_chain(self, instance_id: UUID) -> bool:
        """
        Re-verify the instance's chain.

        Raises:
            AuditChainBrokenError: If any entry fails verification.
        """
        return verify_entries(instance_id, self.entries(instance_id))

    def restore(
        self,
        instance_id: UUID,
        entries: Iterable[AuditEntry],
        sealed: bool = False,
    ) -> None:
        """
        Install a previously persisted trail (after verifying it).

        Raises:
            AuditChainBrokenError: If the supplied entries do not verify.
        """
        entry_list = sorted(entries, key=lambda e: e.seq)
        verify_entries(instance_id, entry_list)
        trail = self._trail(instance_id)
        with trail.lock:
            trail.entries = list(entry_list)
            trail.sealed = sealed
