"""
Deterministic hashing utilities.

Audit entries are chained by hash; the chain is only verifiable if every
payload hashes identically on every run.  This module provides the
canonical encoding used for that.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

GENESIS_HASH = "GENESIS"


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, Decimal):
        # Normalized so that 500 and 500.00 hash identically
        return str(obj.normalize())
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=str)

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON string.

    Keys are sorted, whitespace is dropped, and Decimal, datetime, UUID,
    enum and set values are encoded consistently.
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def hash_payload(payload: dict) -> str:
    """Hex-encoded SHA-256 of the canonical JSON form of ``payload``."""
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def hash_audit_entry(
    instance_id: str,
    seq: int,
    kind: str,
    timestamp: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """
    Compute the chained hash for one audit entry.

    The hash covers the entry's identity, its payload hash and the previous
    entry's hash, so altering or reordering any entry breaks every later
    link.

    Args:
        instance_id: Owning request instance.
        seq: Instance-local sequence number.
        kind: Audit entry kind.
        timestamp: ISO-8601 timestamp of the entry.
        payload_hash: ``hash_payload`` of the entry payload.
        prev_hash: Hash of the previous entry (None for the first).

    Returns:
        Hex-encoded SHA-256 hash.
    """
    components = [
        str(instance_id),
        str(seq),
        kind,
        timestamp,
        payload_hash,
        prev_hash or GENESIS_HASH,
    ]
    data = "|".join(components)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def hash_definition(definition_dict: dict) -> str:
    """Content hash of a workflow definition, used as its checksum."""
    return hash_payload(definition_dict)
