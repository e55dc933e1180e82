"""
Canonical serialization and SHA-256 hashing for the audit chain.

The chain is only verifiable if the same payload always produces the same
bytes, so every value the services put into ``changes`` goes through
``canonicalize_json`` before it is stored or hashed.
"""

import hashlib
import json
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

GENESIS_MARKER = "GENESIS"


def _encode(obj: Any) -> Any:
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, Decimal):
        # 90, 90.00 and 9E+1 all encode as "90"
        return format(obj.normalize(), "f")
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    raise TypeError(f"Cannot canonicalize {type(obj).__name__}")


def canonicalize_json(data: Any) -> str:
    """Sorted keys, no whitespace, kernel value types rendered as strings."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_encode)


def to_json_safe(data: dict[str, Any]) -> dict[str, Any]:
    """The plain-JSON form of ``data`` exactly as it will be hashed."""
    return json.loads(canonicalize_json(data))


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_payload(payload: dict) -> str:
    return _sha256(canonicalize_json(payload))


def _timestamp(value: datetime) -> str:
    # Same text before and after a database round trip
    return value.astimezone(timezone.utc).isoformat()


def hash_audit_entry(
    resource_type: str,
    resource_id: str,
    action: str,
    actor_id: str,
    actor_role: str,
    occurred_at: datetime,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """
    Hash of one audit entry, chained to its predecessor.

    Attribution (actor, role, time) is part of the hashed text.  The first
    entry of the log has no predecessor and chains to
    ``GENESIS_MARKER`` instead.
    """
    return _sha256("|".join((
        resource_type,
        str(resource_id),
        action,
        actor_id,
        actor_role,
        _timestamp(occurred_at),
        payload_hash,
        prev_hash or GENESIS_MARKER,
    )))
