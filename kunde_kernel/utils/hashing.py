"""
Deterministic hashing utilities.

All hashing in the import pipeline must be deterministic and reproducible:
file content hashes, column fingerprints, audit payload hashes and the audit
chain all go through this module.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, Decimal):
        return str(obj.normalize())
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, bytes):
        return obj.hex()
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=str)

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON string.

    Keys are sorted, there is no whitespace, and Decimal/datetime/UUID/Enum
    values are rendered consistently.
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
        ensure_ascii=False,
    )


def hash_bytes(content: bytes) -> str:
    """Hex-encoded SHA-256 of raw bytes (uploaded file content)."""
    return hashlib.sha256(content).hexdigest()


def hash_text(text: str) -> str:
    """Hex-encoded SHA-256 of a UTF-8 string."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_payload(payload: dict | list) -> str:
    """Compute SHA-256 hash of a payload's canonical JSON form."""
    return hash_text(canonicalize_json(payload))


def hash_audit_entry(
    batch_id: str,
    action: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """
    Compute the chained hash for an import audit entry.

    The hash includes the key fields plus the previous entry's hash,
    creating a tamper-evident chain.
    """
    components = [
        "import_batch",
        str(batch_id),
        action,
        payload_hash,
        prev_hash or "GENESIS",
    ]
    return hash_text("|".join(components))
