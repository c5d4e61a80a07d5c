"""Utility modules for the kunde kernel."""

from kunde_kernel.utils.hashing import (
    canonicalize_json,
    hash_audit_entry,
    hash_bytes,
    hash_payload,
    hash_text,
)
from kunde_kernel.utils.ttl_store import TTLStore

__all__ = [
    "canonicalize_json",
    "hash_audit_entry",
    "hash_bytes",
    "hash_payload",
    "hash_text",
    "TTLStore",
]
