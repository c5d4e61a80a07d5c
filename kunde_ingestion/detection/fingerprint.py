"""
Column fingerprints: stable hashes of a file's header structure.

Two fingerprints are derived from the same normalized headers:

    exact  -- order-sensitive; equal only when the same columns appear in
              the same order.  Templates are keyed by this value.
    set    -- order-insensitive; equal when the same columns appear in any
              order.  Used as the similarity fallback.

Normalization is case and whitespace insensitive: lowercase, trim, collapse
inner whitespace to ``_``, drop every character outside ``[a-z0-9_æøå]``.

ZERO I/O.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Sequence

from kunde_kernel.utils.hashing import hash_text

FINGERPRINT_LENGTH = 16

_WHITESPACE = re.compile(r"\s+")
_DISALLOWED = re.compile(r"[^a-z0-9_æøå]")


def normalize_header(header: str) -> str:
    h = _WHITESPACE.sub("_", str(header).lower().strip())
    return _DISALLOWED.sub("", h)


def normalize_headers(headers: Iterable[str]) -> list[str]:
    return [normalize_header(h) for h in headers]


@dataclass(frozen=True)
class ColumnFingerprint:
    exact: str
    set: str
    normalized: tuple[str, ...]


def exact_fingerprint(headers: Sequence[str]) -> str:
    return hash_text("|".join(normalize_headers(headers)))[:FINGERPRINT_LENGTH]


def set_fingerprint(headers: Sequence[str]) -> str:
    return hash_text("|".join(sorted(set(normalize_headers(headers)))))[:FINGERPRINT_LENGTH]


def fingerprint(headers: Sequence[str]) -> ColumnFingerprint:
    return ColumnFingerprint(
        exact=exact_fingerprint(headers),
        set=set_fingerprint(headers),
        normalized=tuple(normalize_headers(headers)),
    )
