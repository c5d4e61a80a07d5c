"""
Duplicate detection -- strategy keys and fuzzy multi-field scoring.

Two independent passes over the mapped rows of a batch:

Strategy pass (drives commit):
    ``MappingOptions.duplicate_detection`` selects a key (name, name+address,
    external id, email).  A row whose key matches an existing entity is a
    ``DUPLICATE_ENTRY``; otherwise a row whose key matches an earlier row of
    the batch is a ``DUPLICATE_IN_BATCH``.  The first occurrence in the batch
    is never flagged.

Fuzzy pass (informational):
    Weighted field similarity (navn 0.4, adresse 0.3, epost 0.5,
    telefon 0.3, postnummer 0.1) over normalized values.  Names and
    addresses use normalized Levenshtein similarity; email, phone and postal
    code compare exactly.  The score is the weighted mean over the fields
    both records carry.  Results feed ``duplicate_info`` and the
    ``DuplicateReport`` and never change a row's status.

ZERO I/O.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Mapping, Sequence
from uuid import UUID

from rapidfuzz.distance import Levenshtein

from kunde_ingestion.domain.types import DuplicateReport, DuplicateStrategy
from kunde_ingestion.repositories.base import ExistingKunde

FIELD_WEIGHTS: dict[str, float] = {
    "navn": 0.4,
    "adresse": 0.3,
    "epost": 0.5,
    "telefon": 0.3,
    "postnummer": 0.1,
}
PROBABLE_THRESHOLD = 0.7
POSSIBLE_THRESHOLD = 0.5

_COMPANY_SUFFIXES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\s+(a\.?s\.?|a/s)$", re.IGNORECASE), " as"),
    (re.compile(r"\s+(a\.?n\.?s\.?)$", re.IGNORECASE), " ans"),
    (re.compile(r"\s+(d\.?a\.?)$", re.IGNORECASE), " da"),
    (re.compile(r"\s+(enk\.?|enkeltpersonforetak)$", re.IGNORECASE), " enk"),
    (re.compile(r"\s+(nuf\.?)$", re.IGNORECASE), " nuf"),
)
_ADDRESS_ABBREVIATIONS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\bgt\.?\b", re.IGNORECASE), "gate"),
    (re.compile(r"\bvn\.?\b", re.IGNORECASE), "veien"),
    (re.compile(r"\bv\.?\b", re.IGNORECASE), "vei"),
    (re.compile(r"\bpl\.?\b", re.IGNORECASE), "plass"),
)
_WS = re.compile(r"\s+")
_PUNCT = re.compile(r"[.,]")
_PHONE_PREFIX = re.compile(r"^(0047|47)")
_NON_DIGIT = re.compile(r"\D")


# -----------------------------------------------------------------------------
# Normalization
# -----------------------------------------------------------------------------


def _str(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    return value if isinstance(value, str) else ""


def normalize_company_name(name: str) -> str:
    if not name:
        return ""
    n = name.strip().lower()
    for pattern, replacement in _COMPANY_SUFFIXES:
        n = pattern.sub(replacement, n)
    n = _WS.sub(" ", n)
    return _PUNCT.sub("", n)


def normalize_address(address: str) -> str:
    if not address:
        return ""
    n = address.strip().lower()
    for pattern, replacement in _ADDRESS_ABBREVIATIONS:
        n = pattern.sub(replacement, n)
    return _WS.sub(" ", n)


def normalize_phone(phone: str) -> str:
    if not phone:
        return ""
    return _PHONE_PREFIX.sub("", _NON_DIGIT.sub("", phone))


def normalize_email(email: str) -> str:
    return email.strip().lower() if email else ""


@dataclass(frozen=True)
class NormalizedRecord:
    navn: str = ""
    adresse: str = ""
    postnummer: str = ""
    epost: str = ""
    telefon: str = ""

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> NormalizedRecord:
        return cls(
            navn=normalize_company_name(_str(data, "navn")),
            adresse=normalize_address(_str(data, "adresse")),
            postnummer=_str(data, "postnummer").strip(),
            epost=normalize_email(_str(data, "epost")),
            telefon=normalize_phone(_str(data, "telefon")),
        )

    @classmethod
    def from_existing(cls, kunde: ExistingKunde) -> NormalizedRecord:
        return cls.from_mapping(kunde.as_mapping())


# -----------------------------------------------------------------------------
# Strategy pass
# -----------------------------------------------------------------------------


def strategy_key(data: Mapping[str, Any], strategy: DuplicateStrategy) -> str | None:
    """Comparison key for ``strategy``; None when the row lacks the key fields."""
    if strategy == DuplicateStrategy.NONE:
        return None
    if strategy == DuplicateStrategy.NAME:
        return normalize_company_name(_str(data, "navn")) or None
    if strategy == DuplicateStrategy.NAME_ADDRESS:
        name = normalize_company_name(_str(data, "navn"))
        address = normalize_address(_str(data, "adresse"))
        return f"{name}|{address}" if name and address else None
    if strategy == DuplicateStrategy.EXTERNAL_ID:
        value = data.get("ekstern_id")
        text = "" if value is None else str(value).strip().lower()
        return text or None
    if strategy == DuplicateStrategy.EMAIL:
        return normalize_email(_str(data, "epost")) or None
    raise ValueError(f"Unknown duplicate strategy: {strategy}")


@dataclass(frozen=True)
class StrategyMatch:
    """A row flagged by the selected duplicate strategy."""

    row_number: int
    duplicate_of_row: int | None = None
    duplicate_of_entity_id: UUID | None = None
    matched_name: str | None = None

    @property
    def in_batch(self) -> bool:
        return self.duplicate_of_entity_id is None


def find_strategy_duplicates(
    rows: Sequence[tuple[int, Mapping[str, Any]]],
    existing: Sequence[ExistingKunde],
    strategy: DuplicateStrategy,
) -> dict[int, StrategyMatch]:
    """row_number -> match, for every row flagged under ``strategy``."""
    if strategy == DuplicateStrategy.NONE:
        return {}

    existing_keys: dict[str, ExistingKunde] = {}
    for kunde in existing:
        key = strategy_key(kunde.as_mapping(), strategy)
        if key is not None and key not in existing_keys:
            existing_keys[key] = kunde

    matches: dict[int, StrategyMatch] = {}
    first_rows: dict[str, int] = {}
    for row_number, data in sorted(rows, key=lambda r: r[0]):
        key = strategy_key(data, strategy)
        if key is None:
            continue
        hit = existing_keys.get(key)
        if hit is not None:
            matches[row_number] = StrategyMatch(
                row_number, duplicate_of_entity_id=hit.entity_id, matched_name=hit.navn
            )
        elif key in first_rows:
            matches[row_number] = StrategyMatch(row_number, duplicate_of_row=first_rows[key])
        first_rows.setdefault(key, row_number)
    return matches


# -----------------------------------------------------------------------------
# Fuzzy pass
# -----------------------------------------------------------------------------


def levenshtein_similarity(a: str, b: str) -> float:
    a, b = a.lower(), b.lower()
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    return Levenshtein.normalized_similarity(a, b)


def score_records(a: NormalizedRecord, b: NormalizedRecord) -> tuple[float, dict[str, float]]:
    """Weighted mean similarity over the fields both records carry."""
    field_scores: dict[str, float] = {}
    weighted = 0.0
    total_weight = 0.0
    for name, weight in FIELD_WEIGHTS.items():
        left, right = getattr(a, name), getattr(b, name)
        if not left or not right:
            continue
        if name in ("navn", "adresse"):
            score = levenshtein_similarity(left, right)
        else:
            score = 1.0 if left == right else 0.0
        field_scores[name] = round(score, 4)
        weighted += score * weight
        total_weight += weight
    return (weighted / total_weight if total_weight else 0.0), field_scores


@dataclass(frozen=True)
class FuzzyCandidate:
    score: float
    confidence: str  # "high" | "medium"
    field_scores: dict[str, float]
    navn: str
    existing_entity_id: UUID | None = None
    batch_row_number: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "score": round(self.score, 4),
            "confidence": self.confidence,
            "field_scores": dict(self.field_scores),
            "navn": self.navn,
            "existing_entity_id": str(self.existing_entity_id) if self.existing_entity_id else None,
            "batch_row_number": self.batch_row_number,
        }


def _suggested_action(candidates: Sequence[FuzzyCandidate], probable: float) -> str:
    if not candidates:
        return "create"
    top = candidates[0]
    if top.score >= probable and top.existing_entity_id is not None:
        return "update"
    return "review"


def fuzzy_duplicate_report(
    rows: Sequence[tuple[int, Mapping[str, Any]]],
    existing: Sequence[ExistingKunde],
    probable_threshold: float = PROBABLE_THRESHOLD,
    possible_threshold: float = POSSIBLE_THRESHOLD,
) -> tuple[DuplicateReport, dict[int, dict[str, Any]]]:
    """Summary report plus ``duplicate_info`` per row that has candidates."""
    ordered = sorted(rows, key=lambda r: r[0])
    normalized = [(n, NormalizedRecord.from_mapping(d), d) for n, d in ordered]
    existing_norm = [(k, NormalizedRecord.from_existing(k)) for k in existing]

    info: dict[int, dict[str, Any]] = {}
    probable = possible = unique = 0

    for i, (row_number, record, _data) in enumerate(normalized):
        candidates: list[FuzzyCandidate] = []
        for kunde, other in existing_norm:
            score, fields = score_records(record, other)
            if score >= possible_threshold:
                candidates.append(
                    FuzzyCandidate(
                        score,
                        "high" if score >= probable_threshold else "medium",
                        fields,
                        kunde.navn or "",
                        existing_entity_id=kunde.entity_id,
                    )
                )
        for earlier_number, other, earlier_data in normalized[:i]:
            score, fields = score_records(record, other)
            if score >= possible_threshold:
                candidates.append(
                    FuzzyCandidate(
                        score,
                        "high" if score >= probable_threshold else "medium",
                        fields,
                        _str(earlier_data, "navn"),
                        batch_row_number=earlier_number,
                    )
                )

        if not candidates:
            unique += 1
            continue
        candidates.sort(key=lambda c: -c.score)
        if candidates[0].score >= probable_threshold:
            probable += 1
        else:
            possible += 1
        info[row_number] = {
            "candidates": [c.to_dict() for c in candidates[:5]],
            "suggested_action": _suggested_action(candidates, probable_threshold),
        }

    report = DuplicateReport(
        total_checked=len(normalized),
        probable_duplicates=probable,
        possible_duplicates=possible,
        unique_rows=unique,
    )
    return report, info
