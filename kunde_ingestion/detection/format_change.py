"""
Format-change detection across repeated imports for one tenant.

Contract:
    ``detect_format_change`` compares the current headers with the tenant's
    most recently seen column set and with the tenant's saved templates.
    It is pure: history and templates are passed in as plain snapshots, the
    caller records the new fingerprint afterwards.

Outcomes:
    exact template match      -> detected=False, requires_remapping=False,
                                 matched_template_id set (auto-apply)
    same columns as last time,
    no template               -> detected=False, requires_remapping=True
    near match                -> detected=True, requires_remapping=True,
                                 added/removed/renamed columns listed,
                                 closest template offered as suggestion
    no history                -> detected=False, requires_remapping=True

A template is only ever auto-applied on an exact fingerprint match.  A
column reorder (same set fingerprint, different exact fingerprint) counts
as a near match.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Sequence
from uuid import UUID

from rapidfuzz.distance import Levenshtein

from kunde_ingestion.detection.fingerprint import ColumnFingerprint, normalize_headers

DEFAULT_RENAME_THRESHOLD = 0.6


@dataclass(frozen=True)
class ColumnHistoryEntry:
    """Snapshot of one row of the tenant's column history."""

    fingerprint: str
    set_fingerprint: str
    columns: tuple[str, ...]
    last_seen_at: datetime
    batch_count: int = 1


@dataclass(frozen=True)
class TemplateRef:
    """Minimal template view needed for matching."""

    template_id: UUID
    name: str
    fingerprint: str
    set_fingerprint: str
    columns: tuple[str, ...]
    last_used_at: datetime | None = None


@dataclass(frozen=True)
class RenamedColumn:
    old: str
    new: str
    similarity: float


@dataclass(frozen=True)
class FormatChangeResult:
    detected: bool
    requires_remapping: bool
    previous_fingerprint: str | None = None
    similarity: float | None = None
    added_columns: tuple[str, ...] = ()
    removed_columns: tuple[str, ...] = ()
    renamed_columns: tuple[RenamedColumn, ...] = ()
    matched_template_id: UUID | None = None
    suggested_template_id: UUID | None = None
    suggested_template_similarity: float | None = None

    def to_dict(self) -> dict:
        return {
            "detected": self.detected,
            "requires_remapping": self.requires_remapping,
            "previous_fingerprint": self.previous_fingerprint,
            "similarity": self.similarity,
            "added_columns": list(self.added_columns),
            "removed_columns": list(self.removed_columns),
            "renamed_columns": [
                {"old": r.old, "new": r.new, "similarity": round(r.similarity, 4)}
                for r in self.renamed_columns
            ],
            "matched_template_id": str(self.matched_template_id) if self.matched_template_id else None,
            "suggested_template_id": (
                str(self.suggested_template_id) if self.suggested_template_id else None
            ),
            "suggested_template_similarity": self.suggested_template_similarity,
        }


@dataclass(frozen=True)
class ColumnChanges:
    similarity: float
    added: tuple[str, ...] = ()
    removed: tuple[str, ...] = ()
    renamed: tuple[RenamedColumn, ...] = field(default_factory=tuple)


def string_similarity(a: str, b: str) -> float:
    """Normalized Levenshtein similarity in [0, 1]."""
    a, b = a.lower(), b.lower()
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    return Levenshtein.normalized_similarity(a, b)


def column_similarity(old_columns: Sequence[str], new_columns: Sequence[str]) -> float:
    """Exact normalized matches divided by the larger column set."""
    old_set = set(normalize_headers(old_columns))
    new_set = set(normalize_headers(new_columns))
    total = max(len(old_set), len(new_set))
    if total == 0:
        return 1.0
    return len(old_set & new_set) / total


def analyze_column_changes(
    old_columns: Sequence[str],
    new_columns: Sequence[str],
    rename_threshold: float = DEFAULT_RENAME_THRESHOLD,
) -> ColumnChanges:
    """
    List added, removed and renamed columns.

    A removed column is paired with the added column of highest string
    similarity above ``rename_threshold``.  Each added column is used by at
    most one rename.  Similarity is (matched + renamed) / union size.
    """
    norm_old = normalize_headers(old_columns)
    norm_new = normalize_headers(new_columns)
    old_set, new_set = set(norm_old), set(norm_new)

    matched = old_set & new_set
    removed = [c for c in dict.fromkeys(norm_old) if c not in new_set]
    added = [c for c in dict.fromkeys(norm_new) if c not in old_set]

    renamed: list[RenamedColumn] = []
    taken: set[str] = set()
    for old_col in removed:
        best: RenamedColumn | None = None
        for new_col in added:
            if new_col in taken:
                continue
            score = string_similarity(old_col, new_col)
            if score > rename_threshold and (best is None or score > best.similarity):
                best = RenamedColumn(old=old_col, new=new_col, similarity=score)
        if best is not None:
            renamed.append(best)
            taken.add(best.new)

    renamed_old = {r.old for r in renamed}
    total_unique = len(old_set | new_set)
    similarity = (len(matched) + len(renamed)) / total_unique if total_unique else 1.0

    return ColumnChanges(
        similarity=similarity,
        added=tuple(c for c in added if c not in taken),
        removed=tuple(c for c in removed if c not in renamed_old),
        renamed=tuple(renamed),
    )


def closest_template(
    headers: Sequence[str],
    templates: Sequence[TemplateRef],
    rename_threshold: float = DEFAULT_RENAME_THRESHOLD,
) -> tuple[TemplateRef, float] | None:
    """Template with the highest column-change similarity; ties go to most recently used."""
    best: tuple[TemplateRef, float] | None = None
    for template in templates:
        score = analyze_column_changes(template.columns, headers, rename_threshold).similarity
        if best is None or score > best[1]:
            best = (template, score)
        elif score == best[1]:
            current_used = best[0].last_used_at
            if template.last_used_at and (current_used is None or template.last_used_at > current_used):
                best = (template, score)
    return best


def detect_format_change(
    headers: Sequence[str],
    current: ColumnFingerprint,
    history: Sequence[ColumnHistoryEntry],
    templates: Sequence[TemplateRef],
    near_match_threshold: float = 0.5,
    rename_threshold: float = DEFAULT_RENAME_THRESHOLD,
) -> FormatChangeResult:
    """Classify the current header structure against history and templates."""
    exact_template = next((t for t in templates if t.fingerprint == current.exact), None)
    most_recent = max(history, key=lambda h: h.last_seen_at) if history else None
    previous = most_recent.fingerprint if most_recent else None

    if exact_template is not None:
        return FormatChangeResult(
            detected=bool(most_recent and most_recent.fingerprint != current.exact),
            requires_remapping=False,
            previous_fingerprint=previous,
            similarity=1.0,
            matched_template_id=exact_template.template_id,
        )

    suggestion = closest_template(headers, templates, rename_threshold)
    suggested_id = None
    suggested_score = None
    if suggestion is not None and suggestion[1] >= near_match_threshold:
        suggested_id = suggestion[0].template_id
        suggested_score = round(suggestion[1], 4)

    if most_recent is None:
        return FormatChangeResult(
            detected=False,
            requires_remapping=True,
            suggested_template_id=suggested_id,
            suggested_template_similarity=suggested_score,
        )

    if most_recent.fingerprint == current.exact:
        return FormatChangeResult(
            detected=False,
            requires_remapping=True,
            previous_fingerprint=previous,
            similarity=1.0,
            suggested_template_id=suggested_id,
            suggested_template_similarity=suggested_score,
        )

    changes = analyze_column_changes(most_recent.columns, headers, rename_threshold)
    return FormatChangeResult(
        detected=True,
        requires_remapping=True,
        previous_fingerprint=previous,
        similarity=round(changes.similarity, 4),
        added_columns=changes.added,
        removed_columns=changes.removed,
        renamed_columns=changes.renamed,
        suggested_template_id=suggested_id,
        suggested_template_similarity=suggested_score,
    )
