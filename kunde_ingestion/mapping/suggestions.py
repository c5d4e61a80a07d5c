"""
Mapping candidates -- saved template, deterministic patterns, external source.

Contract:
    ``merge_candidates`` builds one ranked candidate list from three tiers:

        1. saved template mappings   source="saved_template", confidence 0.95
        2. header regex patterns     source="deterministic"
        3. external suggestions      source="ai", only for headers still
                                     unmapped; confidence and reasoning are
                                     passed through unmodified

    Candidates are proposals.  Nothing here marks a mapping confirmed; the
    operator does that through ``confirm_mapping``.

Failure modes:
    A failing external ``MappingSuggestionSource`` is logged and the result
    degrades to tiers 1 and 2.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

from kunde_ingestion.detection.patterns import DATE_FIELDS, suggest_column_mappings
from kunde_ingestion.domain.mapping_config import (
    CUSTOM_FIELD_PREFIX,
    ColumnMapping,
    MappingConfig,
    MappingOptions,
    ValidationRule,
    is_known_target,
)
from kunde_ingestion.domain.types import FieldType, Severity, ValidationType
from kunde_kernel.logging_config import get_logger

logger = get_logger("ingestion.suggestions")

TEMPLATE_CONFIDENCE = 0.95

SOURCE_TEMPLATE = "saved_template"
SOURCE_DETERMINISTIC = "deterministic"
SOURCE_EXTERNAL = "ai"


@dataclass(frozen=True)
class ExternalSuggestion:
    """One ranked suggestion from an external mapping suggestion source."""

    source_column: str
    target_field: str
    confidence: float
    reasoning: str | None = None


@runtime_checkable
class MappingSuggestionSource(Protocol):
    """Optional collaborator proposing mappings for headers the patterns miss."""

    def suggest(
        self,
        headers: Sequence[str],
        sample_rows: Sequence[Mapping[str, Any]],
    ) -> Sequence[ExternalSuggestion]:
        ...


@dataclass(frozen=True)
class MappingCandidate:
    source_column: str
    target_field: str
    confidence: float
    source: str
    reasoning: str | None = None
    sample_value: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_column": self.source_column,
            "target_field": self.target_field,
            "confidence": self.confidence,
            "source": self.source,
            "reasoning": self.reasoning,
            "sample_value": self.sample_value,
        }


def _sample(rows: Sequence[Mapping[str, Any]], header: str) -> str | None:
    for row in rows:
        value = row.get(header)
        if value is not None and str(value).strip():
            return str(value)
    return None


def merge_candidates(
    headers: Sequence[str],
    sample_rows: Sequence[Mapping[str, Any]] = (),
    template_config: MappingConfig | None = None,
    external: Sequence[ExternalSuggestion] = (),
) -> list[MappingCandidate]:
    """Merge the three tiers; sorted by confidence then header order."""
    header_set = set(headers)
    by_header: dict[str, MappingCandidate] = {}
    taken: set[str] = set()

    def add(candidate: MappingCandidate) -> None:
        by_header[candidate.source_column] = candidate
        taken.add(candidate.target_field)

    if template_config is not None:
        for m in template_config.mappings:
            if m.source_column in header_set and m.source_column not in by_header:
                add(
                    MappingCandidate(
                        m.source_column,
                        m.target_field,
                        TEMPLATE_CONFIDENCE,
                        SOURCE_TEMPLATE,
                        sample_value=_sample(sample_rows, m.source_column),
                    )
                )

    for s in suggest_column_mappings(headers):
        if s.source_column in by_header or s.target_field in taken:
            continue
        add(
            MappingCandidate(
                s.source_column,
                s.target_field,
                s.confidence,
                SOURCE_DETERMINISTIC,
                sample_value=_sample(sample_rows, s.source_column),
            )
        )

    for ext in external:
        if ext.source_column not in header_set or ext.source_column in by_header:
            continue
        if ext.target_field in taken or not is_known_target(ext.target_field):
            continue
        add(
            MappingCandidate(
                ext.source_column,
                ext.target_field,
                ext.confidence,
                SOURCE_EXTERNAL,
                reasoning=ext.reasoning,
                sample_value=_sample(sample_rows, ext.source_column),
            )
        )

    order = {h: i for i, h in enumerate(headers)}
    return sorted(by_header.values(), key=lambda c: (-c.confidence, order[c.source_column]))


def collect_candidates(
    headers: Sequence[str],
    sample_rows: Sequence[Mapping[str, Any]] = (),
    template_config: MappingConfig | None = None,
    source: MappingSuggestionSource | None = None,
) -> list[MappingCandidate]:
    """Query the optional external source for unmapped headers, then merge."""
    external: Sequence[ExternalSuggestion] = ()
    if source is not None:
        preliminary = merge_candidates(headers, sample_rows, template_config)
        mapped = {c.source_column for c in preliminary}
        unmapped = [h for h in headers if h not in mapped]
        if unmapped:
            try:
                external = tuple(source.suggest(unmapped, list(sample_rows)[:3]))
            except Exception as exc:
                logger.warning(
                    "suggestion_source_failed",
                    extra={"error": str(exc), "unmapped_headers": unmapped},
                )
                external = ()
    return merge_candidates(headers, sample_rows, template_config, external)


# -----------------------------------------------------------------------------
# Building a config from candidates
# -----------------------------------------------------------------------------


def infer_field_type(target_field: str) -> FieldType:
    if target_field == "epost":
        return FieldType.EMAIL
    if target_field == "telefon":
        return FieldType.PHONE
    if target_field == "postnummer":
        return FieldType.POSTNUMMER
    if target_field in DATE_FIELDS:
        return FieldType.DATE
    if target_field == "kontroll_intervall_mnd":
        return FieldType.INTEGER
    if target_field == "kategori":
        return FieldType.KATEGORI
    if target_field.startswith(CUSTOM_FIELD_PREFIX):
        return FieldType.CUSTOM
    return FieldType.STRING


def default_validation_rules(target_field: str) -> tuple[ValidationRule, ...]:
    if target_field == "navn":
        return (
            ValidationRule(ValidationType.REQUIRED),
            ValidationRule(ValidationType.MIN_LENGTH, {"min": 2}),
        )
    if target_field == "adresse":
        return (
            ValidationRule(ValidationType.REQUIRED),
            ValidationRule(ValidationType.MIN_LENGTH, {"min": 3}),
        )
    if target_field == "epost":
        return (ValidationRule(ValidationType.EMAIL),)
    if target_field == "postnummer":
        return (ValidationRule(ValidationType.POSTNUMMER),)
    if target_field == "telefon":
        return (ValidationRule(ValidationType.PHONE, severity=Severity.WARNING),)
    if target_field in DATE_FIELDS:
        return (ValidationRule(ValidationType.DATE),)
    if target_field == "kontroll_intervall_mnd":
        return (
            ValidationRule(ValidationType.INTEGER),
            ValidationRule(ValidationType.RANGE, {"min": 1, "max": 120}),
        )
    return ()


def build_mapping_config(
    candidates: Sequence[MappingCandidate],
    headers: Sequence[str] = (),
    options: MappingOptions | None = None,
) -> MappingConfig:
    """Turn accepted candidates into a config with inferred types and default rules."""
    index = {h: i for i, h in enumerate(headers)}
    mappings = tuple(
        ColumnMapping(
            source_column=c.source_column,
            target_field=c.target_field,
            target_field_type=infer_field_type(c.target_field),
            required=c.target_field in ("navn", "adresse"),
            validation_rules=default_validation_rules(c.target_field),
            source_column_index=index.get(c.source_column),
            confidence=c.confidence,
            ai_suggested=c.source == SOURCE_EXTERNAL,
        )
        for c in sorted(candidates, key=lambda c: index.get(c.source_column, len(index)))
    )
    return MappingConfig(mappings=mappings, options=options or MappingOptions())
