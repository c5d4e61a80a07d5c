"""
Mapping engine: pure transformation from a raw source row to a mapped row.

Contract:
    ``apply_mapping(raw_row, config) -> MappingResult``.  Same row and same
    config always give the same result.  The engine never guesses a mapping;
    it applies exactly the ``ColumnMapping``s it is given.

Per mapping:
    1. read the source value (exact key first, then a dotted path into
       nested dicts for pre-joined sources)
    2. apply the configured ``TransformationRule`` or the default implied by
       the target field type
    3. a transformation that yields nothing for a non-empty input keeps the
       trimmed source value so the validator can flag it (recorded as a note)
    4. empty result: required fields stay absent so the validator reports
       them missing; optional fields take ``default_value`` when
       ``use_default_if_empty`` is set, otherwise None

After all mappings a combined address ("Storgata 5, 0184 Oslo") is split
into adresse/postnummer/poststed when neither postal field was mapped.

ZERO I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

from kunde_ingestion.domain.mapping_config import (
    REQUIRED_TARGET_FIELDS,
    ColumnMapping,
    MappingConfig,
    is_known_target,
)
from kunde_ingestion.domain.types import FieldType, TransformationType
from kunde_ingestion.mapping.transforms import (
    apply_default_transformation,
    apply_transformation,
    as_text,
    split_norwegian_address,
)
from kunde_ingestion.validation.rules import rule_param_problems

# -----------------------------------------------------------------------------
# Result types
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class MappingResult:
    """Result of applying a mapping config to one raw row."""

    mapped_data: dict[str, Any] = field(default_factory=dict)
    notes: tuple[str, ...] = ()


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def get_source_value(raw_row: dict[str, Any], source: str) -> Any:
    """Exact column key, falling back to a dotted path through nested dicts."""
    if source in raw_row:
        return raw_row[source]
    if "." not in source:
        return None
    current: Any = raw_row
    for part in source.split("."):
        if not isinstance(current, dict) or part not in current:
            return None
        current = current[part]
    return current


def _transform(value: Any, mapping: ColumnMapping, config: MappingConfig) -> Any:
    options = config.options
    rule = mapping.transformation
    if rule is None:
        result = apply_default_transformation(value, mapping.target_field_type, options.date_format)
        if result is None and mapping.target_field_type in (FieldType.DATE, FieldType.DATETIME):
            for hint in options.fallback_date_formats:
                result = apply_default_transformation(value, mapping.target_field_type, hint)
                if result is not None:
                    break
        return result

    if rule.type == TransformationType.PARSE_DATE and "format" not in rule.params:
        rule = type(rule)(rule.type, {**rule.params, "format": options.date_format})
    return apply_transformation(value, rule)


# -----------------------------------------------------------------------------
# Apply mapping (pure)
# -----------------------------------------------------------------------------


def apply_mapping(raw_row: dict[str, Any], config: MappingConfig) -> MappingResult:
    """Apply every column mapping of ``config`` to one raw row. Pure function."""
    mapped: dict[str, Any] = {}
    notes: list[str] = []
    options = config.options

    for mapping in config.mappings:
        raw_value = get_source_value(raw_row, mapping.source_column)
        if options.trim_whitespace and isinstance(raw_value, str):
            raw_value = raw_value.strip()

        value = _transform(raw_value, mapping, config) if not is_empty(raw_value) else None

        if is_empty(value) and not is_empty(raw_value):
            value = as_text(raw_value).strip()
            notes.append(
                f"{mapping.target_field}: could not transform {value!r}, kept source value"
            )

        if is_empty(value):
            if mapping.required:
                continue
            if mapping.use_default_if_empty and mapping.default_value is not None:
                value = mapping.default_value
                notes.append(f"{mapping.target_field}: default value applied")
            else:
                value = None

        mapped[mapping.target_field] = value

    if options.default_category and is_empty(mapped.get("kategori")):
        mapped["kategori"] = options.default_category
        notes.append("kategori: default category applied")

    notes.extend(_split_combined_address(mapped))
    return MappingResult(mapped_data=mapped, notes=tuple(notes))


def _split_combined_address(mapped: dict[str, Any]) -> list[str]:
    adresse = mapped.get("adresse")
    if not isinstance(adresse, str) or mapped.get("postnummer") or mapped.get("poststed"):
        return []
    street, postnummer, poststed = split_norwegian_address(adresse)
    if postnummer is None:
        return []
    mapped["adresse"] = street
    mapped["postnummer"] = postnummer
    if poststed:
        mapped["poststed"] = poststed
    return ["adresse: split combined address into postal fields"]


def map_rows(
    rows: Iterable[dict[str, Any]], config: MappingConfig
) -> list[MappingResult]:
    return [apply_mapping(row, config) for row in rows]


# -----------------------------------------------------------------------------
# Config validation
# -----------------------------------------------------------------------------


def validate_config(config: MappingConfig, headers: Sequence[str] | None = None) -> list[str]:
    """
    Structural problems of a mapping config against the batch headers.

    Empty list means the config can be applied.
    """
    problems: list[str] = []
    seen: set[str] = set()
    header_set = set(headers) if headers is not None else None

    if not config.mappings:
        problems.append("mapping config has no column mappings")

    for mapping in config.mappings:
        if not is_known_target(mapping.target_field):
            problems.append(f"unknown target field: {mapping.target_field}")
        if mapping.target_field in seen:
            problems.append(f"target field mapped more than once: {mapping.target_field}")
        seen.add(mapping.target_field)
        if header_set is not None and mapping.source_column not in header_set:
            root = mapping.source_column.split(".", 1)[0]
            if root not in header_set:
                problems.append(f"source column not in file: {mapping.source_column}")
        for rule in mapping.validation_rules:
            problems.extend(rule_param_problems(mapping.target_field, rule))

    for required in REQUIRED_TARGET_FIELDS:
        if required not in seen:
            problems.append(f"required target field not mapped: {required}")

    return problems
