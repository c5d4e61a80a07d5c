"""
kunde_ingestion.domain.mapping_config -- Declarative mapping configuration.

The configuration is a versioned value object stored as JSON on the batch
and on mapping templates.  Transformations and validations are named by the
closed ``TransformationType`` / ``ValidationType`` enums plus a plain
``params`` dict, so a config round-trips through JSON unchanged and the
engines dispatch through their registries.

JSON layout (version "1.0")::

    {
      "version": "1.0",
      "mappings": [
        {"source_column": "Postnr", "target_field": "postnummer",
         "target_field_type": "postnummer", "required": false,
         "transformation": {"type": "format_postnummer", "params": {}},
         "validation_rules": [{"type": "postnummer", "severity": "error"}],
         "default_value": null, "use_default_if_empty": false}
      ],
      "options": {"duplicate_detection": "name_address", ...}
    }

ZERO I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from kunde_ingestion.domain.types import (
    DuplicateAction,
    DuplicateStrategy,
    FieldType,
    Severity,
    TransformationType,
    ValidationType,
)
from kunde_kernel.utils.hashing import hash_payload

CONFIG_VERSION = "1.0"

# Target fields of the kunde entity.  Custom fields are allowed under the
# ``custom.`` prefix and land in the entity's JSON custom_fields column.
ENTITY_FIELDS: tuple[str, ...] = (
    "navn",
    "adresse",
    "postnummer",
    "poststed",
    "telefon",
    "epost",
    "kontaktperson",
    "kategori",
    "notater",
    "org_nummer",
    "ekstern_id",
    "siste_kontroll",
    "neste_kontroll",
    "siste_el_kontroll",
    "neste_el_kontroll",
    "siste_brann_kontroll",
    "neste_brann_kontroll",
    "el_type",
    "brann_system",
    "kontroll_intervall_mnd",
)
CUSTOM_FIELD_PREFIX = "custom."
REQUIRED_TARGET_FIELDS: tuple[str, ...] = ("navn",)


def is_known_target(target_field: str) -> bool:
    if target_field in ENTITY_FIELDS:
        return True
    return target_field.startswith(CUSTOM_FIELD_PREFIX) and len(target_field) > len(
        CUSTOM_FIELD_PREFIX
    )


@dataclass(frozen=True)
class TransformationRule:
    type: TransformationType
    params: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "params": dict(self.params)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TransformationRule:
        return cls(
            type=TransformationType(data["type"]),
            params=dict(data.get("params") or {}),
        )


@dataclass(frozen=True)
class ValidationRule:
    type: ValidationType
    params: dict[str, Any] = field(default_factory=dict)
    severity: Severity = Severity.ERROR
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "params": dict(self.params),
            "severity": self.severity.value,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ValidationRule:
        return cls(
            type=ValidationType(data["type"]),
            params=dict(data.get("params") or {}),
            severity=Severity(data.get("severity", Severity.ERROR.value)),
            message=data.get("message"),
        )


@dataclass(frozen=True)
class ColumnMapping:
    """Single column assignment: source column -> target field."""

    source_column: str
    target_field: str
    target_field_type: FieldType = FieldType.STRING
    required: bool = False
    transformation: TransformationRule | None = None
    validation_rules: tuple[ValidationRule, ...] = ()
    default_value: Any = None
    use_default_if_empty: bool = False
    source_column_index: int | None = None
    confidence: float | None = None
    ai_suggested: bool = False
    human_confirmed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_column": self.source_column,
            "source_column_index": self.source_column_index,
            "target_field": self.target_field,
            "target_field_type": self.target_field_type.value,
            "required": self.required,
            "confidence": self.confidence,
            "ai_suggested": self.ai_suggested,
            "human_confirmed": self.human_confirmed,
            "transformation": self.transformation.to_dict() if self.transformation else None,
            "validation_rules": [r.to_dict() for r in self.validation_rules],
            "default_value": self.default_value,
            "use_default_if_empty": self.use_default_if_empty,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ColumnMapping:
        transformation = data.get("transformation")
        return cls(
            source_column=data["source_column"],
            target_field=data["target_field"],
            target_field_type=FieldType(data.get("target_field_type", FieldType.STRING.value)),
            required=bool(data.get("required", False)),
            transformation=TransformationRule.from_dict(transformation) if transformation else None,
            validation_rules=tuple(
                ValidationRule.from_dict(r) for r in data.get("validation_rules") or ()
            ),
            default_value=data.get("default_value"),
            use_default_if_empty=bool(data.get("use_default_if_empty", False)),
            source_column_index=data.get("source_column_index"),
            confidence=data.get("confidence"),
            ai_suggested=bool(data.get("ai_suggested", False)),
            human_confirmed=bool(data.get("human_confirmed", False)),
        )


@dataclass(frozen=True)
class MappingOptions:
    """Global options of a mapping configuration."""

    skip_header_rows: int = 1
    skip_empty_rows: bool = True
    trim_whitespace: bool = True
    duplicate_detection: DuplicateStrategy = DuplicateStrategy.NAME_ADDRESS
    duplicate_action: DuplicateAction = DuplicateAction.UPDATE
    stop_on_first_error: bool = False
    max_errors: int = 100  # 0 = no limit
    date_format: str = "DD.MM.YYYY"
    fallback_date_formats: tuple[str, ...] = ()
    auto_create_categories: bool = False
    default_category: str | None = None
    known_categories: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "skip_header_rows": self.skip_header_rows,
            "skip_empty_rows": self.skip_empty_rows,
            "trim_whitespace": self.trim_whitespace,
            "duplicate_detection": self.duplicate_detection.value,
            "duplicate_action": self.duplicate_action.value,
            "stop_on_first_error": self.stop_on_first_error,
            "max_errors": self.max_errors,
            "date_format": self.date_format,
            "fallback_date_formats": list(self.fallback_date_formats),
            "auto_create_categories": self.auto_create_categories,
            "default_category": self.default_category,
            "known_categories": list(self.known_categories),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> MappingOptions:
        data = data or {}
        defaults = cls()
        return cls(
            skip_header_rows=int(data.get("skip_header_rows", defaults.skip_header_rows)),
            skip_empty_rows=bool(data.get("skip_empty_rows", defaults.skip_empty_rows)),
            trim_whitespace=bool(data.get("trim_whitespace", defaults.trim_whitespace)),
            duplicate_detection=DuplicateStrategy(
                data.get("duplicate_detection", defaults.duplicate_detection.value)
            ),
            duplicate_action=DuplicateAction(
                data.get("duplicate_action", defaults.duplicate_action.value)
            ),
            stop_on_first_error=bool(
                data.get("stop_on_first_error", defaults.stop_on_first_error)
            ),
            max_errors=int(data.get("max_errors", defaults.max_errors)),
            date_format=str(data.get("date_format", defaults.date_format)),
            fallback_date_formats=tuple(data.get("fallback_date_formats") or ()),
            auto_create_categories=bool(
                data.get("auto_create_categories", defaults.auto_create_categories)
            ),
            default_category=data.get("default_category"),
            known_categories=tuple(data.get("known_categories") or ()),
        )

    def merged(self, overrides: dict[str, Any] | None) -> MappingOptions:
        """Return a copy with the given JSON-style overrides applied."""
        if not overrides:
            return self
        data = self.to_dict()
        data.update(overrides)
        return MappingOptions.from_dict(data)


@dataclass(frozen=True)
class MappingConfig:
    """Versioned, ordered list of column mappings plus global options."""

    mappings: tuple[ColumnMapping, ...]
    options: MappingOptions = field(default_factory=MappingOptions)
    version: str = CONFIG_VERSION

    @property
    def target_fields(self) -> tuple[str, ...]:
        return tuple(m.target_field for m in self.mappings)

    @property
    def source_columns(self) -> tuple[str, ...]:
        return tuple(m.source_column for m in self.mappings)

    def mapping_for(self, target_field: str) -> ColumnMapping | None:
        for m in self.mappings:
            if m.target_field == target_field:
                return m
        return None

    def with_options(self, options: MappingOptions) -> MappingConfig:
        return replace(self, options=options)

    def confirmed(self) -> MappingConfig:
        """Copy with every column mapping flagged human-confirmed."""
        return replace(
            self,
            mappings=tuple(replace(m, human_confirmed=True) for m in self.mappings),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "mappings": [m.to_dict() for m in self.mappings],
            "options": self.options.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MappingConfig:
        version = str(data.get("version", CONFIG_VERSION))
        if version != CONFIG_VERSION:
            raise ValueError(f"Unsupported mapping config version: {version}")
        return cls(
            mappings=tuple(ColumnMapping.from_dict(m) for m in data.get("mappings") or ()),
            options=MappingOptions.from_dict(data.get("options")),
            version=version,
        )

    def content_hash(self) -> str:
        """Hash of the mapping semantics, ignoring confirmation provenance."""
        data = self.to_dict()
        for m in data["mappings"]:
            m.pop("human_confirmed", None)
            m.pop("confidence", None)
            m.pop("ai_suggested", None)
        return hash_payload(data)
