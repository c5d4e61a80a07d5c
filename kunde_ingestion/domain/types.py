"""
kunde_ingestion.domain.types -- Pure enums and frozen dataclasses for the import system.

ZERO I/O.  Every value object that crosses a service boundary (batch and
row snapshots, validation issues, commit and rollback results, previews)
is defined here so services, the ORM layer and tests share one vocabulary.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


# =============================================================================
# Status enums
# =============================================================================


class BatchStatus(str, Enum):
    """Batch lifecycle status. Transitions live in domain.state_machine."""

    UPLOADED = "uploaded"
    PARSING = "parsing"
    PARSED = "parsed"
    MAPPING = "mapping"
    MAPPED = "mapped"
    VALIDATING = "validating"
    VALIDATED = "validated"
    COMMITTING = "committing"
    COMMITTED = "committed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RowStatus(str, Enum):
    """Per staging row validation status."""

    PENDING = "pending"
    VALID = "valid"
    INVALID = "invalid"
    WARNING = "warning"


class RowAction(str, Enum):
    """Outcome written back to a staging row by the commit step."""

    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    ERROR = "error"


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class ErrorCode(str, Enum):
    """Machine-readable codes attached to validation issues."""

    REQUIRED_FIELD_MISSING = "REQUIRED_FIELD_MISSING"
    INVALID_FORMAT = "INVALID_FORMAT"
    INVALID_EMAIL = "INVALID_EMAIL"
    INVALID_PHONE = "INVALID_PHONE"
    INVALID_POSTNUMMER = "INVALID_POSTNUMMER"
    INVALID_DATE = "INVALID_DATE"
    INVALID_NUMBER = "INVALID_NUMBER"
    VALUE_OUT_OF_RANGE = "VALUE_OUT_OF_RANGE"
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"
    DUPLICATE_IN_BATCH = "DUPLICATE_IN_BATCH"
    UNKNOWN_CATEGORY = "UNKNOWN_CATEGORY"
    CUSTOM_VALIDATION_FAILED = "CUSTOM_VALIDATION_FAILED"
    VALIDATION_TRUNCATED = "VALIDATION_TRUNCATED"


class FieldType(str, Enum):
    """Declared type of a target field; selects the default transformation."""

    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    DATE = "date"
    DATETIME = "datetime"
    BOOLEAN = "boolean"
    EMAIL = "email"
    PHONE = "phone"
    POSTNUMMER = "postnummer"
    KATEGORI = "kategori"
    CUSTOM = "custom"


class TransformationType(str, Enum):
    """Closed set of column transformations. Dispatched via mapping.transforms.TRANSFORMS."""

    NONE = "none"
    TRIM = "trim"
    UPPERCASE = "uppercase"
    LOWERCASE = "lowercase"
    CAPITALIZE = "capitalize"
    PARSE_NUMBER = "parse_number"
    PARSE_INTEGER = "parse_integer"
    PARSE_DATE = "parse_date"
    PARSE_BOOLEAN = "parse_boolean"
    FORMAT_PHONE = "format_phone"
    FORMAT_POSTNUMMER = "format_postnummer"
    PARSE_NORWEGIAN_DATE = "parse_norwegian_date"
    PARSE_EXCEL_DATE = "parse_excel_date"
    PARSE_MONTH_TEXT = "parse_month_text"
    SPLIT_FIRST = "split_first"
    SPLIT_LAST = "split_last"
    REGEX = "regex"
    LOOKUP = "lookup"


class ValidationType(str, Enum):
    """Closed set of validation rules. Dispatched via validation.rules.VALIDATORS."""

    REQUIRED = "required"
    MIN_LENGTH = "min_length"
    MAX_LENGTH = "max_length"
    PATTERN = "pattern"
    EMAIL = "email"
    PHONE = "phone"
    POSTNUMMER = "postnummer"
    DATE = "date"
    DATE_RANGE = "date_range"
    NUMBER = "number"
    INTEGER = "integer"
    RANGE = "range"
    ENUM = "enum"
    UNIQUE = "unique"
    UNIQUE_IN_BATCH = "unique_in_batch"


class DuplicateStrategy(str, Enum):
    NONE = "none"
    NAME = "name"
    NAME_ADDRESS = "name_address"
    EXTERNAL_ID = "external_id"
    EMAIL = "email"


class DuplicateAction(str, Enum):
    SKIP = "skip"
    UPDATE = "update"
    ERROR = "error"


class AuditAction(str, Enum):
    UPLOAD = "upload"
    PARSE = "parse"
    MAP = "map"
    CONFIRM_MAPPING = "confirm_mapping"
    VALIDATE = "validate"
    COMMIT = "commit"
    ROLLBACK = "rollback"
    CANCEL = "cancel"
    FAIL = "fail"


# =============================================================================
# Batch and row snapshots
# =============================================================================


@dataclass(frozen=True)
class ImportBatch:
    """Immutable snapshot of an import batch."""

    batch_id: UUID
    tenant_id: UUID
    file_name: str
    file_size_bytes: int
    file_hash: str
    column_fingerprint: str
    column_set_fingerprint: str
    column_count: int
    row_count: int
    status: BatchStatus
    headers: tuple[str, ...] = ()
    mapping_template_id: UUID | None = None
    suggested_template_id: UUID | None = None
    format_change_detected: bool = False
    requires_remapping: bool = False
    mapping_confirmed: bool = False
    valid_row_count: int = 0
    error_row_count: int = 0
    warning_row_count: int = 0
    validation_truncated: bool = False
    created_at: datetime | None = None
    committed_at: datetime | None = None
    committed_by: UUID | None = None
    rolled_back_at: datetime | None = None
    rolled_back_by: UUID | None = None
    error_message: str | None = None
    error_details: dict[str, Any] | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (
            BatchStatus.COMMITTED,
            BatchStatus.FAILED,
            BatchStatus.CANCELLED,
        )


@dataclass(frozen=True)
class ValidationIssue:
    """One violation tied to a staging row (row-scoped data, never raised)."""

    severity: Severity
    code: ErrorCode
    message: str
    field_name: str | None = None
    source_column: str | None = None
    expected_format: str | None = None
    actual_value: str | None = None
    suggestion: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "severity": self.severity.value,
            "code": self.code.value,
            "message": self.message,
            "field_name": self.field_name,
            "source_column": self.source_column,
            "expected_format": self.expected_format,
            "actual_value": self.actual_value,
            "suggestion": self.suggestion,
        }


@dataclass(frozen=True)
class StagingRow:
    """Immutable snapshot of one staged source row."""

    row_id: UUID
    batch_id: UUID
    row_number: int
    raw_data: dict[str, Any]
    mapped_data: dict[str, Any] | None = None
    validation_status: RowStatus = RowStatus.PENDING
    issues: tuple[ValidationIssue, ...] = ()
    completeness_score: float | None = None
    duplicate_of_row: int | None = None
    duplicate_of_entity_id: UUID | None = None
    duplicate_info: dict[str, Any] | None = None
    target_entity_id: UUID | None = None
    action_taken: RowAction | None = None
    commit_error: dict[str, Any] | None = None


# =============================================================================
# Previews and stage results
# =============================================================================


@dataclass(frozen=True)
class ColumnInfo:
    index: int
    header: str
    sample_values: tuple[str, ...]
    detected_type: FieldType
    unique_value_count: int
    empty_count: int


@dataclass(frozen=True)
class PreviewRow:
    row_number: int
    values: dict[str, Any]
    staging_row_id: UUID | None = None
    mapped_values: dict[str, Any] | None = None
    validation_status: RowStatus | None = None
    issues: tuple[ValidationIssue, ...] = ()


@dataclass(frozen=True)
class UploadResult:
    """Result of the upload stage; ``success`` is False for input errors."""

    batch: ImportBatch
    success: bool
    columns: tuple[ColumnInfo, ...] = ()
    preview_rows: tuple[PreviewRow, ...] = ()
    format_change: Any = None  # detection.format_change.FormatChangeResult
    candidates: tuple[Any, ...] = ()  # mapping.suggestions.MappingCandidate
    cleaning_report: Any = None  # cleaning.cleaner.CleaningReport
    template_applied: bool = False
    error_code: str | None = None
    error_message: str | None = None


@dataclass(frozen=True)
class ApplyMappingResult:
    batch_id: UUID
    status: BatchStatus
    mapped_count: int
    confirmed: bool
    template_id: UUID | None = None
    notes: tuple[str, ...] = ()


@dataclass(frozen=True)
class FieldErrorCount:
    code: str
    count: int
    message: str


@dataclass(frozen=True)
class BatchQualityReport:
    """Derived read; never authoritative state."""

    overall_score: int
    completeness_average: float
    valid_percentage: float
    field_coverage: dict[str, float]
    common_errors: tuple[FieldErrorCount, ...]
    suggestions: tuple[str, ...]


@dataclass(frozen=True)
class DuplicateReport:
    total_checked: int
    probable_duplicates: int
    possible_duplicates: int
    unique_rows: int


@dataclass(frozen=True)
class ValidationReport:
    batch_id: UUID
    status: BatchStatus
    valid_count: int
    warning_count: int
    error_count: int
    truncated: bool
    truncation_note: str | None
    issues_by_row: dict[int, tuple[ValidationIssue, ...]]
    duplicate_report: DuplicateReport | None = None
    quality_report: BatchQualityReport | None = None


@dataclass(frozen=True)
class CommitError:
    """Row-scoped commit failure recorded on the staging row."""

    row_number: int
    staging_row_id: UUID
    error: str
    code: str = "COMMIT_ERROR"
    details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "row_number": self.row_number,
            "staging_row_id": str(self.staging_row_id),
            "error": self.error,
            "code": self.code,
            "details": self.details,
        }


@dataclass(frozen=True)
class RowOutcome:
    """Resolved plan (dry run) or applied result (real commit) for one row."""

    staging_row_id: UUID
    row_number: int
    action: RowAction
    entity_id: UUID | None = None
    reason: str | None = None


@dataclass(frozen=True)
class CommitResult:
    batch_id: UUID
    success: bool
    dry_run: bool
    total_processed: int
    created: int
    updated: int
    skipped: int
    failed: int
    created_ids: tuple[UUID, ...] = ()
    updated_ids: tuple[UUID, ...] = ()
    errors: tuple[CommitError, ...] = ()
    outcomes: tuple[RowOutcome, ...] = ()
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int = 0
    error_message: str | None = None


@dataclass(frozen=True)
class RollbackResult:
    batch_id: UUID
    success: bool
    records_reverted: int
    records_deleted: int
    records_restored: int
    details: str
    completed_at: datetime | None = None
    warnings: tuple[str, ...] = field(default_factory=tuple)
