"""Pure domain layer of the import pipeline: enums, DTOs, mapping config, state machine."""

from kunde_ingestion.domain.mapping_config import (
    ColumnMapping,
    MappingConfig,
    MappingOptions,
    TransformationRule,
    ValidationRule,
)
from kunde_ingestion.domain.types import (
    AuditAction,
    BatchStatus,
    CommitError,
    CommitResult,
    DuplicateAction,
    DuplicateStrategy,
    ErrorCode,
    FieldType,
    ImportBatch,
    RollbackResult,
    RowAction,
    RowStatus,
    Severity,
    StagingRow,
    TransformationType,
    ValidationIssue,
    ValidationType,
)

__all__ = [
    "AuditAction",
    "BatchStatus",
    "ColumnMapping",
    "CommitError",
    "CommitResult",
    "DuplicateAction",
    "DuplicateStrategy",
    "ErrorCode",
    "FieldType",
    "ImportBatch",
    "MappingConfig",
    "MappingOptions",
    "RollbackResult",
    "RowAction",
    "RowStatus",
    "Severity",
    "StagingRow",
    "TransformationRule",
    "TransformationType",
    "ValidationIssue",
    "ValidationRule",
    "ValidationType",
]
