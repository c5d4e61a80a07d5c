"""
Staging ORM models for customer imports.

Contract:
    ImportBatchModel, ImportStagingRowModel and ImportValidationErrorModel
    persist one uploaded file through the workflow.  Raw rows are stored as
    JSON exactly as parsed; mapped_data is null until the batch reaches
    ``mapped``; target_entity_id is null until commit.

    ImportMappingTemplateModel and ImportColumnHistoryModel are keyed per
    tenant and outlive batches.

Architecture: kunde_ingestion/models. Imports from kunde_kernel.db.base only.
    All reads and writes go through kunde_ingestion.services.staging_store
    and kunde_ingestion.services.template_store.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from kunde_kernel.db.base import TrackedBase, UTCDateTime, UUIDString

if TYPE_CHECKING:
    from kunde_ingestion.domain.types import ImportBatch, StagingRow, ValidationIssue


def to_json_safe(obj: Any) -> Any:
    """Convert values to JSON-serializable form (Decimal -> str, etc.)."""
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, dict):
        return {str(k): to_json_safe(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_json_safe(v) for v in obj]
    if isinstance(obj, (date, datetime)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    return obj


class ImportBatchModel(TrackedBase):
    """One uploaded file and its position in the import workflow."""

    __tablename__ = "import_batches"

    __table_args__ = (
        Index("ix_import_batches_tenant_status", "tenant_id", "status"),
        Index("ix_import_batches_fingerprint", "tenant_id", "column_fingerprint"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    file_name: Mapped[str] = mapped_column(String(500), nullable=False)
    file_size_bytes: Mapped[int] = mapped_column(default=0, nullable=False)
    file_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    selected_sheet: Mapped[str | None] = mapped_column(String(200), nullable=True)
    column_fingerprint: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    column_set_fingerprint: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    column_count: Mapped[int] = mapped_column(default=0, nullable=False)
    row_count: Mapped[int] = mapped_column(default=0, nullable=False)
    headers: Mapped[list | None] = mapped_column(JSON, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)

    mapping_template_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    suggested_template_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    mapping_config: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    mapping_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    mapping_confirmed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    format_change_detected: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    format_change: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    requires_remapping: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    cleaning_report: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    validation_options: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    valid_row_count: Mapped[int] = mapped_column(default=0, nullable=False)
    error_row_count: Mapped[int] = mapped_column(default=0, nullable=False)
    warning_row_count: Mapped[int] = mapped_column(default=0, nullable=False)
    validation_truncated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    validation_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    duplicate_report: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    # Display snapshot only; the quality report is always recomputed on read.
    quality_report: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    committed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    committed_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    commit_summary: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    rolled_back_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    rolled_back_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_details: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    rows: Mapped[list["ImportStagingRowModel"]] = relationship(
        "ImportStagingRowModel",
        back_populates="batch",
        order_by="ImportStagingRowModel.row_number",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<ImportBatch {self.id} {self.status}>"

    def to_dto(self) -> ImportBatch:
        from kunde_ingestion.domain.types import BatchStatus, ImportBatch

        return ImportBatch(
            batch_id=self.id,
            tenant_id=self.tenant_id,
            file_name=self.file_name,
            file_size_bytes=self.file_size_bytes,
            file_hash=self.file_hash,
            column_fingerprint=self.column_fingerprint,
            column_set_fingerprint=self.column_set_fingerprint,
            column_count=self.column_count,
            row_count=self.row_count,
            status=BatchStatus(self.status),
            headers=tuple(self.headers or ()),
            mapping_template_id=self.mapping_template_id,
            suggested_template_id=self.suggested_template_id,
            format_change_detected=self.format_change_detected,
            requires_remapping=self.requires_remapping,
            mapping_confirmed=self.mapping_confirmed,
            valid_row_count=self.valid_row_count,
            error_row_count=self.error_row_count,
            warning_row_count=self.warning_row_count,
            validation_truncated=self.validation_truncated,
            created_at=self.created_at,
            committed_at=self.committed_at,
            committed_by=self.committed_by,
            rolled_back_at=self.rolled_back_at,
            rolled_back_by=self.rolled_back_by,
            error_message=self.error_message,
            error_details=self.error_details,
        )


class ImportStagingRowModel(TrackedBase):
    """Single staged source row within a batch."""

    __tablename__ = "import_staging_rows"

    __table_args__ = (
        UniqueConstraint("batch_id", "row_number", name="uq_import_staging_rows_batch_row"),
        Index("ix_import_staging_rows_batch_status", "batch_id", "validation_status"),
    )

    batch_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("import_batches.id", ondelete="CASCADE"),
        nullable=False,
    )
    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    row_number: Mapped[int] = mapped_column(Integer, nullable=False)
    raw_data: Mapped[dict] = mapped_column(JSON, nullable=False)
    mapped_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    mapping_notes: Mapped[list | None] = mapped_column(JSON, nullable=True)
    validation_status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    completeness_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    duplicate_of_row: Mapped[int | None] = mapped_column(Integer, nullable=True)
    duplicate_of_entity_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    duplicate_info: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    target_entity_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    action_taken: Mapped[str | None] = mapped_column(String(20), nullable=True)
    commit_error: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    batch: Mapped["ImportBatchModel"] = relationship(
        "ImportBatchModel",
        back_populates="rows",
        foreign_keys=[batch_id],
    )
    errors: Mapped[list["ImportValidationErrorModel"]] = relationship(
        "ImportValidationErrorModel",
        back_populates="row",
        order_by="ImportValidationErrorModel.position",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )

    def issues(self) -> tuple[ValidationIssue, ...]:
        return tuple(e.to_issue() for e in self.errors)

    def to_dto(self) -> StagingRow:
        from kunde_ingestion.domain.types import RowAction, RowStatus, StagingRow

        return StagingRow(
            row_id=self.id,
            batch_id=self.batch_id,
            row_number=self.row_number,
            raw_data=dict(self.raw_data or {}),
            mapped_data=dict(self.mapped_data) if self.mapped_data is not None else None,
            validation_status=RowStatus(self.validation_status),
            issues=self.issues(),
            completeness_score=self.completeness_score,
            duplicate_of_row=self.duplicate_of_row,
            duplicate_of_entity_id=self.duplicate_of_entity_id,
            duplicate_info=self.duplicate_info,
            target_entity_id=self.target_entity_id,
            action_taken=RowAction(self.action_taken) if self.action_taken else None,
            commit_error=self.commit_error,
        )


class ImportValidationErrorModel(TrackedBase):
    """One validation issue attached to a staging row."""

    __tablename__ = "import_validation_errors"

    __table_args__ = (
        Index("ix_import_validation_errors_batch", "batch_id", "severity"),
        Index("ix_import_validation_errors_row", "staging_row_id"),
    )

    batch_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("import_batches.id", ondelete="CASCADE"),
        nullable=False,
    )
    staging_row_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("import_staging_rows.id", ondelete="CASCADE"),
        nullable=False,
    )
    row_number: Mapped[int] = mapped_column(Integer, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    severity: Mapped[str] = mapped_column(String(10), nullable=False)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    field_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    source_column: Mapped[str | None] = mapped_column(String(200), nullable=True)
    expected_format: Mapped[str | None] = mapped_column(String(200), nullable=True)
    actual_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    suggestion: Mapped[str | None] = mapped_column(Text, nullable=True)

    row: Mapped["ImportStagingRowModel"] = relationship(
        "ImportStagingRowModel",
        back_populates="errors",
        foreign_keys=[staging_row_id],
    )

    def to_issue(self) -> ValidationIssue:
        from kunde_ingestion.domain.types import ErrorCode, Severity, ValidationIssue

        return ValidationIssue(
            severity=Severity(self.severity),
            code=ErrorCode(self.code),
            message=self.message,
            field_name=self.field_name,
            source_column=self.source_column,
            expected_format=self.expected_format,
            actual_value=self.actual_value,
            suggestion=self.suggestion,
        )

    @classmethod
    def from_issue(
        cls,
        issue: ValidationIssue,
        row: ImportStagingRowModel,
        position: int,
        created_by_id: UUID,
    ) -> ImportValidationErrorModel:
        return cls(
            batch_id=row.batch_id,
            staging_row_id=row.id,
            row_number=row.row_number,
            position=position,
            severity=issue.severity.value,
            code=issue.code.value,
            message=issue.message,
            field_name=issue.field_name,
            source_column=issue.source_column,
            expected_format=issue.expected_format,
            actual_value=None if issue.actual_value is None else str(issue.actual_value)[:2000],
            suggestion=issue.suggestion,
            created_by_id=created_by_id,
        )


class ImportMappingTemplateModel(TrackedBase):
    """Named, reusable mapping configuration keyed by tenant + column fingerprint."""

    __tablename__ = "import_mapping_templates"

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_import_mapping_templates_name"),
        Index("ix_import_mapping_templates_fingerprint", "tenant_id", "source_column_fingerprint"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    source_column_fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    source_set_fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    source_columns: Mapped[list] = mapped_column(JSON, nullable=False)
    mapping_config: Mapped[dict] = mapped_column(JSON, nullable=False)
    ai_suggested: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    ai_confidence_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    human_confirmed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    confirmed_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    confirmed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    use_count: Mapped[int] = mapped_column(default=0, nullable=False)
    last_used_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)


class ImportColumnHistoryModel(TrackedBase):
    """Column structures seen per tenant, for format-change detection."""

    __tablename__ = "import_column_history"

    __table_args__ = (
        UniqueConstraint("tenant_id", "fingerprint", name="uq_import_column_history_fingerprint"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    set_fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    columns: Mapped[list] = mapped_column(JSON, nullable=False)
    first_seen_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    last_seen_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    batch_count: Mapped[int] = mapped_column(default=1, nullable=False)
