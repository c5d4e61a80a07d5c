"""
Import service: upload -> parse/clean -> map -> validate.

Orchestrates source adapters, the cleaner, format-change detection, the
mapping engine and the batch validator over the staging store.  Commit and
rollback live in ``commit_service``.

Every operation binds ``LogContext`` (correlation_id = batch id,
producer = "ingestion", actor_id) and writes one audit entry per state
change.  Nothing here commits the session.

Template policy:
    A saved template is applied automatically only when the upload's exact
    column fingerprint matches it.  Any other outcome (near match, column
    reorder, unknown structure) sets ``requires_remapping``; the batch can be
    mapped, but ``validate`` raises MappingConfirmationRequiredError until
    the mapping is confirmed.  Confirming saves the mapping as a
    human-confirmed template for the exact fingerprint.
"""

from __future__ import annotations

from dataclasses import asdict
from pathlib import PurePath
from typing import Any, Mapping, Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from kunde_config import get_active_config
from kunde_config.schema import PipelineConfig
from kunde_ingestion.adapters import ADAPTERS, column_info
from kunde_ingestion.adapters.base import SourceAdapter
from kunde_ingestion.cleaning.cleaner import CleaningOptions, clean
from kunde_ingestion.detection.fingerprint import fingerprint
from kunde_ingestion.detection.format_change import FormatChangeResult, detect_format_change
from kunde_ingestion.domain.mapping_config import MappingConfig, MappingOptions
from kunde_ingestion.domain.state_machine import MAP, PARSE, VALIDATE
from kunde_ingestion.domain.types import (
    ApplyMappingResult,
    AuditAction,
    BatchQualityReport,
    BatchStatus,
    DuplicateReport,
    ImportBatch,
    PreviewRow,
    RowStatus,
    Severity,
    UploadResult,
    ValidationReport,
)
from kunde_ingestion.mapping.engine import apply_mapping as map_row
from kunde_ingestion.mapping.engine import validate_config
from kunde_ingestion.mapping.suggestions import (
    MappingCandidate,
    MappingSuggestionSource,
    collect_candidates,
)
from kunde_ingestion.models.staging import ImportBatchModel, ImportStagingRowModel
from kunde_ingestion.repositories.base import EntityRepository
from kunde_ingestion.repositories.kunde import SqlKundeRepository
from kunde_ingestion.services.audit_log import ImportAuditLog
from kunde_ingestion.services.staging_store import StagingStore
from kunde_ingestion.services.template_store import MappingTemplate, TemplateStore
from kunde_ingestion.validation.quality import build_quality_report, quality_report_to_dict
from kunde_ingestion.validation.validator import BatchValidator
from kunde_kernel.domain.clock import Clock, SystemClock
from kunde_kernel.exceptions import (
    BatchConflictError,
    BatchImmutableError,
    FileTooLargeError,
    InputError,
    MappingConfigError,
    MappingConfirmationRequiredError,
    UnsupportedFileTypeError,
)
from kunde_kernel.logging_config import LogContext, get_logger
from kunde_kernel.utils.hashing import hash_bytes
from kunde_kernel.utils.ttl_store import TTLStore

logger = get_logger("ingestion.import_service")


def _state(batch: ImportBatchModel, **extra: Any) -> dict[str, Any]:
    """Compact batch snapshot for audit entries."""
    state = {
        "status": batch.status,
        "row_count": batch.row_count,
        "mapping_hash": batch.mapping_hash,
        "mapping_confirmed": batch.mapping_confirmed,
        "requires_remapping": batch.requires_remapping,
    }
    state.update(extra)
    return state


def _duplicate_report_from_dict(data: Mapping[str, Any] | None) -> DuplicateReport | None:
    if not data:
        return None
    return DuplicateReport(
        total_checked=int(data.get("total_checked", 0)),
        probable_duplicates=int(data.get("probable_duplicates", 0)),
        possible_duplicates=int(data.get("possible_duplicates", 0)),
        unique_rows=int(data.get("unique_rows", 0)),
    )


def _template_name(file_name: str, column_fingerprint: str) -> str:
    return f"{PurePath(file_name).stem} [{column_fingerprint[:8]}]"


def _coerce_config(config: MappingConfig | Mapping[str, Any]) -> MappingConfig:
    if isinstance(config, MappingConfig):
        return config
    try:
        return MappingConfig.from_dict(dict(config))
    except (KeyError, TypeError, ValueError) as exc:
        raise MappingConfigError([f"invalid mapping config: {exc}"]) from exc


class ImportService:
    """Upload, mapping and validation stages of the customer import pipeline."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: PipelineConfig | None = None,
        repository: EntityRepository | None = None,
        suggestion_source: MappingSuggestionSource | None = None,
        adapters: dict[str, SourceAdapter] | None = None,
        template_cache: TTLStore[MappingTemplate] | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or get_active_config()
        self._repository = repository or SqlKundeRepository(session)
        self._suggestion_source = suggestion_source
        self._adapters = adapters if adapters is not None else ADAPTERS
        cache_settings = self._config.template_cache
        self._staging = StagingStore(session, self._clock)
        self._templates = TemplateStore(
            session,
            self._clock,
            template_cache
            if template_cache is not None
            else TTLStore(cache_settings.max_size, cache_settings.ttl_seconds, self._clock),
        )
        self._audit = ImportAuditLog(session, self._clock)

    @property
    def templates(self) -> TemplateStore:
        return self._templates

    @property
    def staging(self) -> StagingStore:
        return self._staging

    @property
    def audit_log(self) -> ImportAuditLog:
        return self._audit

    # -------------------------------------------------------------------------
    # Upload (parse + clean + detect)
    # -------------------------------------------------------------------------

    def _adapter_for(self, file_name: str) -> SourceAdapter:
        settings = self._config.imports
        suffix = PurePath(file_name).suffix.lower()
        adapter = self._adapters.get(suffix)
        if adapter is None or suffix not in settings.supported_extensions:
            raise UnsupportedFileTypeError(file_name, tuple(settings.supported_extensions))
        return adapter

    def upload(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        file_name: str,
        content: bytes,
        sheet_name: str | None = None,
        options: MappingOptions | None = None,
        suggestion_source: MappingSuggestionSource | None = None,
    ) -> UploadResult:
        """
        Stage an uploaded file.

        Input errors (unsupported type, too large, unreadable content) put the
        new batch into ``failed`` without staging any row and are returned as
        ``UploadResult(success=False)`` with the error code.
        """
        options = options or MappingOptions()
        with LogContext.bind(tenant_id=tenant_id, actor_id=actor_id, producer="ingestion"):
            batch = self._staging.create_batch(
                tenant_id,
                actor_id,
                file_name,
                len(content),
                hash_bytes(content),
                selected_sheet=sheet_name,
            )
            with LogContext.bind(correlation_id=batch.id, batch_id=batch.id):
                self._audit.record(
                    tenant_id,
                    batch.id,
                    AuditAction.UPLOAD,
                    actor_id,
                    new_state=_state(batch, file_name=file_name, file_hash=batch.file_hash),
                    details={"file_size_bytes": batch.file_size_bytes},
                )
                logger.info(
                    "batch_uploaded",
                    extra={"file_name": file_name, "file_size": len(content)},
                )
                try:
                    return self._parse(batch, actor_id, content, sheet_name, options, suggestion_source)
                except InputError as exc:
                    return self._reject_input(batch, actor_id, exc)

    def _reject_input(self, batch: ImportBatchModel, actor_id: UUID, exc: InputError) -> UploadResult:
        previous = _state(batch)
        self._staging.fail(batch, actor_id, str(exc), {"code": exc.code})
        self._audit.record(
            batch.tenant_id,
            batch.id,
            AuditAction.FAIL,
            actor_id,
            previous_state=previous,
            new_state=_state(batch),
            details={"code": exc.code, "message": str(exc)},
        )
        logger.warning("upload_rejected", extra={"error_code": exc.code, "error_msg": str(exc)})
        return UploadResult(
            batch=batch.to_dto(),
            success=False,
            error_code=exc.code,
            error_message=str(exc),
        )

    def _parse(
        self,
        batch: ImportBatchModel,
        actor_id: UUID,
        content: bytes,
        sheet_name: str | None,
        options: MappingOptions,
        suggestion_source: MappingSuggestionSource | None,
    ) -> UploadResult:
        settings = self._config.imports
        adapter = self._adapter_for(batch.file_name)
        if len(content) > settings.max_file_size_bytes:
            raise FileTooLargeError(batch.file_name, len(content), settings.max_file_size_bytes)

        self._staging.begin(batch, PARSE, actor_id)
        sheet = adapter.read(
            content,
            {
                "file_name": batch.file_name,
                "sheet_name": sheet_name,
                "header_row": max(1, options.skip_header_rows),
            },
        )

        cleaned = clean(
            sheet.rows,
            sheet.headers,
            CleaningOptions(
                remove_empty_rows=options.skip_empty_rows,
                trim_whitespace=options.trim_whitespace,
            ),
            row_numbers=sheet.row_numbers,
        )

        headers = list(sheet.headers)
        fp = fingerprint(headers)
        change = detect_format_change(
            headers,
            fp,
            self._templates.history(batch.tenant_id),
            self._templates.refs(batch.tenant_id),
            near_match_threshold=settings.near_match_threshold,
            rename_threshold=settings.rename_similarity_threshold,
        )
        self._templates.record_columns(batch.tenant_id, actor_id, fp, headers)
        self._staging.add_rows(batch, cleaned.rows, cleaned.row_numbers, actor_id)

        previous = _state(batch)
        self._staging.finish(
            batch,
            PARSE,
            actor_id,
            headers=headers,
            selected_sheet=sheet.sheet_name or sheet_name,
            column_fingerprint=fp.exact,
            column_set_fingerprint=fp.set,
            column_count=len(headers),
            row_count=len(cleaned.rows),
            cleaning_report=cleaned.report.to_dict(),
            format_change=change.to_dict(),
            format_change_detected=change.detected,
            requires_remapping=change.requires_remapping,
            suggested_template_id=change.suggested_template_id,
        )
        self._audit.record(
            batch.tenant_id,
            batch.id,
            AuditAction.PARSE,
            actor_id,
            previous_state=previous,
            new_state=_state(batch, column_fingerprint=fp.exact),
            details={
                "row_count": len(cleaned.rows),
                "rows_removed": cleaned.report.total_rows_removed,
                "cells_cleaned": cleaned.report.total_cells_cleaned,
                "format_change": change.to_dict(),
            },
        )
        logger.info(
            "batch_parsed",
            extra={
                "row_count": len(cleaned.rows),
                "column_count": len(headers),
                "format_change_detected": change.detected,
                "requires_remapping": change.requires_remapping,
            },
        )

        template = self._template_for(batch.tenant_id, change)
        template_applied = False
        if change.matched_template_id is not None and template is not None:
            self._map(
                batch,
                template.config,
                actor_id,
                confirmed=template.human_confirmed,
                template_id=template.template_id,
                save_template=False,
            )
            self._templates.mark_used(batch.tenant_id, template.template_id)
            template_applied = True
            logger.info("template_auto_applied", extra={"template_id": str(template.template_id)})

        sample_rows = list(cleaned.rows[: settings.sample_values_per_column])
        candidates = collect_candidates(
            headers,
            sample_rows,
            template.config if template is not None else None,
            suggestion_source or self._suggestion_source,
        )
        return UploadResult(
            batch=batch.to_dto(),
            success=True,
            columns=column_info(headers, cleaned.rows, settings.sample_values_per_column),
            preview_rows=tuple(self._preview(batch.id, settings.preview_rows)),
            format_change=change,
            candidates=tuple(candidates),
            cleaning_report=cleaned.report,
            template_applied=template_applied,
        )

    def _template_for(self, tenant_id: UUID, change: FormatChangeResult) -> MappingTemplate | None:
        template_id = change.matched_template_id or change.suggested_template_id
        if template_id is None:
            return None
        return self._templates.get(tenant_id, template_id)

    # -------------------------------------------------------------------------
    # Mapping
    # -------------------------------------------------------------------------

    def apply_mapping(
        self,
        batch_id: UUID,
        config: MappingConfig | Mapping[str, Any],
        actor_id: UUID,
        confirmed: bool = False,
        template_name: str | None = None,
        tenant_id: UUID | None = None,
    ) -> ApplyMappingResult:
        """
        Map every staged row with ``config``.

        Re-applying the config already on the batch is a no-op (a retried
        request).  A different config re-runs the stage from ``mapped`` or
        ``validated`` and clears earlier validation results.  With
        ``confirmed=True`` the mapping counts as human-confirmed and is saved
        as a template for the batch's exact column fingerprint.
        """
        with LogContext.bind(correlation_id=batch_id, actor_id=actor_id, producer="ingestion"):
            batch = self._staging.get_batch(batch_id, tenant_id)
            if batch.status in (BatchStatus.FAILED.value, BatchStatus.CANCELLED.value):
                raise BatchImmutableError(str(batch.id), batch.status)
            mapping = _coerce_config(config)
            problems = validate_config(mapping, batch.headers or ())
            if problems:
                logger.warning("mapping_config_rejected", extra={"problems": problems})
                raise MappingConfigError(problems)

            if batch.mapping_hash == mapping.content_hash():
                if confirmed and not batch.mapping_confirmed:
                    return self.confirm_mapping(batch_id, actor_id, template_name, tenant_id)
                if self._staging.begin(batch, MAP, actor_id) is False:
                    return self._mapping_result(batch)

            return self._map(
                batch,
                mapping,
                actor_id,
                confirmed=confirmed,
                template_name=template_name,
            )

    def _map(
        self,
        batch: ImportBatchModel,
        mapping: MappingConfig,
        actor_id: UUID,
        confirmed: bool,
        template_id: UUID | None = None,
        template_name: str | None = None,
        save_template: bool = True,
    ) -> ApplyMappingResult:
        previous = _state(batch)
        if batch.status != BatchStatus.MAPPING.value:
            rerun = batch.mapping_hash is not None
            self._staging.begin(batch, MAP, actor_id, rerun=rerun)

        rows = self._staging.rows(batch.id)
        results = {}
        notes: list[str] = []
        for row in rows:
            result = map_row(dict(row.raw_data or {}), mapping)
            results[row.row_number] = (result.mapped_data, result.notes)
            notes.extend(f"rad {row.row_number}: {n}" for n in result.notes)
        self._staging.write_mapped(rows, results, actor_id)

        if confirmed and save_template:
            mapping = mapping.confirmed()
            template = self._templates.save(
                batch.tenant_id,
                actor_id,
                template_name or _template_name(batch.file_name, batch.column_fingerprint),
                batch.headers or (),
                mapping,
                human_confirmed=True,
            )
            template_id = template.template_id

        self._staging.finish(
            batch,
            MAP,
            actor_id,
            mapping_config=mapping.to_dict(),
            mapping_hash=mapping.content_hash(),
            mapping_confirmed=confirmed,
            mapping_template_id=template_id,
            validation_options=None,
            valid_row_count=0,
            error_row_count=0,
            warning_row_count=0,
            validation_truncated=False,
            validation_note=None,
            duplicate_report=None,
            quality_report=None,
        )
        self._audit.record(
            batch.tenant_id,
            batch.id,
            AuditAction.MAP,
            actor_id,
            previous_state=previous,
            new_state=_state(batch, mapping_template_id=template_id),
            details={
                "mapped_count": len(rows),
                "note_count": len(notes),
                "target_fields": list(mapping.target_fields),
            },
        )
        logger.info(
            "batch_mapped",
            extra={
                "mapped_count": len(rows),
                "confirmed": confirmed,
                "template_id": str(template_id) if template_id else None,
            },
        )
        return ApplyMappingResult(
            batch_id=batch.id,
            status=BatchStatus(batch.status),
            mapped_count=len(rows),
            confirmed=batch.mapping_confirmed,
            template_id=template_id,
            notes=tuple(notes),
        )

    def _mapping_result(self, batch: ImportBatchModel) -> ApplyMappingResult:
        return ApplyMappingResult(
            batch_id=batch.id,
            status=BatchStatus(batch.status),
            mapped_count=batch.row_count,
            confirmed=batch.mapping_confirmed,
            template_id=batch.mapping_template_id,
        )

    def confirm_mapping(
        self,
        batch_id: UUID,
        actor_id: UUID,
        template_name: str | None = None,
        tenant_id: UUID | None = None,
    ) -> ApplyMappingResult:
        """Record human confirmation of the batch's current mapping."""
        with LogContext.bind(correlation_id=batch_id, actor_id=actor_id, producer="ingestion"):
            batch = self._staging.get_batch(batch_id, tenant_id)
            status = BatchStatus(batch.status)
            if status in (BatchStatus.FAILED, BatchStatus.CANCELLED):
                raise BatchImmutableError(str(batch.id), status.value)
            if status not in (BatchStatus.MAPPED, BatchStatus.VALIDATED) or not batch.mapping_config:
                raise BatchConflictError(
                    str(batch.id),
                    status.value,
                    (BatchStatus.MAPPED.value, BatchStatus.VALIDATED.value),
                )
            if batch.mapping_confirmed:
                return self._mapping_result(batch)

            previous = _state(batch)
            mapping = MappingConfig.from_dict(batch.mapping_config).confirmed()
            template = self._templates.save(
                batch.tenant_id,
                actor_id,
                template_name or _template_name(batch.file_name, batch.column_fingerprint),
                batch.headers or (),
                mapping,
                human_confirmed=True,
            )
            self._staging.compare_and_set(
                batch,
                status,
                status,
                actor_id,
                mapping_config=mapping.to_dict(),
                mapping_confirmed=True,
                mapping_template_id=template.template_id,
            )
            self._audit.record(
                batch.tenant_id,
                batch.id,
                AuditAction.CONFIRM_MAPPING,
                actor_id,
                previous_state=previous,
                new_state=_state(batch, mapping_template_id=template.template_id),
            )
            logger.info("mapping_confirmed", extra={"template_id": str(template.template_id)})
            return self._mapping_result(batch)

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def validate(
        self,
        batch_id: UUID,
        actor_id: UUID,
        options: Mapping[str, Any] | None = None,
        tenant_id: UUID | None = None,
    ) -> ValidationReport:
        """
        Validate every mapped row.

        ``options`` override the mapping config's options for this run
        (JSON-style keys of MappingOptions).  Validating again with the same
        effective options is a no-op that returns the stored result.
        """
        with LogContext.bind(correlation_id=batch_id, actor_id=actor_id, producer="ingestion"):
            batch = self._staging.get_batch(batch_id, tenant_id)
            status = BatchStatus(batch.status)
            if status not in VALIDATE.entry:
                if self._staging.begin(batch, VALIDATE, actor_id) is False:
                    return self._stored_report(batch)

            if batch.requires_remapping and not batch.mapping_confirmed:
                logger.warning("mapping_confirmation_required")
                raise MappingConfirmationRequiredError(str(batch.id))

            mapping = MappingConfig.from_dict(batch.mapping_config or {})
            effective = mapping.options.merged(dict(options) if options else None)
            rerun = batch.validation_options is not None and (
                batch.validation_options != effective.to_dict()
            )
            previous = _state(batch)
            if self._staging.begin(batch, VALIDATE, actor_id, rerun=rerun) is False:
                return self._stored_report(batch)

            settings = self._config.imports
            duplicates = self._config.duplicates
            validator = BatchValidator(
                mapping.with_options(effective),
                clock=self._clock,
                worker_pool_size=settings.worker_pool_size,
                chunk_size=settings.validation_chunk_size,
                probable_threshold=duplicates.probable_threshold,
                possible_threshold=duplicates.possible_threshold,
            )
            rows = self._staging.rows(batch.id)
            existing = self._repository.list_existing(batch.tenant_id)
            result = validator.validate(
                [(r.row_number, dict(r.mapped_data or {})) for r in rows],
                existing,
            )
            self._staging.write_validation(batch, result, actor_id)

            duplicate_report = asdict(result.duplicate_report) if result.duplicate_report else None
            self._staging.finish(
                batch,
                VALIDATE,
                actor_id,
                validation_options=effective.to_dict(),
                valid_row_count=result.valid_count,
                error_row_count=result.error_count,
                warning_row_count=result.warning_count,
                validation_truncated=result.truncated,
                validation_note=result.truncation_note,
                duplicate_report=duplicate_report,
                quality_report=quality_report_to_dict(result.quality_report),
            )
            self._audit.record(
                batch.tenant_id,
                batch.id,
                AuditAction.VALIDATE,
                actor_id,
                previous_state=previous,
                new_state=_state(batch),
                details={
                    "valid": result.valid_count,
                    "warning": result.warning_count,
                    "invalid": result.error_count,
                    "truncated": result.truncated,
                    "options": effective.to_dict(),
                },
            )
            logger.info(
                "batch_validated",
                extra={
                    "valid": result.valid_count,
                    "warning": result.warning_count,
                    "invalid": result.error_count,
                    "truncated": result.truncated,
                },
            )
            return ValidationReport(
                batch_id=batch.id,
                status=BatchStatus(batch.status),
                valid_count=result.valid_count,
                warning_count=result.warning_count,
                error_count=result.error_count,
                truncated=result.truncated,
                truncation_note=result.truncation_note,
                issues_by_row=result.issues_by_row,
                duplicate_report=result.duplicate_report,
                quality_report=result.quality_report,
            )

    def _stored_report(self, batch: ImportBatchModel) -> ValidationReport:
        rows = self._staging.rows(batch.id)
        return ValidationReport(
            batch_id=batch.id,
            status=BatchStatus(batch.status),
            valid_count=batch.valid_row_count,
            warning_count=batch.warning_row_count,
            error_count=batch.error_row_count,
            truncated=batch.validation_truncated,
            truncation_note=batch.validation_note,
            issues_by_row={r.row_number: r.issues() for r in rows if r.errors},
            duplicate_report=_duplicate_report_from_dict(batch.duplicate_report),
            quality_report=self._quality(rows),
        )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_batch(self, batch_id: UUID, tenant_id: UUID | None = None) -> ImportBatch:
        return self._staging.get_batch(batch_id, tenant_id).to_dto()

    def list_batches(
        self,
        tenant_id: UUID,
        status: BatchStatus | None = None,
        limit: int | None = None,
    ) -> list[ImportBatch]:
        return [b.to_dto() for b in self._staging.list_batches(tenant_id, status, limit)]

    def _preview(self, batch_id: UUID, limit: int | None) -> list[PreviewRow]:
        return [
            PreviewRow(
                row_number=row.row_number,
                values=dict(row.raw_data or {}),
                staging_row_id=row.id,
                mapped_values=dict(row.mapped_data) if row.mapped_data is not None else None,
                validation_status=RowStatus(row.validation_status),
                issues=row.issues(),
            )
            for row in self._staging.rows(batch_id, limit)
        ]

    def get_preview(
        self,
        batch_id: UUID,
        limit: int | None = None,
        tenant_id: UUID | None = None,
    ) -> list[PreviewRow]:
        batch = self._staging.get_batch(batch_id, tenant_id)
        return self._preview(batch.id, limit if limit is not None else self._config.imports.preview_rows)

    def get_batch_errors(
        self,
        batch_id: UUID,
        severity: Severity | None = None,
        tenant_id: UUID | None = None,
    ) -> list[dict[str, Any]]:
        batch = self._staging.get_batch(batch_id, tenant_id)
        return [
            {
                "row_number": e.row_number,
                "staging_row_id": str(e.staging_row_id),
                **e.to_issue().to_dict(),
            }
            for e in self._staging.errors(batch.id, severity)
        ]

    def get_batch_summary(self, batch_id: UUID, tenant_id: UUID | None = None) -> dict[str, Any]:
        batch = self._staging.get_batch(batch_id, tenant_id)
        return {
            "batch_id": str(batch.id),
            "file_name": batch.file_name,
            "status": batch.status,
            "row_count": batch.row_count,
            "column_count": batch.column_count,
            "valid_row_count": batch.valid_row_count,
            "warning_row_count": batch.warning_row_count,
            "error_row_count": batch.error_row_count,
            "format_change_detected": batch.format_change_detected,
            "requires_remapping": batch.requires_remapping,
            "mapping_confirmed": batch.mapping_confirmed,
            "mapping_template_id": str(batch.mapping_template_id) if batch.mapping_template_id else None,
            "suggested_template_id": (
                str(batch.suggested_template_id) if batch.suggested_template_id else None
            ),
            "format_change": batch.format_change,
            "cleaning_report": batch.cleaning_report,
            "duplicate_report": batch.duplicate_report,
            "validation_truncated": batch.validation_truncated,
            "validation_note": batch.validation_note,
            "commit_summary": batch.commit_summary,
            "error_message": batch.error_message,
        }

    def _quality(self, rows: Sequence[ImportStagingRowModel]) -> BatchQualityReport:
        checked = [r for r in rows if r.validation_status != RowStatus.PENDING.value]
        return build_quality_report(
            [dict(r.mapped_data or {}) for r in checked],
            [RowStatus(r.validation_status) for r in checked],
            [r.completeness_score or 0.0 for r in checked],
            [i for r in checked for i in r.issues()],
        )

    def get_quality_report(self, batch_id: UUID, tenant_id: UUID | None = None) -> BatchQualityReport:
        """Recomputed from the staged rows on every call."""
        batch = self._staging.get_batch(batch_id, tenant_id)
        return self._quality(self._staging.rows(batch.id))

    def suggest_mappings(
        self,
        batch_id: UUID,
        suggestion_source: MappingSuggestionSource | None = None,
        tenant_id: UUID | None = None,
    ) -> list[MappingCandidate]:
        batch = self._staging.get_batch(batch_id, tenant_id)
        template_id = batch.mapping_template_id or batch.suggested_template_id
        template_config = None
        if template_id is not None:
            template_config = self._templates.get(batch.tenant_id, template_id).config
        rows = self._staging.rows(batch.id, self._config.imports.sample_values_per_column)
        return collect_candidates(
            list(batch.headers or ()),
            [dict(r.raw_data or {}) for r in rows],
            template_config,
            suggestion_source or self._suggestion_source,
        )

    # -------------------------------------------------------------------------
    # Cancel
    # -------------------------------------------------------------------------

    def cancel(self, batch_id: UUID, actor_id: UUID, tenant_id: UUID | None = None) -> ImportBatch:
        """
        Abandon a batch before commit: staging rows and errors are deleted,
        the batch itself is kept as ``cancelled``.  Committed batches are
        reverted with rollback instead.
        """
        with LogContext.bind(correlation_id=batch_id, actor_id=actor_id, producer="ingestion"):
            batch = self._staging.get_batch(batch_id, tenant_id)
            status = BatchStatus(batch.status)
            if status == BatchStatus.COMMITTED:
                raise BatchConflictError(
                    str(batch.id),
                    status.value,
                    (),
                    f"Batch {batch.id} is committed; use rollback to revert it",
                )
            if status == BatchStatus.CANCELLED:
                return batch.to_dto()

            previous = _state(batch)
            self._staging.move(batch, BatchStatus.CANCELLED, actor_id)
            deleted = self._staging.delete_rows(batch)
            self._audit.record(
                batch.tenant_id,
                batch.id,
                AuditAction.CANCEL,
                actor_id,
                previous_state=previous,
                new_state=_state(batch),
                details={"rows_deleted": deleted},
            )
            logger.info("batch_cancelled", extra={"rows_deleted": deleted})
            return batch.to_dto()
