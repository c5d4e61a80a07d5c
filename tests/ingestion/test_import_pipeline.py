"""
Integration tests for ImportService: upload -> map -> validate.

Each test runs against a real session (in-memory SQLite by default) and
checks the batch status, the staged rows and the audit trail together.
"""

from uuid import uuid4

import pytest

from kunde_config import PipelineConfig
from kunde_config.schema import ImportSettings
from kunde_ingestion.adapters import xlsx_adapter
from kunde_ingestion.domain.mapping_config import ColumnMapping, MappingConfig, ValidationRule
from kunde_ingestion.domain.types import AuditAction, BatchStatus, RowStatus, Severity, ValidationType
from kunde_ingestion.mapping.suggestions import SOURCE_TEMPLATE, build_mapping_config
from kunde_ingestion.services import ImportService
from kunde_kernel.exceptions import (
    BatchConflictError,
    BatchImmutableError,
    BatchNotFoundError,
    MappingConfigError,
    MappingConfirmationRequiredError,
)
from tests.conftest import SAMPLE_HEADERS, SAMPLE_ROWS, csv_bytes, xlsx_bytes

INVALID_ROW = ("X", "Gata 1", "0150", "Oslo", "22334455", "feil-epost")

# Same name and address as the first sample row, other contact details.
DUPLICATE_ROW = ("Fjord Elektro AS", "Storgata 1", "0150", "Oslo", "99887766", "salg@fjordelektro.no")


def _invalid_rows(count):
    return tuple(("X", f"Gata {i}", "0150", "Oslo", "22334455", "feil-epost") for i in range(1, count + 1))


def _actions(import_service, batch_id):
    return [e.action for e in import_service.audit_log.entries_for_batch(batch_id)]


class TestUpload:
    def test_csv_upload_staged(self, upload, import_service):
        result = upload()
        batch = result.batch

        assert result.success
        assert batch.status == BatchStatus.PARSED
        assert batch.row_count == 3
        assert batch.column_count == 6
        assert batch.headers == SAMPLE_HEADERS
        assert len(batch.file_hash) == 64
        assert [c.header for c in result.columns] == list(SAMPLE_HEADERS)
        assert [p.row_number for p in result.preview_rows] == [1, 2, 3]
        assert result.preview_rows[0].values["Navn"] == "Fjord Elektro AS"
        assert {c.target_field for c in result.candidates} == {
            "navn", "adresse", "postnummer", "poststed", "telefon", "epost"
        }
        assert not result.template_applied
        assert _actions(import_service, batch.batch_id) == [AuditAction.UPLOAD, AuditAction.PARSE]

    def test_first_upload_requires_mapping_confirmation(self, upload):
        result = upload()
        assert result.batch.requires_remapping
        assert not result.batch.format_change_detected
        assert result.format_change.previous_fingerprint is None

    def test_xlsx_upload(self, import_service, test_tenant_id, test_actor_id):
        result = import_service.upload(
            test_tenant_id, test_actor_id, "kunder.xlsx", xlsx_bytes(SAMPLE_ROWS)
        )
        assert result.success
        assert result.batch.row_count == 3

    def test_xlsx_over_row_cap_fails(self, import_service, test_tenant_id, test_actor_id, monkeypatch):
        monkeypatch.setattr(xlsx_adapter, "MAX_ROWS", 2)
        result = import_service.upload(
            test_tenant_id, test_actor_id, "kunder.xlsx", xlsx_bytes(SAMPLE_ROWS)
        )
        assert not result.success
        assert result.error_code == "INPUT_FILE_INVALID"
        assert result.batch.status == BatchStatus.FAILED

    def test_cleaning_report_and_row_numbers(self, upload):
        rows = SAMPLE_ROWS[:1] + ((None,) * 6,) + SAMPLE_ROWS[1:]
        result = upload(rows)
        assert result.batch.row_count == 3
        assert [p.row_number for p in result.preview_rows] == [1, 3, 4]
        assert result.cleaning_report.total_rows_removed == 1

    def test_unsupported_file_type(self, upload, import_service):
        result = upload(file_name="kunder.pdf")
        assert not result.success
        assert result.error_code == "UNSUPPORTED_FILE_TYPE"
        assert result.batch.status == BatchStatus.FAILED
        assert import_service.staging.row_count(result.batch.batch_id) == 0
        assert _actions(import_service, result.batch.batch_id) == [AuditAction.UPLOAD, AuditAction.FAIL]

    def test_file_too_large(self, session, deterministic_clock, test_tenant_id, test_actor_id):
        config = PipelineConfig(imports=ImportSettings(max_file_size_bytes=10))
        service = ImportService(session, clock=deterministic_clock, config=config)
        result = service.upload(test_tenant_id, test_actor_id, "kunder.csv", csv_bytes(SAMPLE_ROWS))
        assert result.error_code == "FILE_TOO_LARGE"
        assert result.batch.error_details == {"code": "FILE_TOO_LARGE"}

    def test_empty_file(self, import_service, test_tenant_id, test_actor_id, captured_logs):
        result = import_service.upload(test_tenant_id, test_actor_id, "tom.csv", b"")
        assert result.error_code == "INPUT_FILE_INVALID"
        assert result.batch.status == BatchStatus.FAILED
        logs = captured_logs()
        rejected = next(r for r in logs if r["message"] == "upload_rejected")
        assert rejected["correlation_id"] == str(result.batch.batch_id)
        assert rejected["producer"] == "ingestion"

    def test_failed_batch_is_frozen(self, upload, import_service, test_actor_id):
        result = upload(file_name="kunder.pdf")
        config = MappingConfig(mappings=(ColumnMapping("Navn", "navn"),))
        with pytest.raises(BatchImmutableError):
            import_service.apply_mapping(result.batch.batch_id, config, test_actor_id)


class TestTemplates:
    def test_exact_structure_auto_applies_confirmed_template(self, mapped_batch, upload, import_service):
        first, _ = mapped_batch()
        second = upload()

        assert second.template_applied
        assert second.batch.status == BatchStatus.MAPPED
        assert second.batch.mapping_confirmed
        assert not second.batch.requires_remapping
        assert second.batch.mapping_template_id is not None

        template = import_service.templates.get(
            second.batch.tenant_id, second.batch.mapping_template_id
        )
        assert template.use_count == 1
        assert template.human_confirmed

        report = import_service.validate(second.batch.batch_id, uuid4())
        assert report.valid_count == 3

    def test_reordered_columns_need_remapping(self, mapped_batch, upload):
        mapped_batch()
        headers = tuple(reversed(SAMPLE_HEADERS))
        rows = [tuple(reversed(r)) for r in SAMPLE_ROWS]
        result = upload(rows, headers)

        assert not result.template_applied
        assert result.batch.status == BatchStatus.PARSED
        assert result.batch.requires_remapping
        assert result.batch.format_change_detected
        assert result.batch.suggested_template_id is not None
        assert {c.source for c in result.candidates} == {SOURCE_TEMPLATE}


class TestApplyMapping:
    def test_confirmed_mapping(self, upload, import_service, test_actor_id):
        result = upload()
        config = build_mapping_config(result.candidates, SAMPLE_HEADERS)
        mapped = import_service.apply_mapping(result.batch.batch_id, config, test_actor_id, confirmed=True)

        assert mapped.status == BatchStatus.MAPPED
        assert mapped.mapped_count == 3
        assert mapped.confirmed
        assert mapped.template_id is not None
        row = import_service.get_preview(result.batch.batch_id)[0]
        assert row.mapped_values["navn"] == "Fjord Elektro AS"
        assert row.mapped_values["telefon"] == "22 33 44 55"
        assert row.validation_status == RowStatus.PENDING

    def test_dict_config_accepted(self, upload, import_service, test_actor_id):
        result = upload()
        config = build_mapping_config(result.candidates, SAMPLE_HEADERS).to_dict()
        mapped = import_service.apply_mapping(result.batch.batch_id, config, test_actor_id)
        assert mapped.status == BatchStatus.MAPPED
        assert not mapped.confirmed

    def test_invalid_config_rejected(self, upload, import_service, test_actor_id):
        result = upload()
        config = MappingConfig(mappings=(ColumnMapping("Adresse", "adresse"),))
        with pytest.raises(MappingConfigError) as exc_info:
            import_service.apply_mapping(result.batch.batch_id, config, test_actor_id)
        assert "required target field not mapped: navn" in exc_info.value.problems
        assert import_service.get_batch(result.batch.batch_id).status == BatchStatus.PARSED

        with pytest.raises(MappingConfigError):
            import_service.apply_mapping(result.batch.batch_id, {"version": "9"}, test_actor_id)

    def test_bad_rule_params_rejected_before_validation(self, upload, import_service, test_actor_id):
        result = upload()
        rule = ValidationRule(ValidationType.MIN_LENGTH, {"min": "two"})
        config = MappingConfig(mappings=(ColumnMapping("Navn", "navn", validation_rules=(rule,)),))
        with pytest.raises(MappingConfigError) as exc_info:
            import_service.apply_mapping(result.batch.batch_id, config, test_actor_id)
        assert any("'min' must be a non-negative integer" in p for p in exc_info.value.problems)
        assert import_service.get_batch(result.batch.batch_id).status == BatchStatus.PARSED

    def test_same_config_again_is_noop(self, mapped_batch, import_service, test_actor_id):
        result, config = mapped_batch()
        batch_id = result.batch.batch_id
        before = _actions(import_service, batch_id)

        again = import_service.apply_mapping(batch_id, config, test_actor_id, confirmed=True)
        assert again.status == BatchStatus.MAPPED
        assert again.mapped_count == 3
        assert _actions(import_service, batch_id) == before

    def test_new_config_clears_validation(self, validated_batch, import_service, test_actor_id):
        batch_id = validated_batch()
        config = MappingConfig(
            mappings=(ColumnMapping("Navn", "navn", required=True), ColumnMapping("Adresse", "adresse"))
        )
        import_service.apply_mapping(batch_id, config, test_actor_id, confirmed=True)

        batch = import_service.get_batch(batch_id)
        assert batch.status == BatchStatus.MAPPED
        assert batch.valid_row_count == 0
        preview = import_service.get_preview(batch_id)
        assert all(p.validation_status == RowStatus.PENDING for p in preview)
        assert set(preview[0].mapped_values) == {"navn", "adresse"}

    def test_confirm_later(self, upload, import_service, test_actor_id):
        result = upload()
        batch_id = result.batch.batch_id
        config = build_mapping_config(result.candidates, SAMPLE_HEADERS)
        import_service.apply_mapping(batch_id, config, test_actor_id)

        with pytest.raises(MappingConfirmationRequiredError):
            import_service.validate(batch_id, test_actor_id)

        confirmed = import_service.confirm_mapping(batch_id, test_actor_id, template_name="Kundeliste")
        assert confirmed.confirmed
        assert import_service.templates.get(result.batch.tenant_id, confirmed.template_id).name == "Kundeliste"
        assert import_service.confirm_mapping(batch_id, test_actor_id) == confirmed

        report = import_service.validate(batch_id, test_actor_id)
        assert report.status == BatchStatus.VALIDATED
        assert AuditAction.CONFIRM_MAPPING in _actions(import_service, batch_id)

    def test_confirm_needs_mapping(self, upload, import_service, test_actor_id):
        result = upload()
        with pytest.raises(BatchConflictError):
            import_service.confirm_mapping(result.batch.batch_id, test_actor_id)


class TestValidate:
    def test_counts_and_errors(self, mapped_batch, import_service, test_actor_id):
        result, _ = mapped_batch(SAMPLE_ROWS + (INVALID_ROW,))
        batch_id = result.batch.batch_id
        report = import_service.validate(batch_id, test_actor_id)

        assert report.status == BatchStatus.VALIDATED
        assert report.valid_count == 3
        assert report.error_count == 1
        assert set(report.issues_by_row) == {4}
        assert report.quality_report.valid_percentage == 0.75
        assert not report.truncated

        errors = import_service.get_batch_errors(batch_id, Severity.ERROR)
        assert {e["row_number"] for e in errors} == {4}
        assert {e["field_name"] for e in errors} >= {"navn", "epost"}
        batch = import_service.get_batch(batch_id)
        assert (batch.valid_row_count, batch.error_row_count) == (3, 1)

    def test_repeat_returns_stored_report(self, mapped_batch, import_service, test_actor_id):
        result, _ = mapped_batch(SAMPLE_ROWS + (INVALID_ROW,))
        batch_id = result.batch.batch_id
        first = import_service.validate(batch_id, test_actor_id)
        second = import_service.validate(batch_id, test_actor_id)

        assert _actions(import_service, batch_id).count(AuditAction.VALIDATE) == 1
        assert second.error_count == first.error_count
        assert second.issues_by_row == first.issues_by_row
        assert second.quality_report == first.quality_report

    def test_changed_options_rerun(self, mapped_batch, import_service, test_actor_id):
        rows = SAMPLE_ROWS + (DUPLICATE_ROW,)
        result, _ = mapped_batch(rows)
        batch_id = result.batch.batch_id

        first = import_service.validate(batch_id, test_actor_id)
        assert first.warning_count == 1

        second = import_service.validate(batch_id, test_actor_id, {"duplicate_detection": "none"})
        assert second.warning_count == 0
        assert _actions(import_service, batch_id).count(AuditAction.VALIDATE) == 2

    def test_error_cap(self, mapped_batch, import_service, test_actor_id):
        rows = _invalid_rows(3) + SAMPLE_ROWS
        result, _ = mapped_batch(rows)
        report = import_service.validate(result.batch.batch_id, test_actor_id, {"max_errors": 2})

        assert report.truncated
        assert report.error_count == 6
        assert "4 rader" in report.truncation_note

    def test_needs_mapped_batch(self, upload, import_service, test_actor_id):
        result = upload()
        with pytest.raises(BatchConflictError):
            import_service.validate(result.batch.batch_id, test_actor_id)


class TestCancel:
    def test_cancel_deletes_rows_keeps_batch(self, mapped_batch, import_service, test_actor_id):
        result, config = mapped_batch()
        batch_id = result.batch.batch_id
        cancelled = import_service.cancel(batch_id, test_actor_id)

        assert cancelled.status == BatchStatus.CANCELLED
        assert import_service.staging.row_count(batch_id) == 0
        assert import_service.get_batch(batch_id).row_count == 3
        assert _actions(import_service, batch_id)[-1] == AuditAction.CANCEL
        assert import_service.cancel(batch_id, test_actor_id).status == BatchStatus.CANCELLED

        with pytest.raises(BatchImmutableError):
            import_service.apply_mapping(batch_id, config, test_actor_id)


class TestReads:
    def test_tenant_scoped(self, upload, import_service, test_tenant_id):
        result = upload()
        batch_id = result.batch.batch_id
        assert import_service.get_batch(batch_id, test_tenant_id).batch_id == batch_id
        with pytest.raises(BatchNotFoundError):
            import_service.get_batch(batch_id, uuid4())
        assert [b.batch_id for b in import_service.list_batches(test_tenant_id)] == [batch_id]
        assert import_service.list_batches(uuid4()) == []

    def test_summary_and_quality(self, validated_batch, import_service):
        batch_id = validated_batch()
        summary = import_service.get_batch_summary(batch_id)
        assert summary["status"] == "validated"
        assert summary["valid_row_count"] == 3
        assert summary["mapping_confirmed"] is True
        assert summary["cleaning_report"]["total_rows_removed"] == 0

        quality = import_service.get_quality_report(batch_id)
        assert quality.valid_percentage == 1.0
        assert quality.field_coverage["navn"] == 1.0

    def test_preview_limit(self, upload, import_service):
        result = upload()
        assert len(import_service.get_preview(result.batch.batch_id, limit=2)) == 2

    def test_suggest_mappings_uses_template(self, mapped_batch, import_service):
        result, _ = mapped_batch()
        candidates = import_service.suggest_mappings(result.batch.batch_id)
        assert {c.source for c in candidates} == {SOURCE_TEMPLATE}

    def test_audit_order(self, validated_batch, import_service):
        batch_id = validated_batch()
        assert _actions(import_service, batch_id) == [
            AuditAction.UPLOAD,
            AuditAction.PARSE,
            AuditAction.MAP,
            AuditAction.VALIDATE,
        ]
        assert import_service.audit_log.validate_chain()
