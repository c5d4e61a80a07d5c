"""Tests for validation rules and the batch validator."""

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from kunde_ingestion.domain.mapping_config import (
    ColumnMapping,
    MappingConfig,
    MappingOptions,
    ValidationRule,
)
from kunde_ingestion.domain.types import (
    DuplicateStrategy,
    ErrorCode,
    RowStatus,
    Severity,
    ValidationIssue,
    ValidationType,
)
from kunde_ingestion.mapping.suggestions import build_mapping_config, merge_candidates
from kunde_ingestion.repositories.base import ExistingKunde
from kunde_ingestion.validation.rules import VALIDATORS, RuleContext, evaluate_rule
from kunde_ingestion.validation.validator import (
    BatchValidator,
    resolve_status,
    suggest_email_domain_fix,
)
from kunde_kernel.domain.clock import DeterministicClock

HEADERS = ["Navn", "Adresse", "Postnr", "Poststed", "Telefon", "E-post"]
CLOCK = DeterministicClock(datetime(2024, 6, 15, 12, 0, 0, tzinfo=timezone.utc))


def _rule(vtype, severity=Severity.ERROR, **params):
    return ValidationRule(vtype, params, severity)


def _check(vtype, value, ctx=None, **params):
    return evaluate_rule("felt", value, _rule(vtype, **params), ctx or RuleContext())


def _validator(options=None, **kwargs):
    config = build_mapping_config(merge_candidates(HEADERS), HEADERS, options)
    return BatchValidator(config, clock=CLOCK, **kwargs)


def _row(navn="Fjord Elektro AS", adresse="Storgata 1", **extra):
    data = {"navn": navn, "adresse": adresse, "postnummer": "0150", "poststed": "Oslo"}
    data.update(extra)
    return data


class TestRules:
    def test_registry_complete(self):
        assert set(VALIDATORS) == set(ValidationType)

    @pytest.mark.parametrize(
        "vtype",
        [t for t in ValidationType if t != ValidationType.REQUIRED],
    )
    def test_empty_value_passes_every_rule_but_required(self, vtype):
        assert _check(vtype, None, pattern=r"\d", values=["a"], min=1, max=2) is None

    def test_required(self):
        issue = _check(ValidationType.REQUIRED, "  ")
        assert issue.code == ErrorCode.REQUIRED_FIELD_MISSING

    @pytest.mark.parametrize(
        "vtype, value, params, code",
        [
            (ValidationType.MIN_LENGTH, "a", {"min": 2}, ErrorCode.INVALID_FORMAT),
            (ValidationType.MAX_LENGTH, "abcd", {"max": 3}, ErrorCode.INVALID_FORMAT),
            (ValidationType.PATTERN, "abc", {"pattern": r"^\d+$"}, ErrorCode.INVALID_FORMAT),
            (ValidationType.EMAIL, "post@fjord", {}, ErrorCode.INVALID_EMAIL),
            (ValidationType.PHONE, "1234", {}, ErrorCode.INVALID_PHONE),
            (ValidationType.POSTNUMMER, "150", {}, ErrorCode.INVALID_POSTNUMMER),
            (ValidationType.DATE, "25.03.2024", {}, ErrorCode.INVALID_DATE),
            (ValidationType.DATE_RANGE, "1999-01-01", {"min": "2000-01-01"}, ErrorCode.VALUE_OUT_OF_RANGE),
            (ValidationType.NUMBER, "tolv", {}, ErrorCode.INVALID_NUMBER),
            (ValidationType.INTEGER, "1,5", {}, ErrorCode.INVALID_NUMBER),
            (ValidationType.RANGE, "200", {"min": 1, "max": 120}, ErrorCode.VALUE_OUT_OF_RANGE),
            (ValidationType.ENUM, "gård", {"values": ["bolig", "næring"]}, ErrorCode.INVALID_FORMAT),
        ],
    )
    def test_failing_values(self, vtype, value, params, code):
        issue = _check(vtype, value, **params)
        assert issue is not None
        assert issue.code == code
        assert issue.actual_value is not None

    @pytest.mark.parametrize(
        "vtype, value, params",
        [
            (ValidationType.EMAIL, "post@fjord.no", {}),
            (ValidationType.PHONE, "+47 22 33 44 55", {}),
            (ValidationType.POSTNUMMER, "0150", {}),
            (ValidationType.DATE, "2024-03-25", {}),
            (ValidationType.INTEGER, 12, {}),
            (ValidationType.NUMBER, "1 234,5", {}),
            (ValidationType.ENUM, "Bolig", {"values": ["bolig"]}),
        ],
    )
    def test_passing_values(self, vtype, value, params):
        assert _check(vtype, value, **params) is None

    def test_severity_and_message_from_rule(self):
        rule = ValidationRule(ValidationType.PHONE, severity=Severity.WARNING, message="Sjekk nummer")
        issue = evaluate_rule("telefon", "12", rule, RuleContext(source_column="Tlf"))
        assert issue.severity == Severity.WARNING
        assert issue.message == "Sjekk nummer"
        assert issue.source_column == "Tlf"

    def test_unique_against_existing(self):
        ctx = RuleContext(existing_values={"felt": frozenset({"fjord as"})})
        assert _check(ValidationType.UNIQUE, " Fjord  AS", ctx).code == ErrorCode.DUPLICATE_ENTRY

    def test_unique_in_batch_flags_later_rows_only(self):
        first_seen = {"felt": {"fjord as": 2}}
        assert _check(ValidationType.UNIQUE_IN_BATCH, "Fjord AS", RuleContext(2, first_seen=first_seen)) is None
        issue = _check(ValidationType.UNIQUE_IN_BATCH, "Fjord AS", RuleContext(5, first_seen=first_seen))
        assert issue.code == ErrorCode.DUPLICATE_IN_BATCH
        assert issue.suggestion == "Duplikat av rad 2"


class TestStatusResolution:
    def test_resolve_status(self):
        warning = ValidationIssue(Severity.WARNING, ErrorCode.INVALID_PHONE, "w")
        error = ValidationIssue(Severity.ERROR, ErrorCode.INVALID_EMAIL, "e")
        assert resolve_status([]) == RowStatus.VALID
        assert resolve_status([warning]) == RowStatus.WARNING
        assert resolve_status([warning, error]) == RowStatus.INVALID

    def test_email_domain_fix(self):
        assert suggest_email_domain_fix("ola@gmial.com") == "ola@gmail.com"
        assert suggest_email_domain_fix("ola@gmaul.com") == "ola@gmail.com"
        assert suggest_email_domain_fix("ola@gmail.com") is None
        assert suggest_email_domain_fix("ola@fjord.no") is None


class TestBuiltinChecks:
    def _issues(self, data, **options):
        validator = _validator(MappingOptions(duplicate_detection=DuplicateStrategy.NONE, **options))
        (row,) = validator.validate([(1, data)]).rows
        return row

    def test_valid_row(self):
        row = self._issues(_row(epost="post@fjordelektro.no", telefon="22 33 44 55"))
        assert row.status == RowStatus.VALID
        assert row.issues == ()

    def test_short_name_and_address(self):
        row = self._issues(_row(navn="A", adresse="ab"))
        assert row.status == RowStatus.INVALID
        fields = {i.field_name for i in row.issues}
        assert {"navn", "adresse"} <= fields

    def test_email_typo_is_warning_with_suggestion(self):
        row = self._issues(_row(epost="ola@gmial.com"))
        assert row.status == RowStatus.WARNING
        (issue,) = row.issues
        assert issue.suggestion == "ola@gmail.com"

    def test_invalid_email_reported_once(self):
        row = self._issues(_row(epost="ola@"))
        codes = [i.code for i in row.issues if i.field_name == "epost"]
        assert codes == [ErrorCode.INVALID_EMAIL]

    def test_bad_postnummer(self):
        row = self._issues(_row(postnummer="12"))
        assert row.status == RowStatus.INVALID
        assert any(i.code == ErrorCode.INVALID_POSTNUMMER for i in row.issues)

    def test_control_date_order(self):
        row = self._issues(_row(siste_kontroll="2024-05-01", neste_kontroll="2024-01-01"))
        assert row.status == RowStatus.INVALID
        assert row.issues[0].field_name == "neste_kontroll"

    def test_control_date_plausibility_warnings(self):
        row = self._issues(_row(siste_el_kontroll="1998-05-01", neste_el_kontroll="2040-01-01"))
        assert row.status == RowStatus.WARNING
        assert {i.field_name for i in row.issues} == {"siste_el_kontroll", "neste_el_kontroll"}

    def test_unknown_category(self):
        row = self._issues(_row(kategori="gård"), known_categories=("bolig", "næring"))
        assert row.status == RowStatus.WARNING
        assert row.issues[0].code == ErrorCode.UNKNOWN_CATEGORY
        row = self._issues(
            _row(kategori="gård"), known_categories=("bolig",), auto_create_categories=True
        )
        assert row.status == RowStatus.VALID


class TestBatchValidation:
    def test_counts_and_issues_by_row(self):
        result = _validator().validate(
            [(1, _row()), (2, _row(navn="B", adresse="Havnegata 7")), (3, _row(navn="Nordlys", epost="x@gmial.com"))]
        )
        assert (result.valid_count, result.warning_count, result.error_count) == (1, 1, 1)
        assert set(result.issues_by_row) == {2, 3}
        assert not result.truncated
        assert result.quality_report.valid_percentage == pytest.approx(1 / 3, abs=1e-4)

    def test_error_cap_truncates_later_rows(self, captured_logs):
        rows = [(n, _row(navn="X", adresse=f"Gate {n}")) for n in range(1, 6)]
        result = _validator(MappingOptions(max_errors=2)).validate(rows)
        statuses = [r.status for r in result.rows]
        assert statuses == [RowStatus.INVALID] * 5
        assert [r.truncated for r in result.rows] == [False, False, True, True, True]
        assert result.rows[2].issues[0].code == ErrorCode.VALIDATION_TRUNCATED
        assert result.truncated
        assert "3 rader" in result.truncation_note
        assert any(r["message"] == "validation_truncated" for r in captured_logs())

    def test_stop_on_first_error(self):
        rows = [(1, _row()), (2, _row(navn="X")), (3, _row(navn="Y"))]
        result = _validator(MappingOptions(stop_on_first_error=True)).validate(rows)
        assert [r.truncated for r in result.rows] == [False, False, True]

    def test_unlimited_cap(self):
        rows = [(n, _row(navn="X", adresse=f"Gate {n}")) for n in range(1, 6)]
        result = _validator(MappingOptions(max_errors=0)).validate(rows)
        assert not result.truncated

    def test_result_independent_of_pool_shape(self):
        rows = [(n, _row(navn=f"Kunde {n}" if n % 3 else "X", adresse=f"Gate {n}")) for n in range(1, 40)]
        serial = _validator(MappingOptions(max_errors=5), worker_pool_size=1, chunk_size=100).validate(rows)
        parallel = _validator(MappingOptions(max_errors=5), worker_pool_size=4, chunk_size=3).validate(
            list(reversed(rows))
        )
        assert serial.rows == parallel.rows

    def test_in_batch_duplicate_is_warning(self):
        rows = [(1, _row()), (2, _row(navn="Fjord Elektro AS.", adresse="Storgata  1"))]
        result = _validator().validate(rows)
        first, second = result.rows
        assert first.status == RowStatus.VALID
        assert second.status == RowStatus.WARNING
        assert second.duplicate_of_row == 1
        assert second.issues[-1].code == ErrorCode.DUPLICATE_IN_BATCH

    def test_existing_duplicate(self):
        existing = ExistingKunde(uuid4(), navn="Fjord Elektro AS", adresse="Storgata 1", postnummer="0150")
        result = _validator().validate([(1, _row())], [existing])
        (row,) = result.rows
        assert row.duplicate_of_entity_id == existing.entity_id
        assert row.issues[-1].code == ErrorCode.DUPLICATE_ENTRY
        assert row.duplicate_info["suggested_action"] == "update"
        assert result.duplicate_report.probable_duplicates == 1

    def test_unique_in_batch_rule(self):
        config = MappingConfig(
            mappings=(
                ColumnMapping("Navn", "navn", required=True),
                ColumnMapping("Adresse", "adresse"),
                ColumnMapping("Kundenr", "ekstern_id", validation_rules=(_rule(ValidationType.UNIQUE_IN_BATCH),)),
            ),
            options=MappingOptions(duplicate_detection=DuplicateStrategy.NONE),
        )
        rows = [(1, _row(ekstern_id="K1")), (2, _row(navn="Nordlys", ekstern_id="k1"))]
        result = BatchValidator(config, clock=CLOCK).validate(rows)
        assert result.rows[0].status == RowStatus.VALID
        assert result.rows[1].status == RowStatus.INVALID
