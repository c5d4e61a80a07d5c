"""Tests for duplicate detection and the batch quality report."""

from uuid import uuid4

import pytest

from kunde_ingestion.domain.types import ErrorCode, RowStatus, Severity, ValidationIssue
from kunde_ingestion.domain.types import DuplicateStrategy as DS
from kunde_ingestion.repositories.base import ExistingKunde
from kunde_ingestion.validation.duplicates import (
    NormalizedRecord,
    find_strategy_duplicates,
    fuzzy_duplicate_report,
    normalize_address,
    normalize_company_name,
    normalize_phone,
    score_records,
    strategy_key,
)
from kunde_ingestion.validation.quality import (
    build_quality_report,
    completeness_score,
    quality_report_to_dict,
)


class TestNormalization:
    def test_company_name(self):
        assert normalize_company_name(" Fjord Elektro A.S.") == "fjord elektro as"
        assert normalize_company_name("Fjord  Elektro AS") == "fjord elektro as"
        assert normalize_company_name("Bakke ANS") == "bakke ans"

    def test_address(self):
        assert normalize_address("Kirke gt 5") == "kirke gate 5"
        assert normalize_address("Bakke vn 3") == "bakke veien 3"

    def test_phone(self):
        assert normalize_phone("+47 22 33 44 55") == "22334455"


class TestStrategyKeys:
    DATA = {"navn": "Fjord AS", "adresse": "Storgata 1", "ekstern_id": " K-1 ", "epost": "Post@Fjord.no"}

    @pytest.mark.parametrize(
        "strategy, expected",
        [
            (DS.NONE, None),
            (DS.NAME, "fjord as"),
            (DS.NAME_ADDRESS, "fjord as|storgata 1"),
            (DS.EXTERNAL_ID, "k-1"),
            (DS.EMAIL, "post@fjord.no"),
        ],
    )
    def test_keys(self, strategy, expected):
        assert strategy_key(self.DATA, strategy) == expected

    def test_missing_fields_give_no_key(self):
        assert strategy_key({"navn": "Fjord AS"}, DS.NAME_ADDRESS) is None
        assert strategy_key({}, DS.EMAIL) is None


class TestFindStrategyDuplicates:
    def test_first_occurrence_not_flagged(self):
        rows = [(1, {"navn": "A AS"}), (4, {"navn": "a as"}), (2, {"navn": "B AS"})]
        matches = find_strategy_duplicates(rows, [], DS.NAME)
        assert list(matches) == [4]
        assert matches[4].duplicate_of_row == 1
        assert matches[4].in_batch

    def test_existing_entity_wins(self):
        existing = ExistingKunde(uuid4(), navn="A AS", epost="a@a.no")
        rows = [(1, {"navn": "X", "epost": "A@a.no"}), (2, {"navn": "Y", "epost": "a@a.no"})]
        matches = find_strategy_duplicates(rows, [existing], DS.EMAIL)
        assert matches[1].duplicate_of_entity_id == existing.entity_id
        assert matches[2].duplicate_of_entity_id == existing.entity_id
        assert matches[1].matched_name == "A AS"

    def test_none_strategy(self):
        assert find_strategy_duplicates([(1, {"navn": "A"}), (2, {"navn": "A"})], [], DS.NONE) == {}


class TestFuzzy:
    def test_score_uses_shared_fields_only(self):
        a = NormalizedRecord.from_mapping({"navn": "Fjord AS", "epost": "a@b.no"})
        b = NormalizedRecord.from_mapping({"navn": "Fjord AS", "telefon": "22334455"})
        score, fields = score_records(a, b)
        assert score == 1.0
        assert fields == {"navn": 1.0}

    def test_report_and_info(self):
        existing = ExistingKunde(uuid4(), navn="Fjord Elektro AS", adresse="Storgata 1", epost="post@fjord.no")
        rows = [
            (1, {"navn": "Fjord Elektro A/S", "adresse": "Storgata 1", "epost": "post@fjord.no"}),
            (2, {"navn": "Nordlys Bygg", "adresse": "Havnegata 7"}),
            (3, {"navn": "Nordlys Bygg AS", "adresse": "Havnegata 7"}),
        ]
        report, info = fuzzy_duplicate_report(rows, [existing])
        assert report.total_checked == 3
        assert report.probable_duplicates == 2
        assert report.unique_rows == 1
        assert info[1]["suggested_action"] == "update"
        assert info[1]["candidates"][0]["existing_entity_id"] == str(existing.entity_id)
        assert info[3]["suggested_action"] == "review"
        assert info[3]["candidates"][0]["batch_row_number"] == 2
        assert 2 not in info

    def test_thresholds_configurable(self):
        rows = [(1, {"navn": "Nordlys Bygg"}), (2, {"navn": "Nordlys Byggservice"})]
        strict, _ = fuzzy_duplicate_report(rows, [], probable_threshold=0.99, possible_threshold=0.95)
        loose, _ = fuzzy_duplicate_report(rows, [], probable_threshold=0.6, possible_threshold=0.5)
        assert strict.unique_rows == 2
        assert loose.probable_duplicates == 1


class TestQualityReport:
    def test_completeness(self):
        assert completeness_score({}) == 0.0
        full = {
            f: "x"
            for f in ("navn", "adresse", "postnummer", "poststed", "telefon", "epost",
                      "kontaktperson", "siste_kontroll", "neste_kontroll")
        }
        assert completeness_score(full) == pytest.approx(1.0)

    def test_overall_score(self):
        rows = [
            {"navn": "A", "adresse": "B", "postnummer": "0150", "poststed": "Oslo",
             "telefon": "1", "epost": "a@b.no", "kontaktperson": "Ola"},
            {"navn": "C"},
        ]
        statuses = [RowStatus.VALID, RowStatus.INVALID]
        scores = [completeness_score(r) for r in rows]
        issue = ValidationIssue(Severity.ERROR, ErrorCode.REQUIRED_FIELD_MISSING, "Adresse er påkrevd")
        report = build_quality_report(rows, statuses, scores, [issue, issue])

        coverage_mean = (1.0 + 6 * 0.5) / 7
        expected = round(0.5 * 40 + (sum(scores) / 2) * 40 + coverage_mean * 20)
        assert report.overall_score == expected
        assert report.valid_percentage == 0.5
        assert report.field_coverage["navn"] == 1.0
        assert report.common_errors[0].code == "REQUIRED_FIELD_MISSING"
        assert report.common_errors[0].count == 2
        assert any("Kun 50%" in s for s in report.suggestions)

        data = quality_report_to_dict(report)
        assert data["overall_score"] == expected
        assert data["common_errors"][0]["count"] == 2

    def test_empty_batch(self):
        report = build_quality_report([], [], [], [])
        assert report.overall_score == 0
