"""Tests for column fingerprints, header patterns and format-change detection."""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from kunde_ingestion.detection import (
    ColumnHistoryEntry,
    TemplateRef,
    analyze_column_changes,
    column_similarity,
    detect_column_targets,
    detect_format_change,
    fingerprint,
    normalize_header,
    suggest_column_mappings,
)

HEADERS = ["Navn", "Adresse", "Postnr", "Poststed", "Telefon", "E-post"]
T0 = datetime(2024, 6, 1, tzinfo=timezone.utc)


def _history(headers, seen_at=T0):
    fp = fingerprint(headers)
    return ColumnHistoryEntry(
        fingerprint=fp.exact,
        set_fingerprint=fp.set,
        columns=tuple(headers),
        last_seen_at=seen_at,
    )


def _template(headers, name="Kunder"):
    fp = fingerprint(headers)
    return TemplateRef(
        template_id=uuid4(),
        name=name,
        fingerprint=fp.exact,
        set_fingerprint=fp.set,
        columns=tuple(headers),
    )


class TestFingerprint:
    def test_normalize_header(self):
        assert normalize_header("  Post Nr ") == "post_nr"
        assert normalize_header("E-post") == "epost"
        assert normalize_header("Gårdsnavn") == "gårdsnavn"

    def test_case_and_whitespace_insensitive(self):
        assert fingerprint(["Navn", "Adresse"]) == fingerprint([" navn", "ADRESSE "])

    def test_reorder_keeps_set_changes_exact(self):
        a = fingerprint(["Navn", "Adresse"])
        b = fingerprint(["Adresse", "Navn"])
        assert a.set == b.set
        assert a.exact != b.exact
        assert len(a.exact) == 16


class TestHeaderPatterns:
    def test_standard_headers(self):
        assert detect_column_targets(HEADERS) == {
            "Navn": "navn",
            "Adresse": "adresse",
            "Postnr": "postnummer",
            "Poststed": "poststed",
            "Telefon": "telefon",
            "E-post": "epost",
        }

    def test_confidence_from_priority(self):
        (suggestion,) = suggest_column_mappings(["Firma"])
        assert suggestion.target_field == "navn"
        assert suggestion.confidence == 0.9

    def test_best_confidence_wins_per_target(self):
        suggestions = suggest_column_mappings(["Customer", "Kundenavn"])
        assert [(s.source_column, s.target_field) for s in suggestions] == [("Kundenavn", "navn")]

    def test_org_number_and_inspection_dates(self):
        targets = detect_column_targets(["Orgnr", "Siste el-kontroll", "Neste brannkontroll"])
        assert targets["Orgnr"] == "org_nummer"
        assert targets["Siste el-kontroll"] == "siste_el_kontroll"
        assert targets["Neste brannkontroll"] == "neste_brann_kontroll"

    def test_unknown_header_skipped(self):
        assert suggest_column_mappings(["Farge"]) == []


class TestColumnChanges:
    def test_similarity_of_sets(self):
        assert column_similarity(["a", "b"], ["B", "A"]) == 1.0
        assert column_similarity(["a", "b"], ["a", "c"]) == 0.5

    def test_rename_detected(self):
        changes = analyze_column_changes(["Navn", "Adresse", "Telefon"], ["Navn", "Adresse", "Telefonnr"])
        assert [(r.old, r.new) for r in changes.renamed] == [("telefon", "telefonnr")]
        assert changes.added == ()
        assert changes.removed == ()
        assert changes.similarity == pytest.approx(0.75)

    def test_unrelated_columns_are_added_and_removed(self):
        changes = analyze_column_changes(["Navn", "Faks"], ["Navn", "Kategori"])
        assert changes.added == ("kategori",)
        assert changes.removed == ("faks",)
        assert changes.renamed == ()


class TestDetectFormatChange:
    def test_first_upload(self):
        result = detect_format_change(HEADERS, fingerprint(HEADERS), [], [])
        assert not result.detected
        assert result.requires_remapping
        assert result.previous_fingerprint is None

    def test_exact_template_auto_applies(self):
        template = _template(HEADERS)
        result = detect_format_change(HEADERS, fingerprint(HEADERS), [_history(HEADERS)], [template])
        assert result.matched_template_id == template.template_id
        assert not result.requires_remapping
        assert not result.detected

    def test_same_columns_without_template(self):
        result = detect_format_change(HEADERS, fingerprint(HEADERS), [_history(HEADERS)], [])
        assert not result.detected
        assert result.requires_remapping

    def test_reorder_is_near_match_not_auto_apply(self):
        reordered = list(reversed(HEADERS))
        template = _template(HEADERS)
        result = detect_format_change(reordered, fingerprint(reordered), [_history(HEADERS)], [template])
        assert result.detected
        assert result.requires_remapping
        assert result.matched_template_id is None
        assert result.suggested_template_id == template.template_id

    def test_compares_with_most_recent_history(self):
        old = ["Navn", "Faks"]
        recent = ["Navn", "Adresse"]
        history = [_history(old, T0), _history(recent, T0 + timedelta(days=1))]
        current = ["Navn", "Adresse", "Kategori"]
        result = detect_format_change(current, fingerprint(current), history, [])
        assert result.previous_fingerprint == fingerprint(recent).exact
        assert result.added_columns == ("kategori",)
        assert result.removed_columns == ()

    def test_to_dict_is_serializable(self):
        result = detect_format_change(HEADERS, fingerprint(HEADERS), [], [])
        data = result.to_dict()
        assert data["requires_remapping"] is True
        assert data["renamed_columns"] == []
