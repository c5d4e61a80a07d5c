"""Tests for the CSV and XLSX source adapters."""

from datetime import datetime

import pytest

from kunde_ingestion.adapters import (
    CsvSourceAdapter,
    SourceAdapter,
    XlsxSourceAdapter,
    adapter_for,
    column_info,
    detect_field_type,
)
from kunde_ingestion.adapters import xlsx_adapter
from kunde_ingestion.domain.types import FieldType
from kunde_kernel.exceptions import InputFileError
from tests.conftest import SAMPLE_HEADERS, SAMPLE_ROWS, csv_bytes, xlsx_bytes


class TestAdapterLookup:
    def test_by_extension(self):
        assert isinstance(adapter_for("kunder.CSV"), CsvSourceAdapter)
        assert isinstance(adapter_for("kunder.xlsm"), XlsxSourceAdapter)
        assert adapter_for("kunder.pdf") is None

    def test_protocol(self):
        assert isinstance(CsvSourceAdapter(), SourceAdapter)
        assert isinstance(XlsxSourceAdapter(), SourceAdapter)


class TestCsvAdapter:
    def test_semicolon_utf8(self):
        sheet = CsvSourceAdapter().read(csv_bytes(SAMPLE_ROWS), {})
        assert sheet.headers == SAMPLE_HEADERS
        assert sheet.row_count == 3
        assert sheet.row_numbers == (1, 2, 3)
        assert sheet.detected_delimiter == ";"
        assert sheet.rows[2]["Poststed"] == "Tromsø"

    def test_bom_and_comma(self):
        content = "\ufeffNavn,Adresse\nFjord AS,Storgata 1\n".encode("utf-8")
        sheet = CsvSourceAdapter().read(content, {})
        assert sheet.headers == ("Navn", "Adresse")
        assert sheet.detected_delimiter == ","

    def test_cp1252_fallback(self):
        content = "Navn;Poststed\nBakke Gård;Tromsø\n".encode("cp1252")
        sheet = CsvSourceAdapter().read(content, {})
        assert sheet.rows[0] == {"Navn": "Bakke Gård", "Poststed": "Tromsø"}
        assert sheet.encoding == "cp1252"

    def test_headers_made_unique(self):
        content = b"Navn;;Navn\nA;B;C\n"
        sheet = CsvSourceAdapter().read(content, {})
        assert sheet.headers == ("Navn", "Kolonne_2", "Navn_1")

    def test_blank_rows_kept_except_trailing(self):
        content = b"Navn;Adresse\nA;X\n;\nB;Y\n;\n\n"
        sheet = CsvSourceAdapter().read(content, {})
        assert sheet.row_count == 3
        assert sheet.rows[1] == {"Navn": None, "Adresse": None}

    def test_short_rows_padded(self):
        sheet = CsvSourceAdapter().read(b"Navn;Adresse;Postnr\nA;X\n", {})
        assert sheet.rows[0]["Postnr"] is None

    def test_header_row_option(self):
        content = b"Eksport fra system\nNavn;Adresse\nA;X\n"
        sheet = CsvSourceAdapter().read(content, {"header_row": 2, "delimiter": ";"})
        assert sheet.headers == ("Navn", "Adresse")
        assert sheet.row_count == 1

    def test_empty_file(self):
        with pytest.raises(InputFileError, match="empty"):
            CsvSourceAdapter().read(b"  \n", {"file_name": "tom.csv"})

    def test_probe(self):
        probe = CsvSourceAdapter().probe(csv_bytes(SAMPLE_ROWS), {})
        assert probe.row_count == 3
        assert probe.columns == SAMPLE_HEADERS
        assert len(probe.sample_rows) == 3


class TestXlsxAdapter:
    def test_first_sheet(self):
        content = xlsx_bytes(SAMPLE_ROWS, extra_sheets=("Annet",))
        sheet = XlsxSourceAdapter().read(content, {})
        assert sheet.headers == SAMPLE_HEADERS
        assert sheet.sheet_name == "Kunder"
        assert sheet.rows[0]["Navn"] == "Fjord Elektro AS"

    def test_numbers_and_dates_normalized(self):
        content = xlsx_bytes(
            [("Fjord AS", 150.0, datetime(2024, 3, 25))],
            headers=("Navn", "Postnr", "Siste kontroll"),
        )
        row = XlsxSourceAdapter().read(content, {}).rows[0]
        assert row["Postnr"] == 150
        assert row["Siste kontroll"] == "2024-03-25"

    def test_named_sheet(self):
        content = xlsx_bytes(SAMPLE_ROWS, sheet_title="Ark1", extra_sheets=("Annet",))
        with pytest.raises(InputFileError, match="not found"):
            XlsxSourceAdapter().read(content, {"sheet_name": "Mangler"})
        assert XlsxSourceAdapter().read(content, {"sheet_name": "Ark1"}).row_count == 3

    def test_not_a_workbook(self):
        with pytest.raises(InputFileError):
            XlsxSourceAdapter().read(b"Navn;Adresse\n", {"file_name": "feil.xlsx"})

    def test_row_cap_counts_data_rows_only(self, monkeypatch):
        monkeypatch.setattr(xlsx_adapter, "MAX_ROWS", 3)
        sheet = XlsxSourceAdapter().read(xlsx_bytes(SAMPLE_ROWS), {})
        assert sheet.row_count == 3

    def test_rows_beyond_cap_rejected(self, monkeypatch):
        monkeypatch.setattr(xlsx_adapter, "MAX_ROWS", 2)
        with pytest.raises(InputFileError, match="more than 2 data rows"):
            XlsxSourceAdapter().read(xlsx_bytes(SAMPLE_ROWS), {"file_name": "kunder.xlsx"})


class TestColumnProfiling:
    @pytest.mark.parametrize(
        "values, expected",
        [
            (["0150", "2000", "9008"], FieldType.POSTNUMMER),
            (["a@b.no", "c@d.no"], FieldType.EMAIL),
            (["22334455", "+47 90012345"], FieldType.PHONE),
            (["25.03.2024", "2024-01-01"], FieldType.DATE),
            (["12", "7"], FieldType.INTEGER),
            (["Ja", "nei"], FieldType.BOOLEAN),
            (["Fjord", "Bakke"], FieldType.STRING),
            ([None, ""], FieldType.STRING),
        ],
    )
    def test_detect_field_type(self, values, expected):
        assert detect_field_type(values) == expected

    def test_column_info(self):
        rows = [{"Navn": "A", "Postnr": "0150"}, {"Navn": "A", "Postnr": None}]
        navn, postnr = column_info(["Navn", "Postnr"], rows)
        assert navn.unique_value_count == 1
        assert navn.sample_values == ("A", "A")
        assert postnr.empty_count == 1
        assert postnr.detected_type == FieldType.POSTNUMMER
