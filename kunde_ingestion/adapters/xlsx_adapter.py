"""
XLSX source adapter for customer list exports.

Reads the first worksheet (or ``sheet_name``) with openpyxl in read-only,
data-only mode, so formulas arrive as their cached values.  Date cells are
converted to ISO text because staged raw rows are stored as JSON.

Options:
    sheet_name: worksheet name; default is the first sheet.
    header_row: 1-based row holding the headers (default 1).

At most MAX_ROWS data rows are read below the header row; a sheet with more
is rejected rather than truncated.
"""

from __future__ import annotations

import io
import zipfile
from typing import Any

from kunde_ingestion.adapters.base import ParsedSheet, SourceProbe, build_sheet, probe_from_sheet
from kunde_kernel.exceptions import InputFileError

MAX_ROWS = 100_000


class XlsxSourceAdapter:
    """Read .xlsx/.xlsm bytes into a ParsedSheet."""

    def read(self, content: bytes, options: dict[str, Any]) -> ParsedSheet:
        try:
            import openpyxl
        except ImportError as e:
            raise ImportError("XLSX support requires openpyxl. Install with: pip install openpyxl") from e

        file_name = options.get("file_name", "<xlsx>")
        if not content:
            raise InputFileError(file_name, "file is empty")

        try:
            wb = openpyxl.load_workbook(io.BytesIO(content), read_only=True, data_only=True)
        except (zipfile.BadZipFile, KeyError, ValueError, OSError) as exc:
            raise InputFileError(file_name, f"not a readable workbook: {exc}") from exc

        try:
            sheet = self._get_sheet(wb, options, file_name)
            header_row = int(options.get("header_row", 1))
            raw_rows = self._read_rows(sheet, header_row + MAX_ROWS, file_name)
            parsed = build_sheet(
                raw_rows,
                header_row=header_row,
                sheet_name=sheet.title,
            )
        finally:
            wb.close()

        if parsed is None:
            raise InputFileError(file_name, "no header row found")
        return parsed

    def _read_rows(self, sheet: Any, limit: int, file_name: str) -> list[list[Any]]:
        # Blank formatted rows past the limit are ignored; data there is not.
        rows: list[list[Any]] = []
        for row in sheet.iter_rows(values_only=True):
            if len(rows) < limit:
                rows.append(list(row))
            elif any(value is not None and value != "" for value in row):
                raise InputFileError(file_name, f"more than {MAX_ROWS} data rows")
        return rows

    def _get_sheet(self, wb: Any, options: dict[str, Any], file_name: str) -> Any:
        sheet_ref = options.get("sheet_name")
        if sheet_ref is None:
            if not wb.worksheets:
                raise InputFileError(file_name, "workbook has no sheets")
            return wb.worksheets[0]
        if sheet_ref not in wb.sheetnames:
            raise InputFileError(file_name, f"sheet '{sheet_ref}' not found")
        return wb[sheet_ref]

    def probe(self, content: bytes, options: dict[str, Any]) -> SourceProbe:
        return probe_from_sheet(self.read(content, options))
