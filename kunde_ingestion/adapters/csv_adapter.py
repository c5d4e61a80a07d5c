"""
CSV source adapter.

Decodes utf-8 (BOM stripped via utf-8-sig), falling back to cp1252 and then
latin-1, the encodings Norwegian spreadsheet exports arrive in.  The
delimiter is sniffed among ``, ; TAB |`` unless given in options.

Options:
    encoding: force an encoding instead of the fallback chain.
    delimiter: force a delimiter instead of sniffing.
    header_row: 1-based line holding the headers (default 1).
"""

from __future__ import annotations

import csv
import io
from typing import Any

from kunde_ingestion.adapters.base import ParsedSheet, SourceProbe, build_sheet, probe_from_sheet
from kunde_kernel.exceptions import InputFileError

ENCODINGS: tuple[str, ...] = ("utf-8-sig", "cp1252", "latin-1")
DELIMITERS = ",;\t|"


def decode(content: bytes, file_name: str, encoding: str | None = None) -> tuple[str, str]:
    """Return (text, encoding used)."""
    candidates = (encoding,) if encoding else ENCODINGS
    for enc in candidates:
        try:
            return content.decode(enc), enc
        except (UnicodeDecodeError, LookupError):
            continue
    raise InputFileError(file_name, f"could not decode file as {', '.join(candidates)}")


def sniff_delimiter(text: str) -> str:
    sample = "\n".join(text.splitlines()[:20])
    try:
        return csv.Sniffer().sniff(sample, delimiters=DELIMITERS).delimiter
    except csv.Error:
        # Sniffer gives up on single-column files and ragged quoting.
        first = sample.splitlines()[0] if sample else ""
        counts = {d: first.count(d) for d in DELIMITERS}
        best = max(counts, key=lambda d: counts[d])
        return best if counts[best] else ","


class CsvSourceAdapter:
    """Read CSV bytes into a ParsedSheet."""

    def read(self, content: bytes, options: dict[str, Any]) -> ParsedSheet:
        file_name = options.get("file_name", "<csv>")
        if not content or not content.strip():
            raise InputFileError(file_name, "file is empty")

        text, encoding = decode(content, file_name, options.get("encoding"))
        delimiter = options.get("delimiter") or sniff_delimiter(text)
        try:
            raw_rows = list(csv.reader(io.StringIO(text, newline=""), delimiter=delimiter))
        except csv.Error as exc:
            raise InputFileError(file_name, f"malformed CSV: {exc}") from exc

        sheet = build_sheet(
            raw_rows,
            header_row=int(options.get("header_row", 1)),
            encoding=encoding,
            delimiter=delimiter,
        )
        if sheet is None:
            raise InputFileError(file_name, "no header row found")
        return sheet

    def probe(self, content: bytes, options: dict[str, Any]) -> SourceProbe:
        return probe_from_sheet(self.read(content, options))
