"""
Source adapter protocol, parsed-sheet DTO and column profiling.

Contract:
    SourceAdapter.read() turns uploaded file bytes into a ``ParsedSheet``:
    unique headers plus one dict per data row keyed by header.
    SourceAdapter.probe() returns a quick snapshot: row count, columns,
    sample rows.

Headers:
    Trimmed.  An empty header becomes ``Kolonne_<n>`` (1-based column
    position); a repeated header gets ``_1``, ``_2`` ... suffixes.

Rows:
    Row numbers are the 1-based position of the data row below the header.
    Blank rows are kept (the cleaner decides about them) except trailing
    blank rows, which spreadsheet tools leave behind.

Architecture: kunde_ingestion/adapters. Byte parsing only, no DB.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Any, Iterable, Protocol, Sequence, runtime_checkable

from kunde_ingestion.domain.types import ColumnInfo, FieldType

EMPTY_HEADER_PREFIX = "Kolonne_"


@dataclass(frozen=True)
class ParsedSheet:
    """Headers and data rows of one sheet."""

    headers: tuple[str, ...]
    rows: tuple[dict[str, Any], ...]
    row_numbers: tuple[int, ...]
    encoding: str | None = None
    detected_delimiter: str | None = None
    sheet_name: str | None = None

    @property
    def row_count(self) -> int:
        return len(self.rows)


@dataclass(frozen=True)
class SourceProbe:
    """Result of probing a source file (row count, columns, first N rows)."""

    row_count: int
    columns: tuple[str, ...]
    sample_rows: tuple[dict[str, Any], ...]
    encoding: str | None = None
    detected_delimiter: str | None = None


@runtime_checkable
class SourceAdapter(Protocol):
    """Protocol for reading uploaded spreadsheet bytes."""

    def read(self, content: bytes, options: dict[str, Any]) -> ParsedSheet:
        ...

    def probe(self, content: bytes, options: dict[str, Any]) -> SourceProbe:
        ...


def probe_from_sheet(sheet: ParsedSheet, sample_size: int = 5) -> SourceProbe:
    return SourceProbe(
        row_count=sheet.row_count,
        columns=sheet.headers,
        sample_rows=tuple(dict(r) for r in sheet.rows[:sample_size]),
        encoding=sheet.encoding,
        detected_delimiter=sheet.detected_delimiter,
    )


# -----------------------------------------------------------------------------
# Header and cell normalization shared by the adapters
# -----------------------------------------------------------------------------


def normalize_cell(value: Any) -> Any:
    """Strip strings, blank -> None, whole floats -> int, dates -> ISO text."""
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip()
        return text or None
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else value
    if isinstance(value, datetime):
        if value.time() == time(0, 0):
            return value.date().isoformat()
        return value.isoformat()
    if isinstance(value, (date, time)):
        return value.isoformat()
    return value


def unique_headers(raw: Sequence[Any]) -> tuple[str, ...]:
    headers: list[str] = []
    for i, value in enumerate(raw):
        key = "" if value is None else re.sub(r"\s+", " ", str(value)).strip()
        key = key or f"{EMPTY_HEADER_PREFIX}{i + 1}"
        base = key
        count = 0
        while key in headers:
            count += 1
            key = f"{base}_{count}"
        headers.append(key)
    return tuple(headers)


def build_sheet(
    raw_rows: Sequence[Sequence[Any]],
    header_row: int = 1,
    encoding: str | None = None,
    delimiter: str | None = None,
    sheet_name: str | None = None,
) -> ParsedSheet | None:
    """
    Assemble a ParsedSheet from raw cell rows.

    ``header_row`` is the 1-based line holding the headers; lines above it
    are skipped.  Returns None when there is no usable header row.
    """
    start = max(1, header_row) - 1
    if len(raw_rows) <= start:
        return None
    header_cells = list(raw_rows[start])
    while header_cells and normalize_cell(header_cells[-1]) is None:
        header_cells.pop()
    if not header_cells:
        return None
    headers = unique_headers(header_cells)

    data = [
        [normalize_cell(v) for v in raw] for raw in raw_rows[start + 1:]
    ]
    while data and all(v is None for v in data[-1]):
        data.pop()

    rows: list[dict[str, Any]] = []
    for cells in data:
        padded = cells[: len(headers)] + [None] * max(0, len(headers) - len(cells))
        rows.append(dict(zip(headers, padded)))

    return ParsedSheet(
        headers=headers,
        rows=tuple(rows),
        row_numbers=tuple(range(1, len(rows) + 1)),
        encoding=encoding,
        detected_delimiter=delimiter,
        sheet_name=sheet_name,
    )


# -----------------------------------------------------------------------------
# Column profiling for the upload preview
# -----------------------------------------------------------------------------

_POSTNUMMER = re.compile(r"^\d{4}$")
_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PHONE = re.compile(r"^(\+47|0047)?\s*\d{2}\s?\d{2}\s?\d{2}\s?\d{2}$")
_DATE = re.compile(r"^(\d{1,2}[./-]\d{1,2}[./-]\d{2,4}|\d{4}-\d{2}-\d{2})$")
_INTEGER = re.compile(r"^-?\d+$")
_NUMBER = re.compile(r"^-?\d+([.,]\d+)?$")
_BOOLEAN = frozenset({"ja", "nei", "yes", "no", "true", "false", "x"})

# Ordered; the first type matching at least 80% of the samples wins.
_TYPE_CHECKS: tuple[tuple[FieldType, Any], ...] = (
    (FieldType.POSTNUMMER, _POSTNUMMER.match),
    (FieldType.EMAIL, _EMAIL.match),
    (FieldType.PHONE, _PHONE.match),
    (FieldType.DATE, _DATE.match),
    (FieldType.INTEGER, _INTEGER.match),
    (FieldType.NUMBER, _NUMBER.match),
    (FieldType.BOOLEAN, lambda v: v.lower() in _BOOLEAN),
)


def detect_field_type(values: Iterable[Any]) -> FieldType:
    samples = [str(v).strip() for v in values if v is not None and str(v).strip()]
    if not samples:
        return FieldType.STRING
    for field_type, check in _TYPE_CHECKS:
        hits = sum(1 for s in samples if check(s))
        if hits / len(samples) >= 0.8:
            return field_type
    return FieldType.STRING


def column_info(
    headers: Sequence[str],
    rows: Sequence[dict[str, Any]],
    sample_size: int = 5,
) -> tuple[ColumnInfo, ...]:
    infos: list[ColumnInfo] = []
    for index, header in enumerate(headers):
        values = [r.get(header) for r in rows]
        present = [v for v in values if v is not None and str(v).strip() != ""]
        samples = tuple(str(v) for v in present[:sample_size])
        infos.append(
            ColumnInfo(
                index=index,
                header=header,
                sample_values=samples,
                detected_type=detect_field_type(present[:100]),
                unique_value_count=len({str(v) for v in present}),
                empty_count=len(values) - len(present),
            )
        )
    return tuple(infos)
