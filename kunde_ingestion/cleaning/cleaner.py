"""
Cleaner -- row-level normalization before mapping.

Contract:
    ``clean(rows, headers, options) -> CleaningResult``.  Pure and
    deterministic; cleaning its own output changes nothing, so preview can
    run it any number of times.  A row is never rejected for a bad value:
    a value a targeted rule cannot fix is kept unchanged and recorded as an
    anomaly for the validator to flag.

Rules:
    Cell rules run first, in this order, on string cells:
        remove_invisible_chars, trim_whitespace, normalize_whitespace,
        fix_encoding, standardize_empty
    then on columns recognized by the header patterns:
        fix_postnummer, fix_phone, normalize_dates
    Row rules run on the cleaned cells:
        remove_empty_rows, remove_summary_rows, remove_duplicate_rows

    Row rules see cleaned values so that two rows differing only in
    whitespace are caught on the first pass.

Row numbers are carried through unchanged; a removed row leaves a gap.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Mapping, Sequence

from kunde_ingestion.detection.patterns import DATE_FIELDS, suggest_column_mappings
from kunde_ingestion.mapping.dates import detect_column_date_format, parse_date
from kunde_ingestion.mapping.transforms import as_text, format_phone, format_postnummer

ROW_RULES: tuple[tuple[str, str], ...] = (
    ("remove_empty_rows", "Fjern tomme rader"),
    ("remove_summary_rows", "Fjern summeringsrader"),
    ("remove_duplicate_rows", "Fjern duplikater"),
)
CELL_RULES: tuple[tuple[str, str], ...] = (
    ("remove_invisible_chars", "Fjern usynlige tegn"),
    ("trim_whitespace", "Trim mellomrom"),
    ("normalize_whitespace", "Normaliser mellomrom"),
    ("fix_encoding", "Fiks tegnkoding"),
    ("standardize_empty", "Standardiser tomverdier"),
    ("fix_postnummer", "Fiks postnummer"),
    ("fix_phone", "Fiks telefonnummer"),
    ("normalize_dates", "Normaliser datoer"),
)

_INVISIBLE = re.compile("[\u200b\u200c\u200d\ufeff\u00ad\u200e\u200f]")
_MULTI_SPACE = re.compile(r"\s{2,}")
_EMPTY_MARKERS = re.compile(
    r"^(-|N/A|n/a|NA|na|ingen|tom|null|undefined|#N/A|#REF!|#VERDI!|–|—|\.)$"
)
_SUMMARY = re.compile(
    r"\b(sum|total|totalt|subtotal|i alt|gjennomsnitt|snitt|antall)\b", re.IGNORECASE
)
_PHONE_FORMATTED = re.compile(r"^\d{2} \d{2} \d{2} \d{2}$")

ENCODING_FIXES: tuple[tuple[str, str], ...] = (
    ("Ã¦", "æ"), ("Ã¸", "ø"), ("Ã¥", "å"),
    ("Ã†", "Æ"), ("Ã˜", "Ø"), ("Ã…", "Å"),
    ("Ã©", "é"), ("Ã¶", "ö"), ("Ã¤", "ä"),
    ("Ã¼", "ü"), ("Ã–", "Ö"), ("Ã„", "Ä"),
)


# -----------------------------------------------------------------------------
# Report types
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class CleaningOptions:
    remove_empty_rows: bool = True
    remove_summary_rows: bool = True
    remove_duplicate_rows: bool = True
    trim_whitespace: bool = True

    def enabled(self, rule_id: str) -> bool:
        return bool(getattr(self, rule_id, True))


@dataclass(frozen=True)
class CellChange:
    row_number: int
    column: str
    original_value: Any
    cleaned_value: Any
    rule_id: str


@dataclass(frozen=True)
class RowRemoval:
    row_number: int
    row_data: dict[str, Any]
    rule_id: str
    reason: str


@dataclass(frozen=True)
class CleaningAnomaly:
    row_number: int
    column: str
    value: Any
    rule_id: str
    message: str


@dataclass(frozen=True)
class RuleSummary:
    rule_id: str
    name: str
    category: str
    affected_count: int
    enabled: bool


@dataclass(frozen=True)
class CleaningReport:
    rules: tuple[RuleSummary, ...] = ()
    cell_changes: tuple[CellChange, ...] = ()
    row_removals: tuple[RowRemoval, ...] = ()
    anomalies: tuple[CleaningAnomaly, ...] = ()

    @property
    def total_cells_cleaned(self) -> int:
        return len(self.cell_changes)

    @property
    def total_rows_removed(self) -> int:
        return len(self.row_removals)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rules": [
                {
                    "rule_id": r.rule_id,
                    "name": r.name,
                    "category": r.category,
                    "affected_count": r.affected_count,
                    "enabled": r.enabled,
                }
                for r in self.rules
            ],
            "total_cells_cleaned": self.total_cells_cleaned,
            "total_rows_removed": self.total_rows_removed,
            "row_removals": [
                {"row_number": r.row_number, "rule_id": r.rule_id, "reason": r.reason}
                for r in self.row_removals
            ],
            "anomalies": [
                {
                    "row_number": a.row_number,
                    "column": a.column,
                    "value": a.value if isinstance(a.value, (str, int, float)) else str(a.value),
                    "rule_id": a.rule_id,
                    "message": a.message,
                }
                for a in self.anomalies
            ],
        }


@dataclass(frozen=True)
class CleaningResult:
    rows: list[dict[str, Any]] = field(default_factory=list)
    row_numbers: list[int] = field(default_factory=list)
    report: CleaningReport = field(default_factory=CleaningReport)


# -----------------------------------------------------------------------------
# Cell helpers
# -----------------------------------------------------------------------------


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and not value.strip()


def remove_invisible_chars(text: str) -> str:
    return _INVISIBLE.sub("", text).replace("\u00a0", " ")


def fix_encoding(text: str) -> str:
    for broken, fixed in ENCODING_FIXES:
        text = text.replace(broken, fixed)
    return text


def _fix_postnummer(value: Any) -> str | None:
    """Fixed postal code, or None when the digits do not make one."""
    fixed = format_postnummer(value)
    if fixed is None or not (len(fixed) == 4 and fixed.isdigit()):
        return None
    return fixed


def _fix_phone(value: Any) -> str | None:
    fixed = format_phone(value)
    if fixed is None or not _PHONE_FORMATTED.match(fixed):
        return None
    return fixed


class _Cleaner:
    """Accumulates changes for one ``clean`` call."""

    def __init__(self, headers: Sequence[str], options: CleaningOptions):
        self.headers = list(headers)
        self.options = options
        self.changes: list[CellChange] = []
        self.removals: list[RowRemoval] = []
        self.anomalies: list[CleaningAnomaly] = []

        targets = {s.source_column: s.target_field for s in suggest_column_mappings(headers)}
        self.postnummer_columns = {h for h, t in targets.items() if t == "postnummer"}
        self.phone_columns = {h for h, t in targets.items() if t == "telefon"}
        self.date_columns = {h for h, t in targets.items() if t in DATE_FIELDS}
        self.date_hints: dict[str, str] = {}

    def _change(self, row_number: int, column: str, before: Any, after: Any, rule_id: str) -> None:
        self.changes.append(CellChange(row_number, column, before, after, rule_id))

    def _anomaly(self, row_number: int, column: str, value: Any, rule_id: str, message: str) -> None:
        self.anomalies.append(CleaningAnomaly(row_number, column, value, rule_id, message))

    def clean_string(self, row_number: int, column: str, value: str) -> str | None:
        current = value
        steps = (
            ("remove_invisible_chars", remove_invisible_chars),
            ("trim_whitespace", str.strip),
            ("normalize_whitespace", lambda s: _MULTI_SPACE.sub(" ", s)),
            ("fix_encoding", fix_encoding),
        )
        for rule_id, fn in steps:
            if rule_id == "trim_whitespace" and not self.options.trim_whitespace:
                continue
            updated = fn(current)
            if updated != current:
                self._change(row_number, column, current, updated, rule_id)
                current = updated

        if _EMPTY_MARKERS.match(current):
            self._change(row_number, column, current, None, "standardize_empty")
            return None
        return current if current != "" else None

    def clean_targeted(self, row_number: int, column: str, value: Any) -> Any:
        if _is_blank(value):
            return value
        if column in self.postnummer_columns:
            fixed = _fix_postnummer(value)
            if fixed is None:
                self._anomaly(row_number, column, value, "fix_postnummer", "Ugyldig postnummer")
            elif fixed != value:
                self._change(row_number, column, value, fixed, "fix_postnummer")
                value = fixed
        if column in self.phone_columns:
            fixed = _fix_phone(value)
            if fixed is None:
                digits = re.sub(r"\D", "", as_text(value))
                if len(digits) < 8:
                    self._anomaly(row_number, column, value, "fix_phone", "Ugyldig telefonnummer")
            elif fixed != value:
                self._change(row_number, column, value, fixed, "fix_phone")
                value = fixed
        if column in self.date_columns:
            if isinstance(value, datetime):
                parsed: str | None = value.date().isoformat()
            elif isinstance(value, date):
                parsed = value.isoformat()
            else:
                parsed = parse_date(value, self.date_hints.get(column))
            if parsed is None:
                self._anomaly(row_number, column, value, "normalize_dates", "Ukjent datoformat")
            elif parsed != value:
                self._change(row_number, column, value, parsed, "normalize_dates")
                value = parsed
        return value

    def clean_row(self, row_number: int, row: Mapping[str, Any]) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for column in self.headers:
            value = row.get(column)
            if isinstance(value, str):
                value = self.clean_string(row_number, column, value)
            out[column] = self.clean_targeted(row_number, column, value)
        return out

    def summaries(self) -> tuple[RuleSummary, ...]:
        summaries = [
            RuleSummary(
                rule_id,
                name,
                "rows",
                sum(1 for r in self.removals if r.rule_id == rule_id),
                self.options.enabled(rule_id),
            )
            for rule_id, name in ROW_RULES
        ]
        summaries.extend(
            RuleSummary(
                rule_id,
                name,
                "cells",
                sum(1 for c in self.changes if c.rule_id == rule_id),
                self.options.enabled(rule_id),
            )
            for rule_id, name in CELL_RULES
        )
        return tuple(summaries)


def _filled(row: Mapping[str, Any], headers: Sequence[str]) -> int:
    return sum(1 for h in headers if not _is_blank(row.get(h)))


def _row_key(row: Mapping[str, Any], headers: Sequence[str]) -> str:
    return "|".join("" if row.get(h) is None else as_text(row.get(h)) for h in headers)


def clean(
    rows: Sequence[Mapping[str, Any]],
    headers: Sequence[str],
    options: CleaningOptions | None = None,
    row_numbers: Sequence[int] | None = None,
) -> CleaningResult:
    """
    Clean parsed rows.

    ``row_numbers`` defaults to the 1-based position of each row.
    """
    options = options or CleaningOptions()
    numbers = list(row_numbers) if row_numbers is not None else list(range(1, len(rows) + 1))
    if len(numbers) != len(rows):
        raise ValueError("row_numbers must match rows")

    cleaner = _Cleaner(headers, options)
    for column in cleaner.date_columns:
        cleaner.date_hints[column] = detect_column_date_format(r.get(column) for r in rows)

    cleaned = [cleaner.clean_row(n, row) for n, row in zip(numbers, rows)]

    kept_rows: list[dict[str, Any]] = []
    kept_numbers: list[int] = []
    seen: dict[str, int] = {}
    half = math.ceil(len(headers) / 2)

    for number, row in zip(numbers, cleaned):
        filled = _filled(row, headers)
        if options.remove_empty_rows and filled == 0:
            cleaner.removals.append(RowRemoval(number, row, "remove_empty_rows", "Tom rad"))
            continue

        if options.remove_summary_rows and filled <= half:
            summary_cell = next(
                (row[h] for h in headers if isinstance(row.get(h), str) and _SUMMARY.search(row[h])),
                None,
            )
            if summary_cell is not None:
                cleaner.removals.append(
                    RowRemoval(
                        number,
                        row,
                        "remove_summary_rows",
                        f'Summeringsrad ("{summary_cell[:40]}")',
                    )
                )
                continue

        if options.remove_duplicate_rows:
            key = _row_key(row, headers)
            first = seen.get(key)
            if first is not None:
                cleaner.removals.append(
                    RowRemoval(number, row, "remove_duplicate_rows", f"Duplikat av rad {first}")
                )
                continue
            seen[key] = number

        kept_rows.append(row)
        kept_numbers.append(number)

    report = CleaningReport(
        rules=cleaner.summaries(),
        cell_changes=tuple(cleaner.changes),
        row_removals=tuple(cleaner.removals),
        anomalies=tuple(cleaner.anomalies),
    )
    return CleaningResult(rows=kept_rows, row_numbers=kept_numbers, report=report)
