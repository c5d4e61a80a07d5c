"""
Batch validator -- per-row rules, built-in field checks, duplicates, cap.

Contract:
    ``BatchValidator(config, ...).validate(rows, existing) -> BatchValidation``
    where ``rows`` is a sequence of ``(row_number, mapped_data)``.  Pure with
    respect to storage: the caller persists the result.

Row status:
    any error-severity issue   -> invalid
    only warning / info issues -> warning
    no issues                  -> valid

Ordering:
    Rows are evaluated in fixed-size chunks on a bounded thread pool.  Chunk
    results are merged by row number, and the error cap is applied in row
    order, so the outcome never depends on completion order.

Error cap:
    ``max_errors`` (0 = unlimited) counts invalid rows; ``stop_on_first_error``
    sets the cap to one.  Once the cap is reached every later row gets a
    single ``VALIDATION_TRUNCATED`` error and is not evaluated further.

Duplicates:
    Strategy duplicates (``duplicate_detection``) are warnings so the rows
    stay commit-eligible; ``duplicate_action`` decides at commit.  Fuzzy
    candidates only land in ``duplicate_info`` and the duplicate report.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import date
from typing import Any, Mapping, Sequence
from uuid import UUID

from rapidfuzz.distance import Levenshtein

from kunde_ingestion.domain.mapping_config import MappingConfig
from kunde_ingestion.domain.types import (
    BatchQualityReport,
    DuplicateReport,
    DuplicateStrategy,
    ErrorCode,
    RowStatus,
    Severity,
    ValidationIssue,
    ValidationType,
)
from kunde_ingestion.repositories.base import ExistingKunde
from kunde_ingestion.validation.duplicates import (
    POSSIBLE_THRESHOLD,
    PROBABLE_THRESHOLD,
    StrategyMatch,
    find_strategy_duplicates,
    fuzzy_duplicate_report,
)
from kunde_ingestion.validation.quality import build_quality_report, completeness_score
from kunde_ingestion.validation.rules import (
    EMAIL_RE,
    POSTNUMMER_RE,
    RuleContext,
    evaluate_rule,
    normalize_for_uniqueness,
    text_of,
    to_date,
)
from kunde_kernel.domain.clock import Clock, SystemClock
from kunde_kernel.logging_config import get_logger

logger = get_logger("ingestion.validator")

CONTROL_DATE_PAIRS: tuple[tuple[str, str, str], ...] = (
    ("siste_kontroll", "neste_kontroll", "kontroll"),
    ("siste_el_kontroll", "neste_el_kontroll", "el-kontroll"),
    ("siste_brann_kontroll", "neste_brann_kontroll", "brannkontroll"),
)

COMMON_EMAIL_DOMAINS: tuple[str, ...] = (
    "gmail.com", "hotmail.com", "outlook.com", "yahoo.com", "live.com",
    "icloud.com", "me.com", "msn.com", "aol.com", "protonmail.com",
    "online.no", "broadpark.no", "getmail.no", "frisurf.no",
)

EMAIL_TYPOS: dict[str, str] = {
    "gmai.com": "gmail.com",
    "gmial.com": "gmail.com",
    "gamil.com": "gmail.com",
    "gnail.com": "gmail.com",
    "gmail.no": "gmail.com",
    "hotmal.com": "hotmail.com",
    "hotmial.com": "hotmail.com",
    "hotmai.com": "hotmail.com",
    "outlok.com": "outlook.com",
    "outllok.com": "outlook.com",
    "outlool.com": "outlook.com",
    "yahooo.com": "yahoo.com",
    "yaho.com": "yahoo.com",
}

TRUNCATION_MESSAGE = "Validering avbrutt etter maksimalt antall feil; raden ble ikke kontrollert"


# -----------------------------------------------------------------------------
# Result types
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class RowValidation:
    row_number: int
    status: RowStatus
    issues: tuple[ValidationIssue, ...] = ()
    completeness_score: float = 0.0
    duplicate_of_row: int | None = None
    duplicate_of_entity_id: UUID | None = None
    duplicate_info: dict[str, Any] | None = None
    truncated: bool = False


@dataclass(frozen=True)
class BatchValidation:
    rows: tuple[RowValidation, ...]
    truncated: bool = False
    truncation_note: str | None = None
    duplicate_report: DuplicateReport | None = None
    quality_report: BatchQualityReport | None = None

    def count(self, status: RowStatus) -> int:
        return sum(1 for r in self.rows if r.status == status)

    @property
    def valid_count(self) -> int:
        return self.count(RowStatus.VALID)

    @property
    def warning_count(self) -> int:
        return self.count(RowStatus.WARNING)

    @property
    def error_count(self) -> int:
        return self.count(RowStatus.INVALID)

    @property
    def issues_by_row(self) -> dict[int, tuple[ValidationIssue, ...]]:
        return {r.row_number: r.issues for r in self.rows if r.issues}


def resolve_status(issues: Sequence[ValidationIssue]) -> RowStatus:
    if any(i.severity == Severity.ERROR for i in issues):
        return RowStatus.INVALID
    if issues:
        return RowStatus.WARNING
    return RowStatus.VALID


# -----------------------------------------------------------------------------
# Built-in field checks
# -----------------------------------------------------------------------------


def suggest_email_domain_fix(email: str) -> str | None:
    """Corrected address for a likely domain typo, else None."""
    local, sep, domain = email.partition("@")
    if not sep:
        return None
    domain = domain.lower()
    if domain in EMAIL_TYPOS:
        return f"{local}@{EMAIL_TYPOS[domain]}"
    if domain in COMMON_EMAIL_DOMAINS:
        return None
    for known in COMMON_EMAIL_DOMAINS:
        if Levenshtein.distance(domain, known) == 1:
            return f"{local}@{known}"
    return None


def _required_text(data: Mapping[str, Any], name: str, label: str, minimum: int) -> list[ValidationIssue]:
    value = text_of(data.get(name))
    if len(value) < minimum:
        return [
            ValidationIssue(
                Severity.ERROR,
                ErrorCode.REQUIRED_FIELD_MISSING,
                f"{label} er påkrevd og må være minst {minimum} tegn",
                field_name=name,
                actual_value=value or None,
            )
        ]
    return []


def builtin_issues(data: Mapping[str, Any], today: date) -> list[ValidationIssue]:
    """Checks applied to every row regardless of the configured rules."""
    issues: list[ValidationIssue] = []
    issues += _required_text(data, "navn", "Navn", 2)
    issues += _required_text(data, "adresse", "Adresse", 3)

    email = text_of(data.get("epost"))
    if email:
        if not EMAIL_RE.match(email):
            issues.append(
                ValidationIssue(
                    Severity.ERROR, ErrorCode.INVALID_EMAIL, "Ugyldig e-postformat",
                    field_name="epost", expected_format="bruker@domene.no", actual_value=email,
                )
            )
        else:
            fix = suggest_email_domain_fix(email)
            if fix:
                issues.append(
                    ValidationIssue(
                        Severity.WARNING, ErrorCode.INVALID_EMAIL,
                        "Mulig skrivefeil i e-postdomene",
                        field_name="epost", actual_value=email, suggestion=fix,
                    )
                )

    postnummer = text_of(data.get("postnummer"))
    if postnummer and not POSTNUMMER_RE.match(postnummer):
        issues.append(
            ValidationIssue(
                Severity.ERROR, ErrorCode.INVALID_POSTNUMMER, "Postnummer må være 4 siffer",
                field_name="postnummer", expected_format="0000", actual_value=postnummer,
            )
        )

    limit = _add_years(today, 10)
    for siste_field, neste_field, label in CONTROL_DATE_PAIRS:
        siste_text = text_of(data.get(siste_field))
        neste_text = text_of(data.get(neste_field))
        siste = _checked_date(siste_field, siste_text, f"siste {label}", issues)
        neste = _checked_date(neste_field, neste_text, f"neste {label}", issues)
        if siste is None or neste is None:
            continue
        if neste <= siste:
            issues.append(
                ValidationIssue(
                    Severity.ERROR, ErrorCode.INVALID_DATE,
                    f"Neste {label} må være etter siste utførte {label}",
                    field_name=neste_field, actual_value=neste_text,
                )
            )
        if siste.year < 2000:
            issues.append(
                ValidationIssue(
                    Severity.WARNING, ErrorCode.INVALID_DATE,
                    "Dato før år 2000 - vennligst verifiser at dette er korrekt",
                    field_name=siste_field, actual_value=siste_text,
                )
            )
        if neste > limit:
            issues.append(
                ValidationIssue(
                    Severity.WARNING, ErrorCode.INVALID_DATE,
                    "Dato mer enn 10 år frem i tid - vennligst verifiser at dette er korrekt",
                    field_name=neste_field, actual_value=neste_text,
                )
            )
    return issues


def _checked_date(name: str, text: str, label: str, issues: list[ValidationIssue]) -> date | None:
    if not text:
        return None
    parsed = to_date(text)
    if parsed is None:
        issues.append(
            ValidationIssue(
                Severity.ERROR, ErrorCode.INVALID_DATE,
                f"Ugyldig datoformat for {label} (forventet YYYY-MM-DD)",
                field_name=name, expected_format="YYYY-MM-DD", actual_value=text,
            )
        )
    return parsed


def _add_years(d: date, years: int) -> date:
    try:
        return d.replace(year=d.year + years)
    except ValueError:  # 29 February
        return d.replace(year=d.year + years, day=28)


# -----------------------------------------------------------------------------
# Validator
# -----------------------------------------------------------------------------


class BatchValidator:
    """Validates the mapped rows of one batch against a mapping config."""

    def __init__(
        self,
        config: MappingConfig,
        clock: Clock | None = None,
        worker_pool_size: int = 4,
        chunk_size: int = 200,
        probable_threshold: float = PROBABLE_THRESHOLD,
        possible_threshold: float = POSSIBLE_THRESHOLD,
    ):
        self._config = config
        self._clock = clock or SystemClock()
        self._workers = max(1, worker_pool_size)
        self._chunk_size = max(1, chunk_size)
        self._probable = probable_threshold
        self._possible = possible_threshold

    # -- context --------------------------------------------------------------

    def _context_tables(
        self,
        rows: Sequence[tuple[int, Mapping[str, Any]]],
        existing: Sequence[ExistingKunde],
    ) -> tuple[dict[str, dict[str, int]], dict[str, frozenset[str]]]:
        in_batch_fields = set()
        unique_fields = set()
        for m in self._config.mappings:
            for rule in m.validation_rules:
                if rule.type == ValidationType.UNIQUE_IN_BATCH:
                    in_batch_fields.add(m.target_field)
                elif rule.type == ValidationType.UNIQUE:
                    unique_fields.add(m.target_field)

        first_seen: dict[str, dict[str, int]] = {f: {} for f in in_batch_fields}
        for row_number, data in sorted(rows, key=lambda r: r[0]):
            for f in in_batch_fields:
                key = normalize_for_uniqueness(data.get(f))
                if key:
                    first_seen[f].setdefault(key, row_number)

        existing_values: dict[str, frozenset[str]] = {}
        for f in unique_fields:
            values = (normalize_for_uniqueness(k.as_mapping().get(f)) for k in existing)
            existing_values[f] = frozenset(v for v in values if v)
        return first_seen, existing_values

    # -- per row ----------------------------------------------------------------

    def _evaluate_row(
        self,
        row_number: int,
        data: Mapping[str, Any],
        first_seen: Mapping[str, Mapping[str, int]],
        existing_values: Mapping[str, frozenset[str]],
        today: date,
    ) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        for m in self._config.mappings:
            ctx = RuleContext(
                row_number=row_number,
                source_column=m.source_column,
                first_seen=first_seen,
                existing_values=existing_values,
            )
            value = data.get(m.target_field)
            if m.required and not text_of(value) and not any(
                r.type == ValidationType.REQUIRED for r in m.validation_rules
            ):
                issues.append(
                    ValidationIssue(
                        Severity.ERROR, ErrorCode.REQUIRED_FIELD_MISSING,
                        f"{m.target_field} er påkrevd",
                        field_name=m.target_field, source_column=m.source_column,
                    )
                )
            for rule in m.validation_rules:
                issue = evaluate_rule(m.target_field, value, rule, ctx)
                if issue is not None:
                    issues.append(issue)

        seen = {(i.field_name, i.code) for i in issues}
        for issue in builtin_issues(data, today):
            if (issue.field_name, issue.code) not in seen:
                issues.append(issue)
                seen.add((issue.field_name, issue.code))

        issues.extend(self._category_issues(data))
        return issues

    def _category_issues(self, data: Mapping[str, Any]) -> list[ValidationIssue]:
        options = self._config.options
        category = text_of(data.get("kategori"))
        if not category or not options.known_categories or options.auto_create_categories:
            return []
        known = {c.lower() for c in options.known_categories}
        if category.lower() in known:
            return []
        return [
            ValidationIssue(
                Severity.WARNING, ErrorCode.UNKNOWN_CATEGORY,
                f'Ukjent kategori "{category}"',
                field_name="kategori", actual_value=category,
                suggestion=", ".join(options.known_categories),
            )
        ]

    def _evaluate_chunk(
        self,
        chunk: Sequence[tuple[int, Mapping[str, Any]]],
        first_seen: Mapping[str, Mapping[str, int]],
        existing_values: Mapping[str, frozenset[str]],
        today: date,
    ) -> list[tuple[int, list[ValidationIssue]]]:
        return [
            (n, self._evaluate_row(n, data, first_seen, existing_values, today))
            for n, data in chunk
        ]

    # -- batch ----------------------------------------------------------------

    def _cap(self) -> int:
        options = self._config.options
        if options.stop_on_first_error:
            return 1
        return max(0, options.max_errors)

    def validate(
        self,
        rows: Sequence[tuple[int, Mapping[str, Any]]],
        existing: Sequence[ExistingKunde] = (),
    ) -> BatchValidation:
        ordered = sorted(rows, key=lambda r: r[0])
        mapped_by_row = dict(ordered)
        today = self._clock.now().date()
        first_seen, existing_values = self._context_tables(ordered, existing)

        strategy = self._config.options.duplicate_detection
        strategy_matches = find_strategy_duplicates(ordered, existing, strategy)

        chunks = [
            ordered[i:i + self._chunk_size] for i in range(0, len(ordered), self._chunk_size)
        ]
        cap = self._cap()
        invalid_rows = 0
        cap_row: int | None = None
        evaluated: dict[int, list[ValidationIssue]] = {}

        with ThreadPoolExecutor(max_workers=self._workers) as pool:
            for wave_start in range(0, len(chunks), self._workers):
                wave = chunks[wave_start:wave_start + self._workers]
                futures = [
                    pool.submit(self._evaluate_chunk, c, first_seen, existing_values, today)
                    for c in wave
                ]
                wave_results: list[tuple[int, list[ValidationIssue]]] = []
                for future in futures:
                    wave_results.extend(future.result())
                wave_results.sort(key=lambda r: r[0])

                for row_number, issues in wave_results:
                    match = strategy_matches.get(row_number)
                    if match is not None:
                        issues.append(self._duplicate_issue(match, mapped_by_row[row_number]))
                    evaluated[row_number] = issues
                    if resolve_status(issues) == RowStatus.INVALID:
                        invalid_rows += 1
                        if cap and invalid_rows >= cap:
                            cap_row = row_number
                            break
                if cap_row is not None:
                    break

        results: list[RowValidation] = []
        truncated_count = 0
        for row_number, data in ordered:
            score = completeness_score(data)
            if row_number not in evaluated:
                truncated_count += 1
                issue = ValidationIssue(
                    Severity.ERROR, ErrorCode.VALIDATION_TRUNCATED, TRUNCATION_MESSAGE
                )
                results.append(
                    RowValidation(row_number, RowStatus.INVALID, (issue,), score, truncated=True)
                )
                continue
            issues = evaluated[row_number]
            match = strategy_matches.get(row_number)
            results.append(
                RowValidation(
                    row_number,
                    resolve_status(issues),
                    tuple(issues),
                    score,
                    duplicate_of_row=match.duplicate_of_row if match else None,
                    duplicate_of_entity_id=match.duplicate_of_entity_id if match else None,
                )
            )

        checked = [(r.row_number, mapped_by_row[r.row_number]) for r in results if not r.truncated]
        dup_report, dup_info = fuzzy_duplicate_report(
            checked, existing, self._probable, self._possible
        )
        results = [
            RowValidation(
                r.row_number, r.status, r.issues, r.completeness_score,
                r.duplicate_of_row, r.duplicate_of_entity_id,
                dup_info.get(r.row_number), r.truncated,
            )
            for r in results
        ]

        quality = build_quality_report(
            [mapped_by_row[r.row_number] for r in results],
            [r.status for r in results],
            [r.completeness_score for r in results],
            [i for r in results for i in r.issues],
        )

        note = None
        if truncated_count:
            note = (
                f"Validering stoppet etter {invalid_rows} rader med feil; "
                f"{truncated_count} rader ble ikke kontrollert"
            )
            logger.warning(
                "validation_truncated",
                extra={"truncated_rows": truncated_count, "cap": cap, "cap_row": cap_row},
            )

        return BatchValidation(
            rows=tuple(results),
            truncated=truncated_count > 0,
            truncation_note=note,
            duplicate_report=dup_report,
            quality_report=quality,
        )

    def _duplicate_issue(self, match: StrategyMatch, data: Mapping[str, Any]) -> ValidationIssue:
        strategy = self._config.options.duplicate_detection
        field_name = {
            DuplicateStrategy.EXTERNAL_ID: "ekstern_id",
            DuplicateStrategy.EMAIL: "epost",
        }.get(strategy, "navn")
        actual = text_of(data.get(field_name)) or None
        if match.duplicate_of_entity_id is not None:
            return ValidationIssue(
                Severity.WARNING,
                ErrorCode.DUPLICATE_ENTRY,
                f'Mulig duplikat av eksisterende kunde "{match.matched_name or ""}"',
                field_name=field_name,
                actual_value=actual,
                suggestion=f"Kunde-ID: {match.duplicate_of_entity_id}",
            )
        return ValidationIssue(
            Severity.WARNING,
            ErrorCode.DUPLICATE_IN_BATCH,
            f"Duplikat av rad {match.duplicate_of_row} i filen",
            field_name=field_name,
            actual_value=actual,
            suggestion=f"Duplikat av rad {match.duplicate_of_row}",
        )
