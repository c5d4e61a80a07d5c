"""
Batch quality report -- a derived read over validated rows.

overall_score = round(valid% * 40 + completeness_avg * 40
                      + min(1, mean field coverage) * 20)

The report is recomputed on demand.  The snapshot stored on the batch is for
display only and is never consulted by a pipeline stage.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence

from kunde_ingestion.domain.types import (
    BatchQualityReport,
    FieldErrorCount,
    RowStatus,
    ValidationIssue,
)

COVERAGE_FIELDS: tuple[str, ...] = (
    "navn",
    "adresse",
    "postnummer",
    "poststed",
    "telefon",
    "epost",
    "kontaktperson",
)

COMPLETENESS_WEIGHTS: dict[str, float] = {
    "navn": 1.0,
    "adresse": 1.0,
    "postnummer": 0.8,
    "poststed": 0.6,
    "telefon": 0.7,
    "epost": 0.7,
    "kontaktperson": 0.5,
    "siste_kontroll": 0.9,
    "neste_kontroll": 0.9,
}


def has_value(value: Any) -> bool:
    if value is None:
        return False
    return str(value).strip() != "" if isinstance(value, str) else True


def completeness_score(data: Mapping[str, Any]) -> float:
    """Weighted fraction of the important fields that carry a value."""
    total = sum(COMPLETENESS_WEIGHTS.values())
    filled = sum(w for f, w in COMPLETENESS_WEIGHTS.items() if has_value(data.get(f)))
    return filled / total if total else 0.0


def field_coverage(rows: Sequence[Mapping[str, Any]]) -> dict[str, float]:
    if not rows:
        return {f: 0.0 for f in COVERAGE_FIELDS}
    return {
        f: sum(1 for r in rows if has_value(r.get(f))) / len(rows)
        for f in COVERAGE_FIELDS
    }


def common_errors(issues: Iterable[ValidationIssue]) -> tuple[FieldErrorCount, ...]:
    counts: dict[str, list[Any]] = {}
    for issue in issues:
        entry = counts.setdefault(issue.code.value, [0, issue.message])
        entry[0] += 1
    ranked = sorted(counts.items(), key=lambda kv: -kv[1][0])
    return tuple(FieldErrorCount(code, count, message) for code, (count, message) in ranked)


def build_quality_report(
    mapped_rows: Sequence[Mapping[str, Any]],
    statuses: Sequence[RowStatus],
    completeness_scores: Sequence[float],
    issues: Iterable[ValidationIssue],
) -> BatchQualityReport:
    total = len(statuses)
    valid = sum(1 for s in statuses if s == RowStatus.VALID)
    valid_pct = valid / total if total else 0.0
    completeness_avg = (
        sum(completeness_scores) / len(completeness_scores) if completeness_scores else 0.0
    )
    coverage = field_coverage(mapped_rows)
    mean_coverage = sum(coverage.values()) / len(COVERAGE_FIELDS)

    suggestions: list[str] = []
    for name, value in coverage.items():
        if value < 0.5:
            pct = round(value * 100)
            suggestions.append(f"{100 - pct}% av radene mangler {name}")
    if valid_pct < 0.8:
        suggestions.append(
            f"Kun {round(valid_pct * 100)}% av radene er gyldige - vurder å rette feil før import"
        )

    overall = round(valid_pct * 40 + completeness_avg * 40 + min(1.0, mean_coverage) * 20)
    return BatchQualityReport(
        overall_score=int(overall),
        completeness_average=round(completeness_avg, 4),
        valid_percentage=round(valid_pct, 4),
        field_coverage={k: round(v, 4) for k, v in coverage.items()},
        common_errors=common_errors(issues),
        suggestions=tuple(suggestions),
    )


def quality_report_to_dict(report: BatchQualityReport) -> dict[str, Any]:
    return {
        "overall_score": report.overall_score,
        "completeness_average": report.completeness_average,
        "valid_percentage": report.valid_percentage,
        "field_coverage": dict(report.field_coverage),
        "common_errors": [
            {"code": e.code, "count": e.count, "message": e.message} for e in report.common_errors
        ],
        "suggestions": list(report.suggestions),
    }
