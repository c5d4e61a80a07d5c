"""Row validation: rule registry, duplicate detection, quality report, batch validator."""

from kunde_ingestion.validation.duplicates import (
    find_strategy_duplicates,
    fuzzy_duplicate_report,
    strategy_key,
)
from kunde_ingestion.validation.quality import build_quality_report, quality_report_to_dict
from kunde_ingestion.validation.rules import VALIDATORS, RuleContext, evaluate_rule
from kunde_ingestion.validation.validator import (
    BatchValidation,
    BatchValidator,
    RowValidation,
    resolve_status,
)

__all__ = [
    "BatchValidation",
    "BatchValidator",
    "RowValidation",
    "RuleContext",
    "VALIDATORS",
    "build_quality_report",
    "evaluate_rule",
    "find_strategy_duplicates",
    "fuzzy_duplicate_report",
    "quality_report_to_dict",
    "resolve_status",
    "strategy_key",
]
