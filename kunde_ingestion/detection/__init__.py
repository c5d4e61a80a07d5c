"""Fingerprinting, format-change detection and deterministic header patterns."""

from kunde_ingestion.detection.fingerprint import (
    ColumnFingerprint,
    fingerprint,
    normalize_header,
    normalize_headers,
)
from kunde_ingestion.detection.format_change import (
    ColumnHistoryEntry,
    FormatChangeResult,
    RenamedColumn,
    TemplateRef,
    analyze_column_changes,
    column_similarity,
    detect_format_change,
)
from kunde_ingestion.detection.patterns import (
    PatternSuggestion,
    detect_column_targets,
    suggest_column_mappings,
)

__all__ = [
    "ColumnFingerprint",
    "ColumnHistoryEntry",
    "FormatChangeResult",
    "PatternSuggestion",
    "RenamedColumn",
    "TemplateRef",
    "analyze_column_changes",
    "column_similarity",
    "detect_column_targets",
    "detect_format_change",
    "fingerprint",
    "normalize_header",
    "normalize_headers",
    "suggest_column_mappings",
]
