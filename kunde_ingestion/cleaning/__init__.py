"""Pre-mapping normalization of parsed rows."""

from kunde_ingestion.cleaning.cleaner import (
    CleaningAnomaly,
    CleaningOptions,
    CleaningReport,
    CleaningResult,
    clean,
)

__all__ = [
    "CleaningAnomaly",
    "CleaningOptions",
    "CleaningReport",
    "CleaningResult",
    "clean",
]
