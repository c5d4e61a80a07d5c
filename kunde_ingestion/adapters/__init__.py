"""Source adapters for customer import files (byte parsing only, no DB)."""

from pathlib import PurePath

from kunde_ingestion.adapters.base import (
    ParsedSheet,
    SourceAdapter,
    SourceProbe,
    column_info,
    detect_field_type,
)
from kunde_ingestion.adapters.csv_adapter import CsvSourceAdapter
from kunde_ingestion.adapters.xlsx_adapter import XlsxSourceAdapter

ADAPTERS: dict[str, SourceAdapter] = {
    ".csv": CsvSourceAdapter(),
    ".xlsx": XlsxSourceAdapter(),
    ".xlsm": XlsxSourceAdapter(),
}


def adapter_for(file_name: str) -> SourceAdapter | None:
    return ADAPTERS.get(PurePath(file_name).suffix.lower())


__all__ = [
    "ADAPTERS",
    "CsvSourceAdapter",
    "ParsedSheet",
    "SourceAdapter",
    "SourceProbe",
    "XlsxSourceAdapter",
    "adapter_for",
    "column_info",
    "detect_field_type",
]
