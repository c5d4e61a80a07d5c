"""
Pipeline settings schema.

Frozen dataclasses parsed from YAML by ``kunde_config.loader``.  Every
field has a default so a partial YAML file (or none at all) still yields a
complete configuration.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass(frozen=True)
class ImportSettings:
    """Limits and thresholds for the upload, mapping and validation stages."""

    max_file_size_bytes: int = 10 * 1024 * 1024
    supported_extensions: tuple[str, ...] = (".csv", ".xlsx", ".xlsm")
    preview_rows: int = 10
    sample_values_per_column: int = 5
    worker_pool_size: int = 4
    validation_chunk_size: int = 200
    enrichment_timeout_seconds: float = 5.0
    rename_similarity_threshold: float = 0.6
    near_match_threshold: float = 0.5


@dataclass(frozen=True)
class DuplicateSettings:
    """Score thresholds for the fuzzy duplicate report."""

    probable_threshold: float = 0.7
    possible_threshold: float = 0.5


@dataclass(frozen=True)
class CacheSettings:
    """Bounds for the injected template lookup cache."""

    max_size: int = 256
    ttl_seconds: float = 300.0


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"


@dataclass(frozen=True)
class PipelineConfig:
    """Root configuration object returned by ``get_active_config()``."""

    imports: ImportSettings = field(default_factory=ImportSettings)
    duplicates: DuplicateSettings = field(default_factory=DuplicateSettings)
    template_cache: CacheSettings = field(default_factory=CacheSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    source: str = "<defaults>"

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("source")
        return data
