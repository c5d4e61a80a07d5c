"""
kunde_config -- single public entrypoint for import pipeline settings.

Responsibility:
    Provides the ONLY way to obtain settings at runtime through
    ``get_active_config()``.  Services receive the returned
    ``PipelineConfig`` through their constructors; no other component reads
    YAML files or environment variables.

Resolution order:
    1. explicit ``config_path`` argument
    2. ``KUNDE_IMPORT_CONFIG`` environment variable
    3. packaged ``defaults.yaml``

Failure modes:
    - ``FileNotFoundError`` -- the explicit or environment path is missing.
    - ``ValueError`` -- a setting has the wrong type or range.
    - ``yaml.YAMLError`` -- malformed YAML.

Audit relevance:
    Every call emits a ``KUNDE_CONFIG_TRACE`` log entry with the source path
    and a checksum of the effective settings.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from kunde_config.loader import compute_checksum, load_pipeline_config
from kunde_config.schema import (
    CacheSettings,
    DuplicateSettings,
    ImportSettings,
    LoggingSettings,
    PipelineConfig,
)
from kunde_kernel.logging_config import configure_logging, get_logger

_logger = get_logger("config")

CONFIG_ENV_VAR = "KUNDE_IMPORT_CONFIG"
_DEFAULT_CONFIG_FILE = Path(__file__).parent / "defaults.yaml"


def get_active_config(config_path: Path | str | None = None) -> PipelineConfig:
    """The ONLY public configuration entrypoint.

    Guarantees:
        - The returned ``PipelineConfig`` is frozen and fully populated.
        - A ``KUNDE_CONFIG_TRACE`` log entry is emitted on every call.

    Non-goals:
        - No caching across calls; callers hold the returned config.
    """
    if config_path is not None:
        path = Path(config_path)
    elif os.environ.get(CONFIG_ENV_VAR):
        path = Path(os.environ[CONFIG_ENV_VAR])
    else:
        path = _DEFAULT_CONFIG_FILE

    config = load_pipeline_config(path)
    checksum = compute_checksum(config.to_dict())

    _logger.info(
        "KUNDE_CONFIG_TRACE",
        extra={
            "trace_type": "KUNDE_CONFIG_TRACE",
            "config_source": config.source,
            "checksum": checksum,
            "max_file_size_bytes": config.imports.max_file_size_bytes,
            "worker_pool_size": config.imports.worker_pool_size,
        },
    )
    return config


def configure_pipeline_logging(config: PipelineConfig, **kwargs: Any) -> None:
    """Configure kunde_kernel logging at ``config.logging.level``.

    Call before ``init_engine_from_url()``; the first configuration wins.
    Keyword arguments are passed through to ``configure_logging``.
    """
    configure_logging(level=config.logging.level, **kwargs)


__all__ = [
    "CONFIG_ENV_VAR",
    "CacheSettings",
    "DuplicateSettings",
    "ImportSettings",
    "LoggingSettings",
    "PipelineConfig",
    "get_active_config",
    "configure_pipeline_logging",
]
