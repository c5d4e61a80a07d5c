"""
Configuration Loader (``kunde_config.loader``).

Responsibility
--------------
Loads a YAML settings file and parses it into the frozen dataclasses of
``kunde_config.schema``.  Services never call this directly; the runtime
entry point is ``kunde_config.get_active_config()``.

Invariants enforced
-------------------
* Unknown sections and keys are ignored; missing keys keep their defaults.
* A value of the wrong type raises ``ValueError`` naming the key.
* ``compute_checksum`` is deterministic for identical settings.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from kunde_config.schema import (
    CacheSettings,
    DuplicateSettings,
    ImportSettings,
    LoggingSettings,
    PipelineConfig,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top-level YAML document must be a mapping")
    return data


LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _coerce(section: str, key: str, expected: Any, value: Any) -> Any:
    if isinstance(expected, bool):
        if not isinstance(value, bool):
            raise ValueError(f"{section}.{key} must be a boolean, got {value!r}")
        return value
    if isinstance(expected, int):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"{section}.{key} must be an integer, got {value!r}")
        return value
    if isinstance(expected, float):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"{section}.{key} must be a number, got {value!r}")
        return float(value)
    if isinstance(expected, tuple):
        if not isinstance(value, (list, tuple)):
            raise ValueError(f"{section}.{key} must be a list, got {value!r}")
        return tuple(str(v).lower() for v in value)
    if isinstance(expected, str):
        if not isinstance(value, str):
            raise ValueError(f"{section}.{key} must be a string, got {value!r}")
        return value
    return value


def _parse_section(section: str, cls: type, data: Any) -> Any:
    defaults = cls()
    if data is None:
        return defaults
    if not isinstance(data, dict):
        raise ValueError(f"{section} must be a mapping, got {type(data).__name__}")
    kwargs: dict[str, Any] = {}
    for f in fields(cls):
        if f.name in data:
            kwargs[f.name] = _coerce(section, f.name, getattr(defaults, f.name), data[f.name])
    return cls(**kwargs)


def parse_pipeline_config(data: dict[str, Any], source: str = "<dict>") -> PipelineConfig:
    """Parse a raw settings dict into a ``PipelineConfig``."""
    config = PipelineConfig(
        imports=_parse_section("imports", ImportSettings, data.get("imports")),
        duplicates=_parse_section("duplicates", DuplicateSettings, data.get("duplicates")),
        template_cache=_parse_section("template_cache", CacheSettings, data.get("template_cache")),
        logging=_parse_section("logging", LoggingSettings, data.get("logging")),
        source=source,
    )
    if not 0.0 <= config.imports.near_match_threshold <= 1.0:
        raise ValueError("imports.near_match_threshold must be between 0 and 1")
    if config.duplicates.possible_threshold > config.duplicates.probable_threshold:
        raise ValueError(
            "duplicates.possible_threshold must not exceed probable_threshold"
        )
    if config.imports.worker_pool_size < 1:
        raise ValueError("imports.worker_pool_size must be at least 1")
    if config.logging.level.upper() not in LOG_LEVELS:
        raise ValueError(f"logging.level must be one of {', '.join(LOG_LEVELS)}")
    return config


def load_pipeline_config(path: Path) -> PipelineConfig:
    return parse_pipeline_config(load_yaml_file(path), source=str(path))


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 checksum of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
