"""Mapping engine, transformation registry, date parsing and mapping candidates."""

from kunde_ingestion.mapping.engine import (
    MappingResult,
    apply_mapping,
    get_source_value,
    map_rows,
    validate_config,
)
from kunde_ingestion.mapping.suggestions import (
    ExternalSuggestion,
    MappingCandidate,
    MappingSuggestionSource,
    build_mapping_config,
    collect_candidates,
    merge_candidates,
)
from kunde_ingestion.mapping.transforms import TRANSFORMS, apply_transformation

__all__ = [
    "ExternalSuggestion",
    "MappingCandidate",
    "MappingResult",
    "MappingSuggestionSource",
    "TRANSFORMS",
    "apply_mapping",
    "apply_transformation",
    "build_mapping_config",
    "collect_candidates",
    "get_source_value",
    "map_rows",
    "merge_candidates",
    "validate_config",
]
