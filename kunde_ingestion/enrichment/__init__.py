"""Optional enrichment hooks invoked during commit."""

from kunde_ingestion.enrichment.hooks import EnrichmentFailure, EnrichmentHook, EnrichmentRunner

__all__ = ["EnrichmentFailure", "EnrichmentHook", "EnrichmentRunner"]
