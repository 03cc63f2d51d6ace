"""Extraction, AI enrichment and the sequential ingestion pipeline."""

__all__ = [
    "ai_service",
    "dedupe",
    "enrichment_utils",
    "extractor",
    "ingest_runner",
    "llm_client",
    "pipeline",
    "retry",
    "types",
]
