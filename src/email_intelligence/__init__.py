"""Email/URL intelligence: extraction, AI enrichment and a deduplicated local store."""

__version__ = "0.1.0"
