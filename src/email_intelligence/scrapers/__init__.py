"""Client for the auxiliary content-fetch service (page scrape and video transcript)."""

__all__ = ["content_fetcher", "content_fetcher_config"]
