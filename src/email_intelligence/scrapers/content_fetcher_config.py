from __future__ import annotations

from dataclasses import dataclass

from email_intelligence.core.config import SCRAPER_API_URL, SCRAPER_ENABLED, SCRAPER_TIMEOUT_SEC

SCRAPE_PATH = "/api/scrape-url"
TRANSCRIPT_PATH = "/api/youtube-transcript"


@dataclass(frozen=True)
class ContentFetcherConfig:
    base_url: str = SCRAPER_API_URL
    timeout_sec: int = SCRAPER_TIMEOUT_SEC
    enabled: bool = SCRAPER_ENABLED

    @property
    def scrape_endpoint(self) -> str:
        return f"{self.base_url.rstrip('/')}{SCRAPE_PATH}"

    @property
    def transcript_endpoint(self) -> str:
        return f"{self.base_url.rstrip('/')}{TRANSCRIPT_PATH}"
