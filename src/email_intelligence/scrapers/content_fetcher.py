from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qs, urlsplit

import requests

from email_intelligence.core.constants import VIDEO_URL_HINTS
from email_intelligence.scrapers.content_fetcher_config import ContentFetcherConfig

logger = logging.getLogger(__name__)

_VIDEO_ID_RE = re.compile(r"^[A-Za-z0-9_-]{6,}$")


# -----------------------------
# Public return types
# -----------------------------
@dataclass(frozen=True)
class FetchedContent:
    url: str
    content: str
    type: str = "other"  # "twitter" | "github" | "youtube" | "article" | "other"
    title: str = ""
    author: str = ""
    date: str = ""
    transcript: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FetchError:
    kind: str
    message: str
    url: str
    status: int | None = None

    def to_note(self) -> str:
        safe = (self.message or "").replace("\n", " ").strip()
        return f"fetch_error:{self.kind}:{safe}" if safe else f"fetch_error:{self.kind}"


def is_video_url(url: str) -> bool:
    if not url or not isinstance(url, str):
        return False
    return any(hint in url for hint in VIDEO_URL_HINTS)


def extract_video_id(url: str) -> str | None:
    """youtube.com/watch?v=, youtu.be/, /shorts/, /embed/ 형태에서 영상 ID 추출."""
    if not is_video_url(url):
        return None
    try:
        parts = urlsplit(url)
    except ValueError:
        return None
    host = (parts.hostname or "").lower()
    segments = [s for s in parts.path.split("/") if s]
    candidate = None
    if host.endswith("youtu.be"):
        candidate = segments[0] if segments else None
    else:
        values = parse_qs(parts.query).get("v")
        if values:
            candidate = values[0]
        elif len(segments) >= 2 and segments[0] in {"shorts", "embed", "live", "v"}:
            candidate = segments[1]
    if candidate and _VIDEO_ID_RE.match(candidate):
        return candidate
    return None


def _as_text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _parse_payload(url: str, payload: Any) -> FetchedContent | None:
    if not isinstance(payload, dict):
        return None
    if payload.get("error") and not payload.get("content"):
        return None
    content = payload.get("content")
    transcript = _as_text(payload.get("transcript"))
    if not isinstance(content, str) and not transcript:
        return None
    metadata = payload.get("metadata")
    return FetchedContent(
        url=_as_text(payload.get("url")) or url,
        content=content if isinstance(content, str) else "",
        type=_as_text(payload.get("type")) or "other",
        title=_as_text(payload.get("title")),
        author=_as_text(payload.get("author")),
        date=_as_text(payload.get("date")),
        transcript=transcript,
        metadata=metadata if isinstance(metadata, dict) else {},
    )


class ContentFetcher:
    """보조 콘텐츠 수집 서버 클라이언트. 실패는 전부 None으로 흡수 (예외 없음)."""

    def __init__(
        self,
        config: ContentFetcherConfig | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self._config = config or ContentFetcherConfig()
        self._session = session or requests.Session()
        self.last_error: FetchError | None = None

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    def scrape(self, url: str) -> FetchedContent | None:
        logger.info("URL 콘텐츠 수집 시도: %s", url)
        return self._post(self._config.scrape_endpoint, url, kind="scrape")

    def fetch_transcript(self, url: str) -> FetchedContent | None:
        logger.info("영상 자막 수집 시도: %s", url)
        return self._post(self._config.transcript_endpoint, url, kind="transcript")

    def _post(self, endpoint: str, url: str, *, kind: str) -> FetchedContent | None:
        self.last_error = None
        if not self._config.enabled:
            return None
        try:
            resp = self._session.post(endpoint, json={"url": url}, timeout=self._config.timeout_sec)
        except requests.RequestException as e:
            self._record_error(FetchError(kind="request", message=f"{type(e).__name__}: {e}", url=url))
            return None

        if not resp.ok:
            try:
                envelope = resp.json()
            except ValueError:
                envelope = {}
            message = ""
            if isinstance(envelope, dict):
                message = str(envelope.get("message") or envelope.get("error") or "")
            self._record_error(
                FetchError(kind=kind, message=message or "Unknown error", url=url, status=resp.status_code)
            )
            return None

        try:
            payload = resp.json()
        except ValueError:
            self._record_error(FetchError(kind="malformed", message="응답 JSON 파싱 실패", url=url))
            return None

        fetched = _parse_payload(url, payload)
        if fetched is None:
            self._record_error(FetchError(kind="malformed", message="예상과 다른 응답 형식", url=url))
            return None
        logger.info(
            "콘텐츠 수집 성공: %s (type=%s content=%d transcript=%d)",
            url, fetched.type, len(fetched.content), len(fetched.transcript),
        )
        return fetched

    def _record_error(self, error: FetchError) -> None:
        self.last_error = error
        logger.warning("보조 콘텐츠 수집 실패 (%s) %s status=%s", error.to_note(), error.url, error.status)


def build_default_content_fetcher() -> ContentFetcher | None:
    config = ContentFetcherConfig()
    if not config.enabled:
        return None
    return ContentFetcher(config)
