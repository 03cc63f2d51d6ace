from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from email_intelligence.core.constants import SOCIAL_HOST_ALIASES, SOCIAL_PRIMARY_HOST, TRACKING_QUERY_PARAMS

logger = logging.getLogger(__name__)

# x.com / twitter.com 게시물: 호스트 별칭과 추적 파라미터를 모두 접어서 비교
_SOCIAL_POST_RE = re.compile(
    r"^https?://(%s)/([^/]+)/status/(\d+)" % "|".join(re.escape(h) for h in SOCIAL_HOST_ALIASES),
    re.IGNORECASE,
)
_TRACKING_PARAMS = frozenset(TRACKING_QUERY_PARAMS)


def normalize_url(url: Any) -> Any:
    """중복 비교용 정규 URL. 해석할 수 없으면 입력을 그대로 돌려준다 (예외 없음).

    >>> normalize_url("https://twitter.com/user/status/123?s=20")
    'https://x.com/user/status/123'
    >>> normalize_url("https://github.com/a/b?utm_source=x&ref=y")
    'https://github.com/a/b'
    """
    if not url or not isinstance(url, str):
        return url

    match = _SOCIAL_POST_RE.match(url)
    if match:
        user, status_id = match.group(2), match.group(3)
        return f"https://{SOCIAL_PRIMARY_HOST}/{user}/status/{status_id}"

    try:
        parts = urlsplit(url)
        if not parts.scheme or not parts.netloc:
            return url
        # 포트 등 잘못된 netloc은 여기서 ValueError
        _ = parts.port
        kept = [
            (key, value)
            for key, value in parse_qsl(parts.query, keep_blank_values=True)
            if key not in _TRACKING_PARAMS
        ]
    except ValueError:
        return url

    if not kept:
        return f"{parts.scheme}://{parts.netloc}{parts.path}"
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(kept), ""))


def normalize_urls(urls: Any) -> list[str]:
    if not isinstance(urls, list):
        return []
    normalized = []
    for url in urls:
        value = normalize_url(url)
        if value:
            normalized.append(value)
    return normalized


def decode_json_list(raw: Any) -> list[str]:
    """저장된 JSON 배열 문자열을 리스트로. 실패하면 빈 리스트."""
    if isinstance(raw, list):
        values = raw
    elif isinstance(raw, (str, bytes)) and raw:
        try:
            values = json.loads(raw)
        except Exception:
            return []
    else:
        return []
    if not isinstance(values, list):
        return []
    return [str(v).strip() for v in values if isinstance(v, (str, int, float)) and str(v).strip()]


@dataclass
class DedupIndex:
    """저장소의 파일명 집합과 URL(원본+정규화) 집합. 배치/병합 시작 시 새로 만든다."""

    source_names: set[str] = field(default_factory=set)
    raw_urls: set[str] = field(default_factory=set)
    normalized_urls: set[str] = field(default_factory=set)

    @classmethod
    def from_rows(cls, rows: Iterable[Mapping[str, Any]]) -> DedupIndex:
        # rows: {"sourceName"|"fileName": ..., "urls": list 또는 JSON 문자열}
        index = cls()
        for row in rows:
            name = row.get("sourceName") or row.get("fileName")
            index.add(name, decode_json_list(row.get("urls")))
        return index

    def add(self, source_name: str | None, urls: Iterable[str] | None = None) -> None:
        if source_name:
            self.source_names.add(source_name)
        for url in urls or []:
            if not url:
                continue
            self.raw_urls.add(url)
            normalized = normalize_url(url)
            if normalized:
                self.normalized_urls.add(normalized)

    def contains_source(self, source_name: str | None) -> bool:
        return bool(source_name) and source_name in self.source_names

    def contains_url(self, url: str | None) -> bool:
        if not url:
            return False
        if url in self.raw_urls:
            return True
        normalized = normalize_url(url)
        return bool(normalized) and normalized in self.normalized_urls

    def find_duplicate(self, source_name: str | None, urls: Iterable[str] | None = None) -> str | None:
        """중복이면 사유 문자열, 아니면 None. URL 일치가 파일명 일치보다 우선."""
        for url in urls or []:
            if not url:
                continue
            if url in self.raw_urls:
                return f"URL already stored: {url}"
            normalized = normalize_url(url)
            if normalized and normalized in self.normalized_urls:
                return f"URL already stored (normalized): {normalized}"
        if self.contains_source(source_name):
            return f"source name already stored: {source_name}"
        return None

    def __len__(self) -> int:
        return len(self.source_names)
