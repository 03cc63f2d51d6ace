from __future__ import annotations

import datetime
import email.utils
import html
import re

from bs4 import BeautifulSoup

from email_intelligence.core.constants import DATETIME_FORMAT

_WS_RE = re.compile(r"\s+")  # 공백 정리 시 연속 공백을 단일 공백으로 축약
_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DATETIME_RE = re.compile(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}$")
_URL_RE = re.compile(r"https?://[^\s\"'<>]+")


def clean_text(s: str) -> str:
    """HTML 엔티티/태그를 제거하고 공백을 정리한 깔끔한 텍스트로 정규화."""
    if not s:
        return ""
    # 1) &nbsp; 같은 HTML 엔티티를 문자로 변환
    s = html.unescape(s)

    # 2) NBSP(유니코드) -> 일반 스페이스로
    s = s.replace("\u00a0", " ")

    # 3) 혹시 섞여 들어온 HTML 태그 제거
    s = re.sub(r"<[^>]+>", "", s)

    # 4) 공백 정리
    return _WS_RE.sub(" ", s).strip()


def clean_text_ws(text: str) -> str:
    return _WS_RE.sub(" ", (text or "").strip())


def html_to_text(markup: str) -> str:
    """요약 HTML을 비교용 평문으로 변환."""
    if not markup:
        return ""
    soup = BeautifulSoup(markup, "html.parser")
    return clean_text_ws(soup.get_text(" "))


def find_urls(text: str) -> list[str]:
    if not text:
        return []
    return _URL_RE.findall(text)


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def format_timestamp(dt: datetime.datetime) -> str:
    # aware 시각은 UTC로 맞춘 뒤 `YYYY-MM-DD HH:MM:SS`
    if dt.tzinfo is not None:
        dt = dt.astimezone(datetime.timezone.utc)
    return dt.strftime(DATETIME_FORMAT)


def parse_datetime(value: str) -> datetime.datetime | None:
    """ISO 8601 또는 RFC 2822(메일 헤더) 형식을 파싱. 실패 시 None."""
    if not value:
        return None
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        return datetime.datetime.fromisoformat(raw)
    except Exception:
        pass
    try:
        return email.utils.parsedate_to_datetime(value.strip())
    except Exception:
        return None


def normalize_datetime_string(value: str, *, now: datetime.datetime | None = None) -> str | None:
    """날짜 문자열을 `YYYY-MM-DD HH:MM:SS`로 정규화. 해석 불가하면 None.

    - ISO 형식(`T` 포함)은 `T`를 공백으로 바꾸고 19자로 자른다
    - 날짜만 있으면 현재 시각(시:분:초)을 붙인다
    - 이미 목표 형식이면 그대로 둔다
    - 그 외는 파싱해서 다시 포맷
    """
    if not isinstance(value, str):
        return None
    raw = value.strip()
    if not raw:
        return None
    if _DATETIME_RE.match(raw):
        return raw
    if _DATE_ONLY_RE.match(raw):
        current = now or utc_now()
        return f"{raw} {current.strftime('%H:%M:%S')}"
    if "T" in raw:
        candidate = raw.replace("T", " ")[:19]
        if _DATETIME_RE.match(candidate):
            return candidate
    parsed = parse_datetime(raw)
    if parsed is None:
        return None
    return format_timestamp(parsed)
