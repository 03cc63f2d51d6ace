from __future__ import annotations

import datetime
import html
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from email_intelligence.core.constants import (
    ANALYSIS_FAILURE_TAGS,
    ANALYSIS_FAILURE_TOPIC,
    HALLUCINATION_PHRASES,
    QUOTA_SENTINEL_TAGS,
    QUOTA_SENTINEL_TOPIC,
    QUOTA_SUMMARY_HTML,
    RECORD_SUMMARY_FALLBACK,
    RESERVED_TOPICS,
    TRANSCRIPT_MIN_CHARS,
    TRANSCRIPT_MIN_UNIQUE_WORDS,
    TRANSCRIPT_MIN_UNIQUENESS_RATIO,
    UNCLASSIFIED_TOPIC,
)
from email_intelligence.models import AnalysisResult
from email_intelligence.utils import (
    clean_text,
    find_urls,
    format_timestamp,
    html_to_text,
    normalize_datetime_string,
    parse_datetime,
    utc_now,
)

logger = logging.getLogger(__name__)

_NON_WORD_RE = re.compile(r"[^\w]", re.UNICODE)
_NON_WORD_SPACE_RE = re.compile(r"[^\w\s]", re.UNICODE)
_ALPHA_TOKEN_RE = re.compile(r"[A-Za-z]{3,}")


# -----------------------------
# 필드 강제 변환
# -----------------------------
def _clean_string_list(values: list[Any]) -> list[str]:
    cleaned = []
    for value in values:
        if value is None or isinstance(value, (dict, list)):
            continue
        text = clean_text(str(value))
        if text:
            cleaned.append(text)
    return cleaned


def coerce_tags(value: Any) -> list[str]:
    """list -> 공백 제거한 비어있지 않은 문자열, str -> JSON 배열 또는 쉼표 분리, 그 외 []."""
    if isinstance(value, list):
        return _clean_string_list(value)
    if isinstance(value, str):
        try:
            decoded = json.loads(value)
        except ValueError:
            decoded = None
        if isinstance(decoded, list):
            return _clean_string_list(decoded)
        return _clean_string_list(value.split(","))
    return []


def coerce_urls(value: Any) -> list[str]:
    if isinstance(value, list):
        return _clean_string_list(value)
    if isinstance(value, str):
        try:
            decoded = json.loads(value)
        except ValueError:
            decoded = None
        if isinstance(decoded, list):
            return _clean_string_list(decoded)
        return find_urls(value)
    return []


# -----------------------------
# 자막 검증
# -----------------------------
@dataclass(frozen=True)
class TranscriptCheck:
    valid: bool
    reason: str = ""
    metrics: dict[str, Any] = field(default_factory=dict)


def _normalized_words(text: str) -> list[str]:
    words = []
    for raw in (text or "").lower().split():
        word = _NON_WORD_RE.sub("", raw)
        if word:
            words.append(word)
    return words


def validate_transcript(text: str | None) -> TranscriptCheck:
    """자막이 분석 근거로 쓸 만한지 판정 (길이, 고유 단어 수, 알파벳 토큰, 고유 비율)."""
    transcript = (text or "").strip()
    metrics: dict[str, Any] = {"length": len(transcript)}
    if len(transcript) < TRANSCRIPT_MIN_CHARS:
        return TranscriptCheck(False, f"too short ({len(transcript)} < {TRANSCRIPT_MIN_CHARS})", metrics)

    words = _normalized_words(transcript)
    unique = set(words)
    ratio = len(unique) / len(words) if words else 0.0
    metrics.update({"words": len(words), "uniqueWords": len(unique), "uniquenessRatio": round(ratio, 3)})

    if len(unique) < TRANSCRIPT_MIN_UNIQUE_WORDS:
        return TranscriptCheck(False, f"too few distinct words ({len(unique)})", metrics)
    if not _ALPHA_TOKEN_RE.search(transcript):
        return TranscriptCheck(False, "no alphabetic words", metrics)
    if ratio < TRANSCRIPT_MIN_UNIQUENESS_RATIO:
        return TranscriptCheck(False, f"too repetitive (ratio {ratio:.3f})", metrics)
    return TranscriptCheck(True, "", metrics)


# -----------------------------
# 자막 근거성 점검 (경고만, 저장을 막지 않음)
# -----------------------------
def _word_related(word: str, transcript_lower: str, transcript_words: set[str]) -> bool:
    if len(word) <= 3:
        return False
    if word in transcript_lower:
        return True
    return any(tw in word or word in tw for tw in transcript_words)


def check_transcript_grounding(result: AnalysisResult, transcript: str) -> list[str]:
    warnings: list[str] = []
    transcript_lower = (transcript or "").lower()
    transcript_words = {w for w in _normalized_words(transcript_lower) if len(w) > 3}

    topic = result.get("topic") or ""
    if topic:
        topic_words = [w for w in _normalized_words(topic) if len(w) > 2]
        if topic_words and not any(_word_related(w, transcript_lower, transcript_words) for w in topic_words):
            warnings.append(f'Temática "{topic}" no parece estar relacionada con la transcripción')

    main_tags = list(result.get("tags") or [])[:3]
    if main_tags:
        related = 0
        for tag in main_tags:
            tag_words = [w for w in _NON_WORD_SPACE_RE.sub("", tag.lower()).split() if len(w) > 2]
            if any(_word_related(w, transcript_lower, transcript_words) for w in tag_words):
                related += 1
        if related < min(2, len(main_tags)):
            warnings.append("Menos de 2 etiquetas principales están relacionadas con la transcripción")

    summary_text = html_to_text(result.get("summaryHtml") or "").lower()
    if summary_text:
        found = [p for p in HALLUCINATION_PHRASES if p in summary_text]
        missing = [p for p in found if p not in transcript_lower]
        if missing:
            warnings.append(
                "Resumen contiene frases genéricas que no aparecen en la transcripción: " + ", ".join(missing)
            )
    return warnings


# -----------------------------
# 날짜 / 결과 정규화
# -----------------------------
def resolve_date(
    *candidates: str | None,
    now: datetime.datetime | None = None,
) -> str:
    """후보를 순서대로 `YYYY-MM-DD HH:MM:SS`로 정규화해 첫 성공값, 모두 실패하면 현재 시각."""
    current = now or utc_now()
    for candidate in candidates:
        if not candidate:
            continue
        normalized = normalize_datetime_string(candidate, now=current)
        if normalized:
            return normalized
    return format_timestamp(current)


def fetched_date_timestamp(value: str | None) -> str | None:
    # 보조 수집 날짜는 실제 파싱되는 경우만 신뢰
    parsed = parse_datetime(value or "")
    return format_timestamp(parsed) if parsed else None


def url_summary_placeholder(url: str) -> str:
    safe = html.escape(url, quote=True)
    return f'<p>Enlace: <a href="{safe}">{safe}</a></p>'


def normalize_analysis(
    raw: dict[str, Any],
    *,
    source_url: str | None = None,
    fetched_date: str | None = None,
    raw_date: str | None = None,
    now: datetime.datetime | None = None,
) -> AnalysisResult:
    """서비스 응답을 AnalysisResult 불변식(비어있지 않은 topic, 리스트 필드)에 맞춘다."""
    topic = raw.get("topic")
    topic = clean_text(topic) if isinstance(topic, str) else ""
    if not topic:
        logger.warning("topic 누락, 기본값 사용")
        topic = UNCLASSIFIED_TOPIC
    elif topic in RESERVED_TOPICS:
        # 예약 토픽은 내부 센티널 전용
        logger.warning("서비스가 예약 토픽 반환, 기본값으로 대체: %s", topic)
        topic = UNCLASSIFIED_TOPIC

    tags = coerce_tags(raw.get("tags"))
    urls = coerce_urls(raw.get("urls"))
    if source_url and source_url not in urls:
        urls.insert(0, source_url)

    summary = raw.get("summaryHtml")
    summary = summary.strip() if isinstance(summary, str) else ""
    if not summary:
        logger.warning("summaryHtml 누락, 기본 문구 사용")
        summary = url_summary_placeholder(source_url) if source_url else RECORD_SUMMARY_FALLBACK

    service_date = raw.get("normalizedDate") if isinstance(raw.get("normalizedDate"), str) else None
    normalized_date = resolve_date(
        fetched_date_timestamp(fetched_date),
        service_date,
        raw_date,
        now=now,
    )

    result: AnalysisResult = {
        "topic": topic,
        "tags": tags,
        "summaryHtml": summary,
        "urls": urls,
        "normalizedDate": normalized_date,
    }
    return result


# -----------------------------
# 예약 토픽 결과
# -----------------------------
def quota_sentinel(
    *,
    source_url: str | None = None,
    raw_date: str | None = None,
    now: datetime.datetime | None = None,
) -> AnalysisResult:
    return {
        "topic": QUOTA_SENTINEL_TOPIC,
        "tags": list(QUOTA_SENTINEL_TAGS),
        "summaryHtml": QUOTA_SUMMARY_HTML,
        "urls": [source_url] if source_url else [],
        "normalizedDate": resolve_date(raw_date, now=now),
    }


def failure_sentinel(
    message: str,
    *,
    source_url: str | None = None,
    raw_date: str | None = None,
    body_preview: str = "",
    now: datetime.datetime | None = None,
) -> AnalysisResult:
    if source_url:
        safe_url = html.escape(source_url, quote=True)
        summary = f"<p>Error: {html.escape(message)}</p><p>URL: <a href=\"{safe_url}\">{safe_url}</a></p>"
    else:
        summary = f"{message}. Contenido parcial: {body_preview[:200]}"
    return {
        "topic": ANALYSIS_FAILURE_TOPIC,
        "tags": list(ANALYSIS_FAILURE_TAGS),
        "summaryHtml": summary,
        "urls": [source_url] if source_url else [],
        "normalizedDate": resolve_date(raw_date, now=now),
    }


def is_quota_sentinel(result: AnalysisResult | dict[str, Any] | None) -> bool:
    return bool(result) and result.get("topic") == QUOTA_SENTINEL_TOPIC


def is_failure_sentinel(result: AnalysisResult | dict[str, Any] | None) -> bool:
    return bool(result) and result.get("topic") == ANALYSIS_FAILURE_TOPIC
