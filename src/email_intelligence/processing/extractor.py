from __future__ import annotations

import logging
import re
from pathlib import Path

from email_intelligence.core.config import BODY_MAX_CHARS
from email_intelligence.core.constants import (
    ATTACHMENT_PLACEHOLDER,
    ATTACHMENT_RUN_MIN_CHARS,
    HTML_ENTITY_MAP,
    NO_SUBJECT,
    TRUNCATION_MARKER,
    UNKNOWN_DATE,
)
from email_intelligence.models import ExtractedRecord

logger = logging.getLogger(__name__)

_DATE_RE = re.compile(r"^Date: (.+)$", re.MULTILINE)
_SUBJECT_RE = re.compile(r"^Subject: (.+)$", re.MULTILINE)
_TEXT_PART_MARKER = "Content-Type: text/plain"
# text/plain 파트 헤더 끝(빈 줄) 이후부터 다음 `--` 경계 줄 또는 끝까지
_TEXT_PART_RE = re.compile(
    r"Content-Type: text/plain[\s\S]*?\r?\n\r?\n([\s\S]*?)(?=\r?\n--|\Z)",
    re.IGNORECASE,
)
_QP_SOFT_BREAK_RE = re.compile(r"=\r?\n")
_QP_RUN_RE = re.compile(r"(?:=[0-9A-Fa-f]{2})+")
_ENTITY_RE = re.compile("|".join(re.escape(k) for k in HTML_ENTITY_MAP))
_ATTACHMENT_RE = re.compile(r"[A-Za-z0-9+/=]{%d,}" % ATTACHMENT_RUN_MIN_CHARS)


class ParseError(Exception):
    """원본 파일 자체를 읽을 수 없을 때만 발생 (내용이 깨진 경우는 최선 추출)."""


def _decode_qp_run(match: re.Match[str]) -> str:
    raw = bytes.fromhex(match.group(0).replace("=", ""))
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return raw.decode("latin-1")


def decode_quoted_printable(text: str) -> str:
    text = _QP_SOFT_BREAK_RE.sub("", text)
    return _QP_RUN_RE.sub(_decode_qp_run, text)


def decode_html_entities(text: str) -> str:
    return _ENTITY_RE.sub(lambda m: HTML_ENTITY_MAP[m.group(0)], text)


def split_body(text: str) -> str:
    # CRLF 빈 줄 -> LF 빈 줄 -> 전체를 본문으로
    idx = text.find("\r\n\r\n")
    if idx != -1:
        return text[idx + 4 :]
    idx = text.find("\n\n")
    if idx != -1:
        return text[idx + 2 :]
    return text


class EmlExtractor:
    """EML 텍스트에서 날짜/제목/본문을 뽑아 분석용 레코드로 만든다."""

    def __init__(self, *, body_max_chars: int = BODY_MAX_CHARS) -> None:
        self._body_max_chars = body_max_chars

    def extract(self, raw_text: str | bytes, source_name: str) -> ExtractedRecord:
        if isinstance(raw_text, bytes):
            raw_text = raw_text.decode("utf-8", errors="replace")
        if not isinstance(raw_text, str):
            raise ParseError(f"{source_name}: 읽을 수 있는 텍스트가 아님 ({type(raw_text).__name__})")

        date_match = _DATE_RE.search(raw_text)
        raw_date = date_match.group(1).strip() if date_match else UNKNOWN_DATE
        subject_match = _SUBJECT_RE.search(raw_text)
        raw_subject = subject_match.group(1).strip() if subject_match else NO_SUBJECT

        body = split_body(raw_text)
        if _TEXT_PART_MARKER in body:
            part = _TEXT_PART_RE.search(body)
            if part and part.group(1):
                body = part.group(1).strip()

        body = decode_quoted_printable(body)
        body = decode_html_entities(body)
        body = _ATTACHMENT_RE.sub(ATTACHMENT_PLACEHOLDER, body)

        if len(body) > self._body_max_chars:
            logger.warning("본문 잘림: %s (%d -> %d)", source_name, len(body), self._body_max_chars)
            body = body[: self._body_max_chars] + TRUNCATION_MARKER

        logger.info("파싱 완료: %s (body=%d)", source_name, len(body))
        return {
            "sourceName": source_name,
            "rawDate": raw_date,
            "rawSubject": raw_subject,
            "bodyText": body,
        }

    def extract_file(self, path: str | Path) -> ExtractedRecord:
        file_path = Path(path)
        try:
            data = file_path.read_bytes()
        except OSError as e:
            logger.error("파일 읽기 실패: %s (%s)", file_path, e)
            raise ParseError(f"Error parseando archivo {file_path.name}: {e}") from e
        return self.extract(data, file_path.name)


_default_extractor = EmlExtractor()


def extract(raw_text: str | bytes, source_name: str) -> ExtractedRecord:
    return _default_extractor.extract(raw_text, source_name)
