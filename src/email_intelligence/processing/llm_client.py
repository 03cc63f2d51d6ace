from __future__ import annotations

import ast
import json
import logging
import re
from typing import Any

import requests

from email_intelligence.core.config import (
    GEMINI_API_BASE,
    GEMINI_MODEL,
    GEMINI_TEMPERATURE,
    GEMINI_TIMEOUT_SEC,
    get_api_key,
)

logger = logging.getLogger(__name__)

_AI_UNAVAILABLE_LOGGED: set[str] = set()


class GeminiConfigError(RuntimeError):
    """API 키 미설정 등 호출 전에 확정되는 설정 오류."""


class GeminiRequestError(RuntimeError):
    """전송 실패, 비정상 HTTP 상태, 빈/비JSON 응답. 상태 코드는 재시도 판정에 쓰인다."""

    def __init__(self, status_code: int | None, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def log_ai_unavailable(reason: str) -> None:
    # 같은 사유는 한 번만 경고
    if reason in _AI_UNAVAILABLE_LOGGED:
        return
    logger.warning("AI 분석 비활성: %s", reason)
    _AI_UNAVAILABLE_LOGGED.add(reason)


def validate_api_key_configuration() -> bool:
    return bool(get_api_key())


def _extract_gemini_text(payload: dict[str, Any]) -> str:
    # Gemini REST 응답에서 텍스트만 추출
    try:
        parts = payload["candidates"][0]["content"]["parts"]
    except Exception:
        return ""
    texts = [part.get("text", "") for part in parts if isinstance(part, dict)]
    return "".join(texts).strip()


def _strip_trailing_commas(payload: str) -> str:
    return re.sub(r",\s*([}\]])", r"\1", payload)


def _load_object(payload: str) -> dict[str, Any] | None:
    try:
        obj = json.loads(payload)
    except Exception:
        obj = None
    if isinstance(obj, dict):
        return obj
    try:
        obj = json.loads(_strip_trailing_commas(payload))
    except Exception:
        try:
            obj = ast.literal_eval(_strip_trailing_commas(payload))
        except Exception:
            return None
    return obj if isinstance(obj, dict) else None


def _first_brace_block(payload: str) -> str | None:
    start = payload.find("{")
    if start == -1:
        return None
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(payload)):
        ch = payload[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return payload[start : i + 1]
    return None


def parse_json(text: str) -> dict[str, Any] | None:
    """모델 출력에서 JSON 객체를 관대하게 파싱 (코드펜스, 꼬리 쉼표, 앞뒤 잡음 허용)."""
    if not text:
        return None
    raw = re.sub(r"```(?:json)?", "", text.strip(), flags=re.IGNORECASE).replace("```", "").strip()
    parsed = _load_object(raw)
    if parsed is not None:
        return parsed
    block = _first_brace_block(raw)
    if block:
        return _load_object(block)
    return None


def gemini_generate_json(
    prompt: str,
    *,
    response_schema: dict[str, Any],
    system_prompt: str | None = None,
    temperature: float = GEMINI_TEMPERATURE,
) -> dict[str, Any]:
    """Gemini generateContent를 구조화 JSON 모드로 한 번 호출.

    재시도는 하지 않는다 (호출부의 RetryPolicy 담당). 실패는 전부 예외로 올린다.
    """
    api_key = get_api_key()
    if not api_key:
        log_ai_unavailable("GEMINI_API_KEY 미설정")
        raise GeminiConfigError("API Key is missing. Set GEMINI_API_KEY (or API_KEY) in the environment.")

    url = f"{GEMINI_API_BASE}/models/{GEMINI_MODEL}:generateContent"
    request_payload: dict[str, Any] = {
        "contents": [
            {
                "role": "user",
                "parts": [{"text": prompt}],
            }
        ],
        "generationConfig": {
            "temperature": temperature,
            "responseMimeType": "application/json",
            "responseSchema": response_schema,
        },
    }
    if system_prompt:
        request_payload["systemInstruction"] = {"parts": [{"text": system_prompt}]}

    try:
        resp = requests.post(
            url,
            headers={"x-goog-api-key": api_key, "Content-Type": "application/json"},
            json=request_payload,
            timeout=GEMINI_TIMEOUT_SEC,
        )
    except requests.RequestException as e:
        raise GeminiRequestError(None, f"Gemini 호출 실패: {type(e).__name__}: {e}") from e

    if not resp.ok:
        raise GeminiRequestError(resp.status_code, f"{resp.status_code} {resp.text}")

    try:
        data = resp.json()
    except ValueError as e:
        raise GeminiRequestError(resp.status_code, "Gemini 응답 JSON 파싱 실패") from e

    text = _extract_gemini_text(data)
    if not text:
        raise GeminiRequestError(resp.status_code, "No response from AI")
    logger.info("Gemini 응답 수신 (len=%d)", len(text))

    parsed = parse_json(text)
    if not isinstance(parsed, dict):
        snippet = re.sub(r"\s+", " ", text)[:160]
        truncated_hint = ""
        if text.strip().startswith("{") and not text.strip().endswith("}"):
            truncated_hint = " (truncated?)"
        raise GeminiRequestError(resp.status_code, f"Gemini 응답 JSON 형식 아님{truncated_hint}: {snippet}")
    return parsed
