from __future__ import annotations

import logging
from typing import Any

from email_intelligence.models import AnalysisResult, ExtractedRecord
from email_intelligence.processing.enrichment_utils import (
    check_transcript_grounding,
    failure_sentinel,
    normalize_analysis,
    quota_sentinel,
    validate_transcript,
)
from email_intelligence.processing.llm_client import GeminiConfigError, gemini_generate_json
from email_intelligence.processing.prompts.analysis_prompt import (
    TRANSCRIPT_SUMMARY_DESCRIPTION,
    build_record_prompt,
    build_transcript_prompt,
    build_url_prompt,
    response_schema,
)
from email_intelligence.processing.retry import RetryPolicy
from email_intelligence.processing.types import JsonGenerateFunc, NowFunc
from email_intelligence.scrapers.content_fetcher import (
    ContentFetcher,
    FetchedContent,
    build_default_content_fetcher,
    is_video_url,
)
from email_intelligence.utils import utc_now

logger = logging.getLogger(__name__)


class EnrichmentClient:
    """분석 서비스 호출 + 재시도 + 결과 정규화.

    예상 가능한 실패는 예외 대신 예약 토픽 결과로 돌려준다:
    쿼터 소진은 배치 중단 신호, 그 외 실패는 항목 건너뜀 신호.
    """

    def __init__(
        self,
        *,
        generate_json_func: JsonGenerateFunc = gemini_generate_json,
        retry_policy: RetryPolicy | None = None,
        content_fetcher: ContentFetcher | None = None,
        now_provider: NowFunc = utc_now,
    ) -> None:
        self._generate_json = generate_json_func
        self._retry = retry_policy or RetryPolicy(fatal_errors=(GeminiConfigError,))
        self._fetcher = content_fetcher
        self._now = now_provider

    # -----------------------------
    # 이메일 레코드
    # -----------------------------
    def analyze_record(self, record: ExtractedRecord) -> AnalysisResult:
        source_name = record.get("sourceName") or ""
        raw_date = record.get("rawDate") or ""
        body = record.get("bodyText") or ""
        prompt = build_record_prompt(
            subject=record.get("rawSubject") or "",
            date=raw_date,
            body=body,
        )
        schema = response_schema()
        logger.info("분석 시작: %s (prompt=%d body=%d)", source_name, len(prompt), len(body))

        def _call() -> AnalysisResult:
            raw = self._generate_json(prompt, response_schema=schema)
            return normalize_analysis(raw, raw_date=raw_date, now=self._now())

        def _on_failure(err: BaseException) -> AnalysisResult:
            message = (
                f"Error analizando contenido después de {self._retry.max_attempts} intentos: "
                f"{err or 'Error desconocido'}"
            )
            return failure_sentinel(message, raw_date=raw_date, body_preview=body, now=self._now())

        result = self._retry.run(
            _call,
            on_quota_exhausted=lambda _err: quota_sentinel(raw_date=raw_date, now=self._now()),
            on_failure=_on_failure,
            label=source_name,
        )
        self._log_result(source_name, result)
        return result

    # -----------------------------
    # URL / 영상
    # -----------------------------
    def _fetch_auxiliary(self, url: str, use_transcript_flow: bool) -> FetchedContent | None:
        if self._fetcher is None:
            return None
        try:
            if use_transcript_flow and is_video_url(url):
                return self._fetcher.fetch_transcript(url)
            return self._fetcher.scrape(url)
        except Exception as e:
            # 보조 수집 실패는 분석을 막지 않음
            logger.warning("보조 콘텐츠 수집 실패, 없이 진행: %s (%s)", url, e)
            return None

    def analyze_url(self, url: str, use_transcript_flow: bool = False) -> AnalysisResult:
        video = is_video_url(url)
        fetched = self._fetch_auxiliary(url, use_transcript_flow)

        transcript = ""
        fetched_text = ""
        if fetched is not None:
            fetched_text = fetched.content or ""
            if use_transcript_flow and video:
                check = validate_transcript(fetched.transcript)
                if check.valid:
                    transcript = fetched.transcript
                    logger.info("자막 사용: %s (%s)", url, check.metrics)
                else:
                    logger.warning(
                        "유효한 자막 없음, 메타데이터로 대체: %s (%s %s)", url, check.reason, check.metrics
                    )

        if transcript:
            prompt = build_transcript_prompt(
                url=url,
                transcript=transcript,
                title=fetched.title if fetched else "",
                author=fetched.author if fetched else "",
            )
            schema = response_schema(TRANSCRIPT_SUMMARY_DESCRIPTION)
        else:
            prompt = build_url_prompt(
                url=url,
                fetched_text=fetched_text,
                author=fetched.author if fetched else "",
                fetched_date=fetched.date if fetched else "",
                is_video=video,
            )
            schema = response_schema()
        fetched_date = fetched.date if fetched else None
        logger.info("URL 분석 시작: %s (prompt=%d transcript=%s)", url, len(prompt), bool(transcript))

        def _call() -> AnalysisResult:
            raw: dict[str, Any] = self._generate_json(prompt, response_schema=schema)
            result = normalize_analysis(raw, source_url=url, fetched_date=fetched_date, now=self._now())
            if transcript:
                warnings = check_transcript_grounding(result, transcript)
                if warnings:
                    logger.warning("자막 근거성 점검 경고: %s %s", url, warnings)
                    result["validationWarnings"] = warnings
            return result

        def _on_failure(err: BaseException) -> AnalysisResult:
            message = (
                f"Error analizando URL después de {self._retry.max_attempts} intentos: "
                f"{err or 'Error desconocido'}"
            )
            return failure_sentinel(message, source_url=url, now=self._now())

        result = self._retry.run(
            _call,
            on_quota_exhausted=lambda _err: quota_sentinel(source_url=url, now=self._now()),
            on_failure=_on_failure,
            label=url,
        )
        self._log_result(url, result)
        return result

    def _log_result(self, label: str, result: AnalysisResult) -> None:
        logger.info(
            "분석 결과: %s topic=%s tags=%d urls=%d summary=%d",
            label,
            result["topic"],
            len(result["tags"]),
            len(result["urls"]),
            len(result["summaryHtml"]),
        )


def build_default_enrichment_client(*, use_content_fetcher: bool = True) -> EnrichmentClient:
    fetcher = build_default_content_fetcher() if use_content_fetcher else None
    return EnrichmentClient(content_fetcher=fetcher)
