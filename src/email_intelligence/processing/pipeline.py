from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Sequence

from email_intelligence.core.config import PIPELINE_PACING_SEC, STORE_DIR
from email_intelligence.core.constants import (
    ANALYSIS_FAILURE_TAGS,
    ANALYSIS_FAILURE_TOPIC,
    QUOTA_USER_MESSAGE,
    STATUS_COMPLETED,
    STATUS_ERROR,
)
from email_intelligence.models import AnalysisResult, NewRecord, StoredRecord
from email_intelligence.processing.ai_service import EnrichmentClient, build_default_enrichment_client
from email_intelligence.processing.enrichment_utils import is_failure_sentinel, is_quota_sentinel
from email_intelligence.processing.extractor import EmlExtractor
from email_intelligence.processing.types import LogFunc, MessageCallback, NowFunc, RecordsCallback, SleepFunc
from email_intelligence.storage.backends import FileBlobBackend
from email_intelligence.storage.record_store import RecordStore, RecordStoreError
from email_intelligence.utils import format_timestamp, utc_now

logger = logging.getLogger(__name__)


class SourceKind(str, enum.Enum):
    FILE = "file"
    URL = "url"
    VIDEO = "video"


class BatchState(str, enum.Enum):
    IDLE = "idle"
    EXTRACTING = "extracting"
    ENRICHING = "enriching"
    PERSISTING = "persisting"
    COMPLETED = "completed"
    ERROR = "error"


class BatchInProgressError(RuntimeError):
    """이미 배치가 실행 중일 때 새 배치를 제출하면 발생."""


@dataclass(frozen=True)
class SourceItem:
    kind: SourceKind
    identifier: str
    path: Path | None = None

    @classmethod
    def file(cls, path: str | Path) -> SourceItem:
        file_path = Path(path)
        return cls(SourceKind.FILE, file_path.name, file_path)

    @classmethod
    def url(cls, url: str) -> SourceItem:
        return cls(SourceKind.URL, url.strip())

    @classmethod
    def video(cls, url: str) -> SourceItem:
        return cls(SourceKind.VIDEO, url.strip())

    @property
    def source_name(self) -> str:
        # 파일은 파일명, URL/영상은 URL 자체가 저장소의 sourceName
        return self.identifier


class CancellationToken:
    """협조적 취소 플래그. 항목 시작 전과 대기 중 1초마다 확인된다."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def reset(self) -> None:
        self._event.clear()


@dataclass(frozen=True)
class BatchProgress:
    current: int
    total: int
    current_item: str | None = None


@dataclass
class BatchReport:
    state: BatchState
    total: int = 0
    processed: int = 0
    failed: int = 0
    skipped_duplicates: int = 0
    cancelled: bool = False
    stopped_by_quota: bool = False
    message: str | None = None
    errors: list[str] = field(default_factory=list)


@dataclass
class _ItemOutcome:
    record: NewRecord | None
    failed: bool = False
    quota: bool = False
    error: str | None = None


class IngestionPipeline:
    """파일/URL/영상 항목을 한 번에 하나씩 추출 -> 분석 -> 저장하는 순차 배치 처리기.

    - 항목 사이에는 `pacing_sec`초 대기 (1초 단위로 취소 확인)
    - 각 항목 결과는 즉시 저장하고 `get_all()`로 보이는 목록을 갱신
    - 쿼터 소진은 배치 중단, 그 외 실패는 error 레코드를 남기고 계속
    """

    def __init__(
        self,
        *,
        store: RecordStore,
        enrichment_client: EnrichmentClient,
        extractor: EmlExtractor,
        logger: LogFunc | None = None,
        pacing_sec: int = PIPELINE_PACING_SEC,
        sleep_func: SleepFunc = time.sleep,
        progress_callback: Callable[[BatchProgress], None] | None = None,
        state_callback: Callable[[BatchState], None] | None = None,
        records_callback: RecordsCallback | None = None,
        message_callback: MessageCallback | None = None,
        now_provider: NowFunc = utc_now,
    ) -> None:
        self._store = store
        self._client = enrichment_client
        self._extractor = extractor
        self._log = logger or logging.getLogger(__name__).info
        self._pacing_sec = max(0, int(pacing_sec))
        self._sleep = sleep_func
        self._progress_callback = progress_callback
        self._state_callback = state_callback
        self._records_callback = records_callback
        self._message_callback = message_callback
        self._now = now_provider

        self._state = BatchState.IDLE
        self._token = CancellationToken()
        self._active_token: CancellationToken | None = None
        self._run_lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._visible: list[StoredRecord] = []
        self._unsaved: list[NewRecord] = []
        self.last_report: BatchReport | None = None

    # -----------------------------
    # 상태 / 콜백
    # -----------------------------
    @property
    def state(self) -> BatchState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    def _set_state(self, state: BatchState) -> None:
        if state == self._state:
            return
        self._state = state
        if self._state_callback:
            self._state_callback(state)

    def _emit_message(self, message: str | None) -> None:
        if message:
            self._log(message)
        if self._message_callback:
            self._message_callback(message)

    def _emit_progress(self, current: int, total: int, item: str | None) -> None:
        if self._progress_callback:
            self._progress_callback(BatchProgress(current, total, item))

    def _refresh_visible(self) -> None:
        try:
            self._visible = self._store.get_all()
        except RecordStoreError as e:
            logger.error("레코드 목록 갱신 실패: %s", e)
            return
        if self._records_callback:
            self._records_callback(list(self._visible))

    def get_visible_records(self) -> list[StoredRecord]:
        if not self._visible and self._store.is_open:
            self._visible = self._store.get_all()
        return list(self._visible)

    # -----------------------------
    # 제출 / 취소
    # -----------------------------
    def submit_batch(self, items: Sequence[SourceItem], token: CancellationToken | None = None) -> threading.Thread:
        if self.is_running or (self._thread is not None and self._thread.is_alive()):
            raise BatchInProgressError("Ya hay un lote en proceso")
        thread = threading.Thread(
            target=self.run_batch,
            args=(list(items), token),
            name="ingestion-batch",
            daemon=True,
        )
        self._thread = thread
        thread.start()
        return thread

    def cancel_batch(self) -> None:
        self._log("취소 요청됨: 현재 항목이 끝나면 중단")
        (self._active_token or self._token).cancel()

    def wait(self, timeout: float | None = None) -> BatchReport | None:
        if self._thread is not None:
            self._thread.join(timeout)
        return self.last_report

    # -----------------------------
    # 배치 실행
    # -----------------------------
    def _prefilter(self, items: Sequence[SourceItem], report: BatchReport) -> list[SourceItem]:
        index = self._store.dedup_index()
        seen: set[str] = set()
        pending: list[SourceItem] = []
        for item in items:
            name = item.source_name
            if not name:
                report.errors.append("Elemento sin identificador, omitido")
                continue
            duplicate = name in seen or index.contains_source(name)
            if not duplicate and item.kind != SourceKind.FILE:
                duplicate = index.contains_url(item.identifier)
            if duplicate:
                report.skipped_duplicates += 1
                self._log(f"이미 저장됨, 건너뜀: {name}")
                continue
            seen.add(name)
            pending.append(item)
        return pending

    def _pace(self, token: CancellationToken) -> bool:
        """항목 간 대기. 대기 중 취소되면 True."""
        for _ in range(self._pacing_sec):
            if token.is_cancelled():
                return True
            self._sleep(1)
        return token.is_cancelled()

    def _analyze(self, item: SourceItem) -> AnalysisResult:
        if item.kind == SourceKind.FILE:
            self._set_state(BatchState.EXTRACTING)
            if item.path is None:
                raise ValueError(f"{item.identifier}: ruta de archivo ausente")
            extracted = self._extractor.extract_file(item.path)
            self._set_state(BatchState.ENRICHING)
            return self._client.analyze_record(extracted)
        self._set_state(BatchState.ENRICHING)
        return self._client.analyze_url(item.identifier, use_transcript_flow=item.kind == SourceKind.VIDEO)

    def _error_record(self, item: SourceItem, message: str) -> NewRecord:
        urls = [item.identifier] if item.kind != SourceKind.FILE else []
        return {
            "sourceName": item.source_name,
            "sentAt": format_timestamp(self._now()),
            "topic": ANALYSIS_FAILURE_TOPIC,
            "tags": list(ANALYSIS_FAILURE_TAGS),
            "summaryHtml": f"Error procesando {item.source_name}: {message}",
            "urls": urls,
            "status": STATUS_ERROR,
            "errorMessage": message,
        }

    @staticmethod
    def _analysis_record(item: SourceItem, analysis: AnalysisResult, status: str) -> NewRecord:
        record: NewRecord = {
            "sourceName": item.source_name,
            "sentAt": analysis["normalizedDate"],
            "topic": analysis["topic"],
            "tags": list(analysis["tags"]),
            "summaryHtml": analysis["summaryHtml"],
            "urls": list(analysis["urls"]),
            "status": status,
        }
        if status == STATUS_ERROR:
            record["errorMessage"] = analysis["summaryHtml"]
        return record

    def _process_item(self, item: SourceItem) -> _ItemOutcome:
        try:
            analysis = self._analyze(item)
        except Exception as e:
            message = f"{type(e).__name__}: {e}"
            logger.exception("항목 처리 실패: %s", item.identifier)
            return _ItemOutcome(self._error_record(item, message), failed=True, error=message)

        if is_quota_sentinel(analysis):
            return _ItemOutcome(None, quota=True)
        if is_failure_sentinel(analysis):
            return _ItemOutcome(
                self._analysis_record(item, analysis, STATUS_ERROR),
                failed=True,
                error=analysis["summaryHtml"],
            )
        if analysis.get("validationWarnings"):
            self._log(f"자막 근거성 경고 {item.identifier}: {analysis['validationWarnings']}")
        return _ItemOutcome(self._analysis_record(item, analysis, STATUS_COMPLETED))

    def _persist(self, record: NewRecord, report: BatchReport) -> None:
        self._set_state(BatchState.PERSISTING)
        try:
            result = self._store.append([record])
        except RecordStoreError as e:
            message = f"Error guardando {record['sourceName']}: {e}"
            report.errors.append(message)
            self._emit_message(message)
            self._unsaved.append(record)
        else:
            if result.skipped:
                report.skipped_duplicates += result.skipped
        self._refresh_visible()

    def _flush_unsaved(self, report: BatchReport) -> None:
        if self._unsaved:
            pending, self._unsaved = self._unsaved, []
            self._log(f"저장 실패 레코드 재시도: {len(pending)}건")
            try:
                self._store.append(pending)
            except RecordStoreError as e:
                message = f"Error guardando {len(pending)} registro(s) pendiente(s): {e}"
                report.errors.append(message)
                self._emit_message(message)
                self._unsaved = list(pending)
        try:
            self._store.flush()
        except RecordStoreError as e:
            report.errors.append(str(e))
            self._emit_message(f"Error guardando la base de datos: {e}")
        self._refresh_visible()

    def run_batch(self, items: Sequence[SourceItem], token: CancellationToken | None = None) -> BatchReport:
        if not self._run_lock.acquire(blocking=False):
            raise BatchInProgressError("Ya hay un lote en proceso")
        token = token or self._token
        # 외부 토큰이 주어져도 cancel_batch()는 실행 중인 배치의 토큰을 취소
        self._active_token = token
        report = BatchReport(state=BatchState.IDLE)
        try:
            self._set_state(BatchState.IDLE)
            self._emit_message(None)
            pending = self._prefilter(items, report)
            report.total = len(pending)
            if not pending:
                report.message = "Nada que procesar: todos los elementos ya existen en la base de datos"
                self._emit_message(report.message)
                return report

            self._log(f"배치 시작: {len(pending)}건 (중복 제외 {report.skipped_duplicates}건)")
            for idx, item in enumerate(pending):
                if token.is_cancelled():
                    report.cancelled = True
                    break
                if idx > 0 and self._pace(token):
                    report.cancelled = True
                    break

                self._log(f"[{idx + 1}/{len(pending)}] 처리 중: {item.identifier}")
                outcome = self._process_item(item)
                if outcome.quota:
                    report.stopped_by_quota = True
                    report.errors.append(f"{item.identifier}: cuota API excedida")
                    self._emit_progress(idx + 1, len(pending), item.identifier)
                    break
                if outcome.failed:
                    report.failed += 1
                    report.errors.append(f"Error procesando {item.identifier}: {outcome.error}")
                else:
                    report.processed += 1
                if outcome.record is not None:
                    self._persist(outcome.record, report)
                self._emit_progress(idx + 1, len(pending), item.identifier)

            self._flush_unsaved(report)

            if report.stopped_by_quota:
                report.state = BatchState.ERROR
                report.message = QUOTA_USER_MESSAGE
            elif report.cancelled:
                report.state = BatchState.IDLE
                report.message = (
                    f"Procesamiento cancelado. {report.processed + report.failed} elemento(s) "
                    "procesado(s) antes de la cancelación."
                )
            else:
                report.state = BatchState.COMPLETED
                if report.failed:
                    report.message = (
                        f"{report.processed + report.failed} elemento(s) procesado(s). "
                        f"{report.failed} error(es) - descarga los logs para detalles."
                    )
            self._emit_message(report.message)
            self._log(
                f"배치 종료: state={report.state.value} processed={report.processed} "
                f"failed={report.failed} skipped={report.skipped_duplicates}"
            )
            return report
        except Exception as e:
            logger.exception("배치 처리 중 예기치 않은 오류")
            report.state = BatchState.ERROR
            report.message = f"Error inesperado: {e}"
            report.errors.append(report.message)
            self._emit_message(report.message)
            return report
        finally:
            self._set_state(report.state)
            token.reset()
            self._active_token = None
            self.last_report = report
            self._run_lock.release()


def build_default_pipeline(
    *,
    store: RecordStore | None = None,
    enrichment_client: EnrichmentClient | None = None,
    logger: LogFunc | None = None,
    pacing_sec: int = PIPELINE_PACING_SEC,
    **callbacks: Callable[..., None],
) -> IngestionPipeline:
    if store is None:
        store = RecordStore(FileBlobBackend(STORE_DIR))
    if not store.is_open:
        store.open()
    return IngestionPipeline(
        store=store,
        enrichment_client=enrichment_client or build_default_enrichment_client(),
        extractor=EmlExtractor(),
        logger=logger,
        pacing_sec=pacing_sec,
        **callbacks,
    )
