from __future__ import annotations

import datetime
import threading
from typing import Any

import pytest

from email_intelligence.core.constants import QUOTA_USER_MESSAGE
from email_intelligence.processing.enrichment_utils import failure_sentinel, quota_sentinel
from email_intelligence.processing.extractor import EmlExtractor
from email_intelligence.processing.pipeline import (
    BatchInProgressError,
    BatchProgress,
    BatchState,
    CancellationToken,
    IngestionPipeline,
    SourceItem,
    SourceKind,
)
from email_intelligence.storage.backends import BackendSource, MemoryBlobBackend
from email_intelligence.storage.record_store import RecordStore, RecordStoreError

NOW = datetime.datetime(2024, 6, 1, 8, 0, 0, tzinfo=datetime.timezone.utc)
KEY = "pipeline_db"


def _result(url: str | None = None, topic: str = "Tema") -> dict[str, Any]:
    return {
        "topic": topic,
        "tags": ["t"],
        "summaryHtml": "<p>s</p>",
        "urls": [url] if url else [],
        "normalizedDate": "2024-01-01 00:00:00",
    }


class _FakeClient:
    def __init__(self, scripted: dict[str, dict[str, Any]] | None = None) -> None:
        self.scripted = scripted or {}
        self.calls: list[tuple[str, bool]] = []

    def analyze_record(self, record: dict[str, Any]) -> dict[str, Any]:
        name = record["sourceName"]
        self.calls.append((name, False))
        return self.scripted.get(name, _result(topic=record["rawSubject"]))

    def analyze_url(self, url: str, use_transcript_flow: bool = False) -> dict[str, Any]:
        self.calls.append((url, use_transcript_flow))
        return self.scripted.get(url, _result(url))


class _Recorder:
    def __init__(self) -> None:
        self.sleeps: list[float] = []
        self.states: list[BatchState] = []
        self.progress: list[BatchProgress] = []
        self.messages: list[str | None] = []
        self.snapshots: list[int] = []


def _store(cls: type[RecordStore] = RecordStore) -> RecordStore:
    backend = MemoryBlobBackend()
    return cls(backend, init_sources=[BackendSource(backend, KEY)], store_key=KEY).open()


def _pipeline(
    client: _FakeClient,
    store: RecordStore | None = None,
    *,
    pacing_sec: int = 2,
    recorder: _Recorder | None = None,
    sleep_func=None,
) -> IngestionPipeline:
    rec = recorder or _Recorder()
    return IngestionPipeline(
        store=store or _store(),
        enrichment_client=client,  # type: ignore[arg-type]
        extractor=EmlExtractor(),
        logger=lambda _msg: None,
        pacing_sec=pacing_sec,
        sleep_func=sleep_func or rec.sleeps.append,
        progress_callback=rec.progress.append,
        state_callback=rec.states.append,
        records_callback=lambda records: rec.snapshots.append(len(records)),
        message_callback=rec.messages.append,
        now_provider=lambda: NOW,
    )


def _write_eml(tmp_path, name: str, subject: str) -> SourceItem:
    path = tmp_path / name
    path.write_text(f"Subject: {subject}\r\nDate: Mon, 1 Jan 2024 10:00:00 +0000\r\n\r\nCuerpo {subject}")
    return SourceItem.file(path)


def test_source_item_factories() -> None:
    assert SourceItem.url(" https://a.com ").identifier == "https://a.com"
    assert SourceItem.video("https://youtu.be/x").kind == SourceKind.VIDEO
    item = SourceItem.file("/tmp/dir/mail.eml")
    assert item.source_name == "mail.eml"
    assert item.kind == SourceKind.FILE


def test_files_processed_in_order_with_pacing_and_progress(tmp_path) -> None:
    rec = _Recorder()
    client = _FakeClient()
    items = [_write_eml(tmp_path, f"{i}.eml", f"S{i}") for i in range(3)]
    pipeline = _pipeline(client, recorder=rec)

    report = pipeline.run_batch(items)

    assert report.state == BatchState.COMPLETED
    assert (report.total, report.processed, report.failed) == (3, 3, 0)
    assert report.message is None
    assert [name for name, _ in client.calls] == ["0.eml", "1.eml", "2.eml"]
    assert rec.sleeps == [1, 1, 1, 1]
    assert [(p.current, p.total) for p in rec.progress] == [(1, 3), (2, 3), (3, 3)]
    assert rec.snapshots[:3] == [1, 2, 3]
    assert BatchState.EXTRACTING in rec.states
    assert rec.states[-1] == BatchState.COMPLETED
    assert pipeline.state == BatchState.COMPLETED

    records = pipeline.get_visible_records()
    assert [r["sourceName"] for r in records] == ["2.eml", "1.eml", "0.eml"]
    assert records[0]["topic"] == "S2"
    assert records[0]["status"] == "completed"


def test_existing_and_in_batch_duplicates_are_prefiltered() -> None:
    store = _store()
    store.append(
        [
            {
                "sourceName": "old",
                "sentAt": "",
                "topic": "T",
                "tags": [],
                "summaryHtml": "",
                "urls": ["https://x.com/u/status/1"],
                "status": "completed",
            }
        ]
    )
    client = _FakeClient()
    pipeline = _pipeline(client, store)
    report = pipeline.run_batch(
        [
            SourceItem.url("https://twitter.com/u/status/1?s=20"),
            SourceItem.url("https://new.example.com"),
            SourceItem.url("https://new.example.com"),
        ]
    )
    assert report.skipped_duplicates == 2
    assert client.calls == [("https://new.example.com", False)]
    assert store.count() == 2


def test_nothing_to_process_message() -> None:
    rec = _Recorder()
    store = _store()
    client = _FakeClient()
    pipeline = _pipeline(client, store, recorder=rec)
    pipeline.run_batch([SourceItem.url("https://a.com")])
    client.calls.clear()
    rec.states.clear()

    report = pipeline.run_batch([SourceItem.url("https://a.com")])
    assert report.total == 0
    assert report.state == BatchState.IDLE
    assert report.message is not None and report.message.startswith("Nada que procesar")
    assert client.calls == []
    assert BatchState.ENRICHING not in rec.states


def test_quota_sentinel_halts_batch_without_persisting() -> None:
    rec = _Recorder()
    urls = ["https://a.com/1", "https://a.com/2", "https://a.com/3"]
    client = _FakeClient({urls[1]: quota_sentinel(source_url=urls[1], now=NOW)})
    store = _store()
    report = _pipeline(client, store, recorder=rec).run_batch([SourceItem.url(u) for u in urls])

    assert report.stopped_by_quota
    assert report.state == BatchState.ERROR
    assert report.message == QUOTA_USER_MESSAGE
    assert [c[0] for c in client.calls] == urls[:2]
    assert [r["sourceName"] for r in store.get_all()] == [urls[0]]
    assert rec.messages[-1] == QUOTA_USER_MESSAGE


def test_failure_sentinel_is_stored_and_batch_continues() -> None:
    urls = ["https://a.com/1", "https://a.com/2", "https://a.com/3"]
    client = _FakeClient({urls[1]: failure_sentinel("Error analizando URL", source_url=urls[1], now=NOW)})
    store = _store()
    report = _pipeline(client, store).run_batch([SourceItem.url(u) for u in urls])

    assert report.state == BatchState.COMPLETED
    assert (report.processed, report.failed) == (2, 1)
    assert "1 error(es)" in (report.message or "")
    assert store.count() == 3
    failed = next(r for r in store.get_all() if r["sourceName"] == urls[1])
    assert failed["status"] == "error"
    assert failed["errorMessage"] == failed["summaryHtml"]


def test_unreadable_file_becomes_error_record(tmp_path) -> None:
    client = _FakeClient()
    store = _store()
    report = _pipeline(client, store).run_batch([SourceItem.file(tmp_path / "missing.eml")])

    assert report.failed == 1
    assert client.calls == []
    (record,) = store.get_all()
    assert record["status"] == "error"
    assert record["topic"] == "Error en Análisis"
    assert record["errorMessage"].startswith("ParseError")
    assert record["sentAt"] == "2024-06-01 08:00:00"


def test_video_items_use_transcript_flow() -> None:
    client = _FakeClient()
    _pipeline(client, pacing_sec=0).run_batch(
        [SourceItem.video("https://youtu.be/dQw4w9WgXcQ"), SourceItem.url("https://a.com")]
    )
    assert client.calls == [("https://youtu.be/dQw4w9WgXcQ", True), ("https://a.com", False)]


def test_cancel_during_pacing_stops_before_next_item() -> None:
    token = CancellationToken()
    sleeps: list[float] = []

    def _sleep(seconds: float) -> None:
        sleeps.append(seconds)
        token.cancel()

    client = _FakeClient()
    store = _store()
    pipeline = _pipeline(client, store, pacing_sec=15, sleep_func=_sleep)
    report = pipeline.run_batch([SourceItem.url("https://a.com/1"), SourceItem.url("https://a.com/2")], token)

    assert report.cancelled
    assert report.state == BatchState.IDLE
    assert report.processed == 1
    assert sleeps == [1]
    assert store.count() == 1
    assert "1 elemento(s)" in (report.message or "")
    assert not token.is_cancelled()


def test_cancel_before_start_processes_nothing() -> None:
    token = CancellationToken()
    token.cancel()
    client = _FakeClient()
    report = _pipeline(client).run_batch([SourceItem.url("https://a.com")], token)
    assert report.cancelled
    assert client.calls == []


def test_store_failure_is_reported_and_retried_at_end() -> None:
    class _FailOnceStore(RecordStore):
        failures = 1

        def append(self, records):
            if self.failures:
                self.failures -= 1
                raise RecordStoreError("backend unavailable")
            return super().append(records)

    rec = _Recorder()
    store = _store(_FailOnceStore)
    report = _pipeline(_FakeClient(), store, recorder=rec).run_batch([SourceItem.url("https://a.com")])

    assert report.state == BatchState.COMPLETED
    assert report.processed == 1
    assert any("Error guardando" in e for e in report.errors)
    assert any(m and "Error guardando" in m for m in rec.messages)
    assert store.count() == 1


def test_submit_batch_runs_in_background_and_rejects_overlap() -> None:
    started = threading.Event()
    release = threading.Event()

    class _BlockingClient(_FakeClient):
        def analyze_url(self, url: str, use_transcript_flow: bool = False) -> dict[str, Any]:
            started.set()
            release.wait(5)
            return super().analyze_url(url, use_transcript_flow)

    pipeline = _pipeline(_BlockingClient(), pacing_sec=0)
    thread = pipeline.submit_batch([SourceItem.url("https://a.com")])
    assert started.wait(5)
    assert pipeline.is_running
    with pytest.raises(BatchInProgressError):
        pipeline.submit_batch([SourceItem.url("https://b.com")])

    release.set()
    thread.join(5)
    report = pipeline.wait(5)
    assert report is not None and report.state == BatchState.COMPLETED
    assert not pipeline.is_running


def test_cancel_batch_targets_running_token() -> None:
    pipeline_ref: list[IngestionPipeline] = []

    class _CancellingClient(_FakeClient):
        def analyze_url(self, url: str, use_transcript_flow: bool = False) -> dict[str, Any]:
            pipeline_ref[0].cancel_batch()
            return super().analyze_url(url, use_transcript_flow)

    client = _CancellingClient()
    pipeline = _pipeline(client, pacing_sec=0)
    pipeline_ref.append(pipeline)
    external = CancellationToken()
    report = pipeline.run_batch([SourceItem.url("https://a.com/1"), SourceItem.url("https://a.com/2")], external)

    assert report.cancelled
    assert len(client.calls) == 1
