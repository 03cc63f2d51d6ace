from __future__ import annotations

import argparse
import datetime
import sys
from pathlib import Path
from typing import Sequence

from email_intelligence.core.config import EXPORT_DIR, PIPELINE_PACING_SEC, STORE_DIR
from email_intelligence.core.logging import configure_logging, default_log_file_name
from email_intelligence.export.export_manager import export_records_json
from email_intelligence.processing.llm_client import validate_api_key_configuration
from email_intelligence.processing.pipeline import (
    BatchProgress,
    BatchReport,
    BatchState,
    IngestionPipeline,
    SourceItem,
    build_default_pipeline,
)
from email_intelligence.storage.backends import FileBlobBackend
from email_intelligence.storage.record_store import RecordStore, RecordStoreError

_EML_SUFFIXES = {".eml"}


def _log(message: str) -> None:
    ts = datetime.datetime.now().strftime("%H:%M:%S")
    print(f"[{ts}] {message}")


def _progress(progress: BatchProgress) -> None:
    _log(f"진행 {progress.current}/{progress.total}: {progress.current_item or ''}")


def _collect_files(paths: Sequence[str]) -> list[SourceItem]:
    items: list[SourceItem] = []
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            for child in sorted(path.iterdir()):
                if child.is_file() and child.suffix.lower() in _EML_SUFFIXES:
                    items.append(SourceItem.file(child))
        else:
            items.append(SourceItem.file(path))
    return items


def _open_store() -> RecordStore:
    return RecordStore(FileBlobBackend(STORE_DIR)).open()


def _run_to_completion(pipeline: IngestionPipeline, items: list[SourceItem]) -> BatchReport | None:
    thread = pipeline.submit_batch(items)
    while thread.is_alive():
        try:
            thread.join(0.5)
        except KeyboardInterrupt:
            _log("중단 요청: 현재 항목이 끝나면 멈춥니다 (Ctrl-C)")
            pipeline.cancel_batch()
    return pipeline.last_report


def _cmd_ingest(args: argparse.Namespace) -> int:
    if not validate_api_key_configuration():
        _log("❌ GEMINI_API_KEY (또는 API_KEY)가 설정되지 않았습니다. .env를 확인하세요.")
        return 2
    if args.command == "files":
        items = _collect_files(args.paths)
    elif args.command == "urls":
        items = [SourceItem.url(u) for u in args.urls if u.strip()]
    else:
        items = [SourceItem.video(u) for u in args.urls if u.strip()]
    if not items:
        _log("처리할 항목이 없습니다.")
        return 0

    store = _open_store()
    try:
        pipeline = build_default_pipeline(
            store=store,
            logger=_log,
            pacing_sec=args.pacing,
            progress_callback=_progress,
        )
        report = _run_to_completion(pipeline, items)
    finally:
        store.close()

    if report is None:
        return 1
    _log(
        f"결과: state={report.state.value} processed={report.processed} failed={report.failed} "
        f"skipped={report.skipped_duplicates} cancelled={report.cancelled}"
    )
    if report.message:
        _log(report.message)
    if args.save_logs and args.memory_handler is not None:
        fmt = "json" if str(args.save_logs).endswith(".json") else "txt"
        target = Path(args.save_logs)
        if target.is_dir():
            target = target / default_log_file_name(fmt=fmt)
        _log(f"로그 저장: {args.memory_handler.dump(target, fmt)}")
    return 1 if report.state == BatchState.ERROR else 0


def _cmd_list(args: argparse.Namespace) -> int:
    store = _open_store()
    try:
        records = store.get_all()
    finally:
        store.close()
    if args.json:
        _log(f"JSON 저장: {export_records_json(records, args.json)}")
        return 0
    for record in records:
        tags = ", ".join(record["tags"])
        print(f"{record['id']:>5}  {record['sentAt']:<19}  [{record['status']}] {record['topic']} | {record['sourceName']} | {tags}")
    _log(f"총 {len(records)}건")
    return 0


def _cmd_export(args: argparse.Namespace) -> int:
    store = _open_store()
    try:
        blob = store.export_with_backup(EXPORT_DIR) if args.backup else store.export()
    finally:
        store.close()
    target = Path(args.out)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(blob)
    _log(f"내보내기 완료: {target} ({len(blob)} bytes)")
    return 0


def _cmd_import(args: argparse.Namespace) -> int:
    blob = Path(args.blob).read_bytes()
    store = _open_store()
    try:
        result = store.import_merge(blob)
    except RecordStoreError as e:
        _log(f"❌ 가져오기 실패: {e}")
        return 1
    finally:
        store.close()
    _log(f"가져오기: imported={result.imported} skipped={result.skipped}")
    for error in result.errors:
        _log(f"  - {error}")
    return 0


def _cmd_delete(args: argparse.Namespace) -> int:
    store = _open_store()
    try:
        deleted = store.delete_by_ids(args.ids)
    except RecordStoreError as e:
        _log(f"❌ 삭제 실패: {e}")
        return 1
    finally:
        store.close()
    _log(f"삭제 완료: {deleted}건")
    return 0


def _cmd_reset(args: argparse.Namespace) -> int:
    if not args.yes:
        _log("초기화하려면 --yes를 지정하세요.")
        return 2
    store = _open_store()
    try:
        store.reset()
    finally:
        store.close()
    _log("DB 초기화 완료")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="email-intelligence", description="Email/URL intelligence ingestion")
    parser.add_argument("--log-level", default=None, help="로그 레벨 (기본: LOG_LEVEL)")
    parser.add_argument("--log-file", default=None, help="로그 파일 경로 (기본: LOG_FILE)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    def _add_ingest_options(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("--pacing", type=int, default=PIPELINE_PACING_SEC, help="항목 간 대기(초)")
        sub.add_argument("--save-logs", default=None, help="배치 후 세션 로그 저장 경로 (.txt/.json 또는 폴더)")

    files_p = subparsers.add_parser("files", help="EML 파일(또는 폴더) 수집")
    files_p.add_argument("paths", nargs="+")
    _add_ingest_options(files_p)

    urls_p = subparsers.add_parser("urls", help="URL 수집")
    urls_p.add_argument("urls", nargs="+")
    _add_ingest_options(urls_p)

    videos_p = subparsers.add_parser("videos", help="영상 URL 수집 (자막 기반 분석)")
    videos_p.add_argument("urls", nargs="+")
    _add_ingest_options(videos_p)

    list_p = subparsers.add_parser("list", help="저장된 레코드 보기")
    list_p.add_argument("--json", default=None, help="JSON 파일로 저장")

    export_p = subparsers.add_parser("export", help="SQLite 파일로 내보내기")
    export_p.add_argument("out")
    export_p.add_argument("--backup", action="store_true", help="백업 폴더에 날짜별 사본도 저장")

    import_p = subparsers.add_parser("import", help="SQLite 파일 병합 가져오기")
    import_p.add_argument("blob")

    delete_p = subparsers.add_parser("delete", help="id로 레코드 삭제")
    delete_p.add_argument("ids", nargs="+")

    reset_p = subparsers.add_parser("reset", help="DB 초기화")
    reset_p.add_argument("--yes", action="store_true")
    return parser


_COMMANDS = {
    "files": _cmd_ingest,
    "urls": _cmd_ingest,
    "videos": _cmd_ingest,
    "list": _cmd_list,
    "export": _cmd_export,
    "import": _cmd_import,
    "delete": _cmd_delete,
    "reset": _cmd_reset,
}


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    args.memory_handler = configure_logging(args.log_level, args.log_file)
    try:
        return _COMMANDS[args.command](args)
    except (OSError, RecordStoreError) as e:
        _log(f"❌ 오류 발생: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
