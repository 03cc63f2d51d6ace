from __future__ import annotations

import datetime
import json
import logging
import os
from pathlib import Path
from typing import Any, Iterable

from email_intelligence.core.constants import BACKUP_FILE_PREFIX, BACKUP_FILE_SUFFIX, SQLITE_HEADER

logger = logging.getLogger(__name__)


def is_sqlite_blob(blob: Any) -> bool:
    """SQLite 파일 시그니처(`SQLite format 3\\0`) 확인."""
    return isinstance(blob, (bytes, bytearray, memoryview)) and bytes(blob[:16]) == SQLITE_HEADER


def backup_file_name(today: datetime.date | None = None) -> str:
    day = today or datetime.date.today()
    return f"{BACKUP_FILE_PREFIX}{day.strftime('%Y-%m-%d')}{BACKUP_FILE_SUFFIX}"


def _atomic_write_bytes(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    with open(tmp_path, "wb") as f:
        f.write(data)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp_path, path)


def save_dated_backup(
    blob: bytes,
    directory: str | Path,
    today: datetime.date | None = None,
) -> Path | None:
    """날짜별 백업 파일 저장. 실패해도 예외를 올리지 않고 None."""
    target = Path(directory) / backup_file_name(today)
    try:
        _atomic_write_bytes(target, bytes(blob))
    except OSError as e:
        logger.warning("백업 저장 실패: %s (%s)", target, e)
        return None
    logger.info("백업 저장: %s (%d bytes)", target, len(blob))
    return target


def load_latest_backup(
    directory: str | Path,
    lookback_days: int = 30,
    today: datetime.date | None = None,
) -> bytes | None:
    """오늘부터 lookback_days일 전까지 거슬러 올라가며 첫 번째 유효한 백업을 읽는다."""
    base = Path(directory)
    if not base.is_dir():
        return None
    day = today or datetime.date.today()
    for offset in range(max(0, lookback_days) + 1):
        candidate = base / backup_file_name(day - datetime.timedelta(days=offset))
        if not candidate.is_file():
            continue
        try:
            data = candidate.read_bytes()
        except OSError as e:
            logger.warning("백업 읽기 실패: %s (%s)", candidate, e)
            continue
        if is_sqlite_blob(data):
            logger.info("백업 폴더에서 DB 로드: %s", candidate)
            return data
        logger.warning("SQLite 파일이 아님, 건너뜀: %s", candidate)
    return None


def export_records_json(records: Iterable[dict[str, Any]], path: str | Path) -> Path:
    target = Path(path)
    payload = list(records)
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = target.with_name(target.name + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2)
    os.replace(tmp_path, target)
    logger.info("레코드 JSON 저장: %s (%d건)", target, len(payload))
    return target
