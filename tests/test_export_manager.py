from __future__ import annotations

import datetime
import json

from email_intelligence.core.constants import SQLITE_HEADER
from email_intelligence.export.export_manager import (
    backup_file_name,
    export_records_json,
    is_sqlite_blob,
    load_latest_backup,
    save_dated_backup,
)

BLOB = SQLITE_HEADER + b"\x00" * 16


def test_backup_file_name_uses_iso_date() -> None:
    assert backup_file_name(datetime.date(2024, 3, 5)) == "email_intelligence_2024-03-05.sqlite"


def test_is_sqlite_blob() -> None:
    assert is_sqlite_blob(BLOB)
    assert not is_sqlite_blob(b"SQLite format 2")
    assert not is_sqlite_blob("SQLite format 3")


def test_save_and_load_latest_backup(tmp_path) -> None:
    older = save_dated_backup(BLOB + b"old", tmp_path, datetime.date(2024, 3, 1))
    newer = save_dated_backup(BLOB + b"new", tmp_path, datetime.date(2024, 3, 4))
    assert older is not None and newer is not None
    assert not list(tmp_path.glob("*.tmp"))

    assert load_latest_backup(tmp_path, 30, datetime.date(2024, 3, 5)) == BLOB + b"new"
    assert load_latest_backup(tmp_path, 2, datetime.date(2024, 3, 5)) is None


def test_load_skips_non_sqlite_files(tmp_path) -> None:
    (tmp_path / backup_file_name(datetime.date(2024, 3, 5))).write_bytes(b"corrupted")
    save_dated_backup(BLOB, tmp_path, datetime.date(2024, 3, 3))
    assert load_latest_backup(tmp_path, 30, datetime.date(2024, 3, 5)) == BLOB


def test_load_from_missing_directory(tmp_path) -> None:
    assert load_latest_backup(tmp_path / "nope", 30, datetime.date(2024, 3, 5)) is None


def test_save_failure_returns_none(tmp_path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("file, not a directory")
    assert save_dated_backup(BLOB, blocker, datetime.date(2024, 3, 5)) is None


def test_export_records_json(tmp_path) -> None:
    records = [{"id": "1", "sourceName": "a.eml", "topic": "Categoría"}]
    path = export_records_json(records, tmp_path / "out" / "records.json")
    assert json.loads(path.read_text(encoding="utf-8")) == records
    assert "Categoría" in path.read_text(encoding="utf-8")
