from __future__ import annotations

import datetime
import json
import logging
import sqlite3
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Sequence

from email_intelligence.core.config import BACKUP_DIR, BACKUP_LOOKBACK_DAYS, EXPORT_DIR, STORE_KEY
from email_intelligence.core.constants import STATUS_COMPLETED, TABLE_NAME
from email_intelligence.export.export_manager import is_sqlite_blob, save_dated_backup
from email_intelligence.models import NewRecord, StoredRecord
from email_intelligence.processing.dedupe import DedupIndex, decode_json_list
from email_intelligence.storage.backends import (
    BackendSource,
    BackupFolderSource,
    BlobBackend,
    InitSource,
)

logger = logging.getLogger(__name__)

_CREATE_TABLE_SQL = f"""
CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    fileName TEXT,
    fechaEnvio TEXT,
    tematica TEXT,
    etiquetas TEXT,
    contenido TEXT,
    urls TEXT,
    status TEXT DEFAULT '{STATUS_COMPLETED}',
    errorMessage TEXT
)
"""
# 예전 blob에는 없을 수 있는 컬럼: open()/import 시 ALTER TABLE로 보강
_ADDITIVE_COLUMNS = {
    "status": f"TEXT DEFAULT '{STATUS_COMPLETED}'",
    "errorMessage": "TEXT",
}
_INSERT_SQL = (
    f"INSERT INTO {TABLE_NAME} "
    "(fileName, fechaEnvio, tematica, etiquetas, contenido, urls, status, errorMessage) "
    "VALUES (?, ?, ?, ?, ?, ?, ?, ?)"
)
_SELECT_ALL_SQL = (
    f"SELECT id, fileName, fechaEnvio, tematica, etiquetas, contenido, urls, status, errorMessage "
    f"FROM {TABLE_NAME} ORDER BY id DESC"
)


class RecordStoreError(Exception):
    """트랜잭션/영속화 실패. 부분 성공 결과가 있으면 `result`에 담는다."""

    def __init__(self, message: str, result: Any = None) -> None:
        super().__init__(message)
        self.result = result


class RecordStoreValidationError(RecordStoreError):
    """가져오기 blob이 SQLite가 아니거나 필수 테이블/컬럼이 없음."""


@dataclass
class AppendResult:
    added: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class ImportResult:
    imported: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)


def _table_columns(conn: sqlite3.Connection, table: str = TABLE_NAME) -> list[str]:
    return [row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()]


def _has_table(conn: sqlite3.Connection, table: str = TABLE_NAME) -> bool:
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
        (table,),
    ).fetchone()
    return row is not None


def _row_to_record(row: sqlite3.Row) -> StoredRecord:
    record: StoredRecord = {
        "id": str(row["id"]),
        "sourceName": row["fileName"] or "",
        "sentAt": row["fechaEnvio"] or "",
        "topic": row["tematica"] or "",
        "tags": decode_json_list(row["etiquetas"]),
        "summaryHtml": row["contenido"] or "",
        "urls": decode_json_list(row["urls"]),
        "status": row["status"] or STATUS_COMPLETED,
    }
    if row["errorMessage"]:
        record["errorMessage"] = row["errorMessage"]
    return record


def _encode_list(values: Iterable[str] | None) -> str:
    return json.dumps([v for v in (values or []) if v], ensure_ascii=False)


class RecordStore:
    """메모리 SQLite 단일 테이블 + 내구성 백엔드(blob) 저장소.

    모든 변경은 자체 트랜잭션으로 커밋한 직후 DB 이미지를 백엔드에 기록한다.
    중복 판정은 URL(원본/정규화) 우선, 그다음 파일명 일치.
    """

    def __init__(
        self,
        backend: BlobBackend,
        *,
        init_sources: Sequence[InitSource] | None = None,
        store_key: str = STORE_KEY,
    ) -> None:
        self._backend = backend
        self._store_key = store_key
        if init_sources is None:
            init_sources = [
                BackupFolderSource(BACKUP_DIR, BACKUP_LOOKBACK_DAYS),
                BackendSource(backend, store_key),
            ]
        self._init_sources = list(init_sources)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        # 마지막 백엔드 기록이 실패했으면 True: 다음 변경/flush에서 재시도
        self._dirty = False
        self.loaded_from: str | None = None

    # -----------------------------
    # 수명 주기
    # -----------------------------
    def __enter__(self) -> RecordStore:
        self.open()
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def open(self) -> RecordStore:
        with self._lock:
            if self._conn is not None:
                return self
            backend_rows: int | None = None
            for source in self._init_sources:
                try:
                    blob = source.load()
                except Exception as e:
                    logger.warning("초기화 소스 실패: %s (%s)", source.name, e)
                    continue
                if not blob or not is_sqlite_blob(blob):
                    continue
                if not source.from_backend:
                    # 시드는 비어 있는 백엔드만 채운다 (이후 저장분을 덮어쓰지 않음)
                    if backend_rows is None:
                        backend_rows = self._backend_row_count()
                    if backend_rows > 0:
                        logger.info("백엔드에 기존 레코드 %d건, 시드 무시: %s", backend_rows, source.name)
                        continue
                conn = self._connect_blob(blob)
                if conn is None:
                    logger.warning("손상된 DB blob, 건너뜀: %s", source.name)
                    continue
                self._conn = conn
                self._ensure_table()
                self.loaded_from = source.name
                logger.info("DB 로드: %s (%d건)", source.name, self._count())
                if not source.from_backend:
                    self._persist()
                return self

            self._conn = self._new_connection()
            self._ensure_table()
            self.loaded_from = None
            logger.info("새 DB 생성")
            return self

    def close(self) -> None:
        with self._lock:
            if self._conn is None:
                return
            if self._dirty:
                try:
                    self._persist()
                except RecordStoreError as e:
                    logger.error("종료 시 DB 저장 실패: %s", e)
            self._conn.close()
            self._conn = None

    @staticmethod
    def _new_connection() -> sqlite3.Connection:
        conn = sqlite3.connect(":memory:", check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    @classmethod
    def _connect_blob(cls, blob: bytes) -> sqlite3.Connection | None:
        conn = cls._new_connection()
        try:
            conn.deserialize(bytes(blob))
            conn.execute("SELECT name FROM sqlite_master").fetchall()
        except sqlite3.DatabaseError:
            conn.close()
            return None
        return conn

    def _backend_row_count(self) -> int:
        try:
            blob = self._backend.get(self._store_key)
        except OSError as e:
            logger.warning("백엔드에서 DB 읽기 실패: %s (%s)", self._store_key, e)
            return 0
        if not blob or not is_sqlite_blob(blob):
            return 0
        conn = self._connect_blob(blob)
        if conn is None:
            return 0
        try:
            if not _has_table(conn):
                return 0
            row = conn.execute(f"SELECT COUNT(*) FROM {TABLE_NAME}").fetchone()
            return int(row[0]) if row else 0
        except sqlite3.DatabaseError:
            return 0
        finally:
            conn.close()

    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RecordStoreError("RecordStore is not open")
        return self._conn

    def _ensure_table(self) -> None:
        conn = self._require_conn()
        with conn:
            conn.execute(_CREATE_TABLE_SQL)
            existing = set(_table_columns(conn))
            for column, ddl in _ADDITIVE_COLUMNS.items():
                if column not in existing:
                    conn.execute(f"ALTER TABLE {TABLE_NAME} ADD COLUMN {column} {ddl}")

    def _count(self) -> int:
        row = self._require_conn().execute(f"SELECT COUNT(*) FROM {TABLE_NAME}").fetchone()
        return int(row[0]) if row else 0

    def _persist(self) -> None:
        blob = self._require_conn().serialize()
        try:
            self._backend.put(self._store_key, blob)
        except Exception as e:
            self._dirty = True
            raise RecordStoreError(f"DB 저장 실패 ({self._store_key}): {e}") from e
        self._dirty = False
        logger.debug("DB 저장 완료 (%d bytes)", len(blob))

    def flush(self) -> None:
        """직전 백엔드 기록이 실패했던 경우 다시 기록."""
        with self._lock:
            if self._dirty:
                self._persist()

    # -----------------------------
    # 조회
    # -----------------------------
    def get_all(self) -> list[StoredRecord]:
        with self._lock:
            rows = self._require_conn().execute(_SELECT_ALL_SQL).fetchall()
        return [_row_to_record(row) for row in rows]

    def existing_source_names(self) -> set[str]:
        with self._lock:
            rows = self._require_conn().execute(f"SELECT fileName FROM {TABLE_NAME}").fetchall()
        return {row[0] for row in rows if row[0]}

    def exists(self, source_name: str) -> bool:
        return bool(source_name) and source_name in self.existing_source_names()

    def dedup_index(self) -> DedupIndex:
        with self._lock:
            rows = self._require_conn().execute(f"SELECT fileName, urls FROM {TABLE_NAME}").fetchall()
        return DedupIndex.from_rows({"fileName": row["fileName"], "urls": row["urls"]} for row in rows)

    def count(self) -> int:
        with self._lock:
            return self._count()

    # -----------------------------
    # 변경
    # -----------------------------
    def append(self, records: Sequence[NewRecord]) -> AppendResult:
        result = AppendResult()
        with self._lock:
            conn = self._require_conn()
            index = self.dedup_index()
            try:
                with conn:
                    for position, record in enumerate(records, start=1):
                        name = (record.get("sourceName") or "").strip()
                        if not name:
                            result.errors.append(f"Record {position}: sourceName missing")
                            continue
                        urls = [u for u in (record.get("urls") or []) if u]
                        reason = index.find_duplicate(name, urls)
                        if reason:
                            result.skipped += 1
                            logger.info("중복 건너뜀: %s (%s)", name, reason)
                            continue
                        conn.execute(
                            _INSERT_SQL,
                            (
                                name,
                                record.get("sentAt") or "",
                                record.get("topic") or "",
                                _encode_list(record.get("tags")),
                                record.get("summaryHtml") or "",
                                _encode_list(urls),
                                record.get("status") or STATUS_COMPLETED,
                                record.get("errorMessage"),
                            ),
                        )
                        index.add(name, urls)
                        result.added += 1
            except sqlite3.Error as e:
                raise RecordStoreError(f"append 트랜잭션 실패: {e}", result=AppendResult()) from e

            if result.added > 0 or self._dirty:
                self._persist()

        logger.info("append: added=%d skipped=%d errors=%d", result.added, result.skipped, len(result.errors))
        if result.errors:
            raise RecordStoreError("; ".join(result.errors), result=result)
        return result

    def delete_by_ids(self, ids: Iterable[str | int]) -> int:
        id_list = list(ids)
        if not id_list:
            return 0
        with self._lock:
            conn = self._require_conn()
            try:
                numeric_ids = [int(str(i).strip()) for i in id_list]
            except ValueError as e:
                raise RecordStoreError(f"잘못된 id: {e}") from e
            try:
                with conn:
                    deleted = 0
                    for record_id in numeric_ids:
                        cursor = conn.execute(f"DELETE FROM {TABLE_NAME} WHERE id = ?", (record_id,))
                        deleted += cursor.rowcount
            except sqlite3.Error as e:
                raise RecordStoreError(f"삭제 트랜잭션 실패 (롤백됨): {e}") from e
            self._persist()
        logger.info("삭제: %d건 (요청 %d)", deleted, len(numeric_ids))
        return deleted

    def import_merge(self, blob: bytes) -> ImportResult:
        if not is_sqlite_blob(blob):
            raise RecordStoreValidationError("El archivo no es una base de datos SQLite válida")
        external = self._connect_blob(blob)
        if external is None:
            raise RecordStoreValidationError("No se pudo abrir la base de datos importada")
        try:
            if not _has_table(external):
                raise RecordStoreValidationError(f"La base de datos no contiene la tabla '{TABLE_NAME}'")
            columns = set(_table_columns(external))
            if "fileName" not in columns:
                raise RecordStoreValidationError("Faltan columnas requeridas: fileName")
            rows = [dict(row) for row in external.execute(f"SELECT * FROM {TABLE_NAME}").fetchall()]
        except sqlite3.DatabaseError as e:
            raise RecordStoreValidationError(f"Base de datos importada ilegible: {e}") from e
        finally:
            external.close()

        result = ImportResult()
        with self._lock:
            conn = self._require_conn()
            index = self.dedup_index()
            try:
                with conn:
                    for position, row in enumerate(rows, start=1):
                        name = row.get("fileName")
                        name = name.strip() if isinstance(name, str) else ""
                        if not name:
                            result.skipped += 1
                            result.errors.append(f"Fila {position}: fileName faltante, omitida")
                            continue
                        urls = decode_json_list(row.get("urls"))
                        reason = index.find_duplicate(name, urls)
                        if reason:
                            result.skipped += 1
                            logger.info("가져오기 중복 건너뜀: %s (%s)", name, reason)
                            continue
                        conn.execute(
                            _INSERT_SQL,
                            (
                                name,
                                row.get("fechaEnvio") or "",
                                row.get("tematica") or "",
                                _encode_list(decode_json_list(row.get("etiquetas"))),
                                row.get("contenido") or "",
                                _encode_list(urls),
                                row.get("status") or STATUS_COMPLETED,
                                row.get("errorMessage"),
                            ),
                        )
                        index.add(name, urls)
                        result.imported += 1
            except sqlite3.Error as e:
                raise RecordStoreError(f"가져오기 트랜잭션 실패 (롤백됨): {e}") from e

            if result.imported > 0 or self._dirty:
                self._persist()
        logger.info(
            "가져오기 완료: imported=%d skipped=%d errors=%d",
            result.imported, result.skipped, len(result.errors),
        )
        return result

    def export(self) -> bytes:
        with self._lock:
            return bytes(self._require_conn().serialize())

    def export_with_backup(
        self,
        backup_dir: str | Path = EXPORT_DIR,
        today: datetime.date | None = None,
    ) -> bytes:
        blob = self.export()
        save_dated_backup(blob, backup_dir, today)
        return blob

    def reset(self) -> None:
        with self._lock:
            # 백엔드 삭제가 실패하면 기존 연결을 그대로 둔다
            try:
                self._backend.delete(self._store_key)
            except OSError as e:
                raise RecordStoreError(f"백엔드 삭제 실패: {e}") from e
            if self._conn is not None:
                self._conn.close()
            self._conn = self._new_connection()
            self._ensure_table()
            self._dirty = False
            self.loaded_from = None
        logger.info("DB 초기화 완료")
