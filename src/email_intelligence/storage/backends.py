from __future__ import annotations

import datetime
import logging
import os
import re
import threading
from pathlib import Path
from typing import Callable, Protocol

from email_intelligence.export.export_manager import is_sqlite_blob, load_latest_backup

logger = logging.getLogger(__name__)

_KEY_RE = re.compile(r"[^A-Za-z0-9._-]+")


class BlobBackend(Protocol):
    def get(self, key: str) -> bytes | None: ...

    def put(self, key: str, data: bytes) -> None: ...

    def delete(self, key: str) -> None: ...


class FileBlobBackend:
    """키 하나당 파일 하나. 쓰기는 임시 파일 후 교체(원자적)."""

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    def _path(self, key: str) -> Path:
        safe = _KEY_RE.sub("_", key).strip("._") or "default"
        return self._directory / f"{safe}.bin"

    def get(self, key: str) -> bytes | None:
        path = self._path(key)
        if not path.is_file():
            return None
        return path.read_bytes()

    def put(self, key: str, data: bytes) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + ".tmp")
        with open(tmp_path, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass


class MemoryBlobBackend:
    def __init__(self) -> None:
        self._blobs: dict[str, bytes] = {}
        self._lock = threading.Lock()
        self.put_count = 0

    def get(self, key: str) -> bytes | None:
        with self._lock:
            return self._blobs.get(key)

    def put(self, key: str, data: bytes) -> None:
        with self._lock:
            self._blobs[key] = bytes(data)
            self.put_count += 1

    def delete(self, key: str) -> None:
        with self._lock:
            self._blobs.pop(key, None)


# -----------------------------
# 저장소 초기화 소스 (open() 시 순서대로 평가)
# -----------------------------
class InitSource(Protocol):
    name: str
    # True면 읽어온 blob이 이미 백엔드에 있으므로 다시 쓰지 않는다
    from_backend: bool

    def load(self) -> bytes | None: ...


class BackupFolderSource:
    name = "backup_folder"
    from_backend = False

    def __init__(
        self,
        directory: str | Path,
        lookback_days: int = 30,
        today_provider: Callable[[], datetime.date] = datetime.date.today,
    ) -> None:
        self._directory = Path(directory)
        self._lookback_days = lookback_days
        self._today = today_provider

    def load(self) -> bytes | None:
        return load_latest_backup(self._directory, self._lookback_days, self._today())


class BackendSource:
    name = "backend"
    from_backend = True

    def __init__(self, backend: BlobBackend, key: str) -> None:
        self._backend = backend
        self._key = key

    def load(self) -> bytes | None:
        try:
            blob = self._backend.get(self._key)
        except OSError as e:
            logger.warning("백엔드에서 DB 읽기 실패: %s (%s)", self._key, e)
            return None
        if blob is None:
            return None
        if not is_sqlite_blob(blob):
            logger.warning("백엔드 blob이 SQLite 형식이 아님, 무시: %s", self._key)
            return None
        return blob
