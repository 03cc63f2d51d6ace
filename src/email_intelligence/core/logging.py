from __future__ import annotations

import collections
import datetime
import json
import logging
import threading
from pathlib import Path
from typing import Any

from email_intelligence.core.config import LOG_BUFFER_MAX_RECORDS, LOG_FILE, LOG_LEVEL

_CONSOLE_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"
_PACKAGE_LOGGER = "email_intelligence"

_memory_handler: MemoryLogHandler | None = None


class MemoryLogHandler(logging.Handler):
    """최근 로그 레코드를 메모리에 보관하는 핸들러.

    CLI의 `--save-logs` 옵션이 세션 로그를 텍스트/JSON 파일로 내려받을 때 사용한다.
    `max_records`를 넘으면 가장 오래된 레코드부터 버린다.
    """

    def __init__(self, max_records: int = LOG_BUFFER_MAX_RECORDS, level: int = logging.DEBUG) -> None:
        super().__init__(level=level)
        self._entries: collections.deque[dict[str, Any]] = collections.deque(maxlen=max(1, max_records))
        self._entries_lock = threading.Lock()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry = {
                "timestamp": datetime.datetime.fromtimestamp(
                    record.created, tz=datetime.timezone.utc
                ).isoformat(timespec="milliseconds"),
                "level": record.levelname.lower(),
                "category": record.name,
                "message": record.getMessage(),
            }
            if record.exc_info:
                entry["data"] = {"exception": self.formatException(record.exc_info)}
        except Exception:
            self.handleError(record)
            return
        with self._entries_lock:
            self._entries.append(entry)

    def get_entries(self) -> list[dict[str, Any]]:
        with self._entries_lock:
            return list(self._entries)

    def as_text(self) -> str:
        lines = []
        for entry in self.get_entries():
            line = f"[{entry['timestamp']}] [{entry['level'].upper()}] [{entry['category']}] {entry['message']}"
            if entry.get("data"):
                line += "\n  Data: " + json.dumps(entry["data"], ensure_ascii=False, indent=2)
            lines.append(line)
        return "\n\n".join(lines)

    def as_json(self) -> str:
        return json.dumps(self.get_entries(), ensure_ascii=False, indent=2)

    def error_count(self) -> int:
        return sum(1 for entry in self.get_entries() if entry["level"] in {"error", "critical"})

    def recent_errors(self, count: int = 10) -> list[dict[str, Any]]:
        errors = [entry for entry in self.get_entries() if entry["level"] in {"error", "critical"}]
        return errors[-count:] if count > 0 else []

    def clear(self) -> None:
        with self._entries_lock:
            self._entries.clear()

    def dump(self, path: str | Path, fmt: str = "txt") -> Path:
        # fmt: "txt" | "json"
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        content = self.as_json() if fmt == "json" else self.as_text()
        target.write_text(content, encoding="utf-8")
        return target


def default_log_file_name(now: datetime.datetime | None = None, fmt: str = "txt") -> str:
    stamp = (now or datetime.datetime.now()).strftime("%Y-%m-%dT%H-%M-%S")
    return f"email-intelligence-logs-{stamp}.{fmt}"


def get_memory_handler() -> MemoryLogHandler | None:
    return _memory_handler


def configure_logging(
    level: str | int | None = None,
    log_file: str | None = None,
    *,
    max_records: int = LOG_BUFFER_MAX_RECORDS,
) -> MemoryLogHandler:
    """패키지 로거에 콘솔/파일/메모리 핸들러를 설치한다. 여러 번 호출해도 중복 설치하지 않음."""
    global _memory_handler

    resolved_level = level if level is not None else LOG_LEVEL
    if isinstance(resolved_level, str):
        resolved_level = logging.getLevelName(resolved_level.upper())
        if not isinstance(resolved_level, int):
            resolved_level = logging.INFO

    package_logger = logging.getLogger(_PACKAGE_LOGGER)
    package_logger.setLevel(resolved_level)
    for handler in list(package_logger.handlers):
        if getattr(handler, "_email_intelligence_owned", False):
            package_logger.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(_CONSOLE_FORMAT)
    console = logging.StreamHandler()
    console.setFormatter(formatter)
    console._email_intelligence_owned = True  # type: ignore[attr-defined]
    package_logger.addHandler(console)

    target_file = log_file if log_file is not None else LOG_FILE
    if target_file:
        Path(target_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(target_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        file_handler._email_intelligence_owned = True  # type: ignore[attr-defined]
        package_logger.addHandler(file_handler)

    memory = MemoryLogHandler(max_records=max_records)
    memory._email_intelligence_owned = True  # type: ignore[attr-defined]
    package_logger.addHandler(memory)
    package_logger.propagate = False
    _memory_handler = memory
    return memory
