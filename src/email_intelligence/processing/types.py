from __future__ import annotations

import datetime
from typing import Any, Callable

from email_intelligence.models import StoredRecord

LogFunc = Callable[[str], None]
SleepFunc = Callable[[float], None]
NowFunc = Callable[[], datetime.datetime]
JsonGenerateFunc = Callable[..., dict[str, Any]]
RecordsCallback = Callable[[list[StoredRecord]], None]
MessageCallback = Callable[[str | None], None]
