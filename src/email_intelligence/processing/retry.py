from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, TypeVar

from email_intelligence.core.config import (
    ENRICH_BACKOFF_MULTIPLIER,
    ENRICH_INITIAL_DELAY_SEC,
    ENRICH_MAX_ATTEMPTS,
    ENRICH_MAX_DELAY_SEC,
)
from email_intelligence.processing.types import SleepFunc

logger = logging.getLogger(__name__)

T = TypeVar("T")

_QUOTA_MARKERS = ("429", "RESOURCE_EXHAUSTED")


def is_quota_error(err: BaseException) -> bool:
    """429 / 쿼터 소진 신호 여부. 상태 코드 또는 메시지 마커로 판정."""
    for attr in ("status_code", "status", "code"):
        if getattr(err, attr, None) == 429:
            return True
    message = str(err or "")
    if any(marker in message for marker in _QUOTA_MARKERS):
        return True
    return "quota" in message.lower()


@dataclass
class RetryPolicy:
    """두 분석 경로(레코드/URL)가 공유하는 재시도 정책.

    모든 오류를 같은 백오프로 재시도하고, 시도가 소진되면 마지막 오류가
    일시적(쿼터)이었는지에 따라 `on_quota_exhausted` 또는 `on_failure` 결과를 돌려준다.
    """

    max_attempts: int = ENRICH_MAX_ATTEMPTS
    initial_delay_sec: float = ENRICH_INITIAL_DELAY_SEC
    multiplier: float = ENRICH_BACKOFF_MULTIPLIER
    max_delay_sec: float | None = ENRICH_MAX_DELAY_SEC
    is_transient: Callable[[BaseException], bool] = is_quota_error
    sleep_func: SleepFunc = field(default=time.sleep)
    # 재시도해도 결과가 같은 오류 (예: API 키 미설정): 즉시 on_failure
    fatal_errors: tuple[type[BaseException], ...] = ()

    def delays(self) -> list[float]:
        waits: list[float] = []
        delay = float(self.initial_delay_sec)
        for _ in range(max(1, self.max_attempts) - 1):
            if self.max_delay_sec is not None:
                waits.append(min(delay, self.max_delay_sec))
            else:
                waits.append(delay)
            delay *= self.multiplier
        return waits

    def run(
        self,
        operation: Callable[[], T],
        *,
        on_quota_exhausted: Callable[[BaseException], T],
        on_failure: Callable[[BaseException], T],
        label: str = "",
    ) -> T:
        attempts = max(1, self.max_attempts)
        waits = self.delays()
        for attempt in range(1, attempts + 1):
            try:
                logger.debug("시도 %d/%d %s", attempt, attempts, label)
                return operation()
            except Exception as e:
                if self.fatal_errors and isinstance(e, self.fatal_errors):
                    logger.error("재시도 불가 오류 %s: %s", label, e)
                    return on_failure(e)
                transient = self.is_transient(e)
                if attempt >= attempts:
                    if transient:
                        logger.error("쿼터 초과: %d회 시도 후 중단 %s: %s", attempts, label, e)
                        return on_quota_exhausted(e)
                    logger.error("분석 실패: %d회 시도 후 포기 %s: %s", attempts, label, e)
                    return on_failure(e)
                delay = waits[attempt - 1]
                if transient:
                    logger.warning(
                        "Rate limit 감지, %.1fs 후 재시도 (%d/%d) %s", delay, attempt, attempts, label
                    )
                else:
                    logger.error(
                        "분석 오류, %.1fs 후 재시도 (%d/%d) %s: %s: %s",
                        delay, attempt, attempts, label, type(e).__name__, e,
                    )
                self.sleep_func(delay)

        # range가 비지 않으므로 여기 도달하지 않음
        raise RuntimeError(f"재시도 루프가 결과 없이 종료됨: {label}")
