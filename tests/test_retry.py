from __future__ import annotations

import pytest

from email_intelligence.processing.llm_client import GeminiConfigError, GeminiRequestError
from email_intelligence.processing.retry import RetryPolicy, is_quota_error


def _policy(sleeps: list[float], **kwargs) -> RetryPolicy:
    params = {
        "max_attempts": 5,
        "initial_delay_sec": 10,
        "multiplier": 1.5,
        "max_delay_sec": None,
        "sleep_func": sleeps.append,
    }
    params.update(kwargs)
    return RetryPolicy(**params)


def _always_raise(err: Exception, calls: list[int]):
    def _op():
        calls.append(1)
        raise err

    return _op


def test_default_backoff_schedule() -> None:
    assert _policy([]).delays() == [10, 15, 22.5, 33.75]


def test_backoff_respects_max_delay() -> None:
    assert _policy([], max_delay_sec=20).delays() == [10, 15, 20, 20]


def test_single_attempt_has_no_waits() -> None:
    assert _policy([], max_attempts=1).delays() == []


def test_recovers_after_transient_errors() -> None:
    sleeps: list[float] = []
    outcomes = [GeminiRequestError(429, "429 RESOURCE_EXHAUSTED"), GeminiRequestError(429, "busy"), "ok"]

    def _op():
        item = outcomes.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    result = _policy(sleeps).run(_op, on_quota_exhausted=lambda e: "quota", on_failure=lambda e: "failure")
    assert result == "ok"
    assert sleeps == [10, 15]


def test_exhausted_quota_returns_quota_outcome() -> None:
    sleeps: list[float] = []
    calls: list[int] = []
    result = _policy(sleeps).run(
        _always_raise(RuntimeError("429 RESOURCE_EXHAUSTED"), calls),
        on_quota_exhausted=lambda e: "quota",
        on_failure=lambda e: "failure",
    )
    assert result == "quota"
    assert len(calls) == 5
    assert sleeps == [10, 15, 22.5, 33.75]


def test_non_transient_errors_are_retried_then_fail() -> None:
    sleeps: list[float] = []
    calls: list[int] = []
    seen: list[BaseException] = []

    def _on_failure(err: BaseException) -> str:
        seen.append(err)
        return "failure"

    result = _policy(sleeps, max_attempts=3).run(
        _always_raise(ValueError("boom"), calls),
        on_quota_exhausted=lambda e: "quota",
        on_failure=_on_failure,
    )
    assert result == "failure"
    assert len(calls) == 3
    assert sleeps == [10, 15]
    assert isinstance(seen[0], ValueError)


def test_last_error_decides_outcome() -> None:
    errors = [RuntimeError("quota exceeded"), ValueError("bad payload")]

    def _op():
        raise errors.pop(0)

    result = _policy([], max_attempts=2).run(
        _op, on_quota_exhausted=lambda e: "quota", on_failure=lambda e: "failure"
    )
    assert result == "failure"


def test_fatal_errors_fail_without_retry() -> None:
    sleeps: list[float] = []
    calls: list[int] = []
    result = _policy(sleeps, fatal_errors=(GeminiConfigError,)).run(
        _always_raise(GeminiConfigError("missing key"), calls),
        on_quota_exhausted=lambda e: "quota",
        on_failure=lambda e: "failure",
    )
    assert result == "failure"
    assert calls == [1]
    assert sleeps == []


@pytest.mark.parametrize(
    "err, expected",
    [
        (GeminiRequestError(429, "too many"), True),
        (RuntimeError("Quota exceeded for project"), True),
        (RuntimeError("status RESOURCE_EXHAUSTED"), True),
        (RuntimeError("HTTP 429"), True),
        (GeminiRequestError(500, "500 internal"), False),
        (ValueError("bad json"), False),
    ],
)
def test_is_quota_error(err: Exception, expected: bool) -> None:
    assert is_quota_error(err) is expected


def test_zero_attempts_still_runs_once_and_reports_outcome() -> None:
    calls: list[int] = []
    result = _policy([], max_attempts=0).run(
        _always_raise(RuntimeError("429 RESOURCE_EXHAUSTED"), calls),
        on_quota_exhausted=lambda e: "quota",
        on_failure=lambda e: "failure",
    )
    assert result == "quota"
    assert calls == [1]
