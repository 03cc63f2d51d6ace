from __future__ import annotations

from typing import NotRequired, TypedDict


class ExtractedRecord(TypedDict):
    sourceName: str
    rawDate: str
    rawSubject: str
    bodyText: str


class AnalysisResult(TypedDict):
    topic: str
    tags: list[str]
    summaryHtml: str
    urls: list[str]
    normalizedDate: str
    validationWarnings: NotRequired[list[str]]


class NewRecord(TypedDict):
    sourceName: str
    sentAt: str
    topic: str
    tags: list[str]
    summaryHtml: str
    urls: list[str]
    status: str
    errorMessage: NotRequired[str]


class StoredRecord(TypedDict):
    id: str
    sourceName: str
    sentAt: str
    topic: str
    tags: list[str]
    summaryHtml: str
    urls: list[str]
    status: str
    errorMessage: NotRequired[str]
