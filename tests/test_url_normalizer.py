from __future__ import annotations

from email_intelligence.processing.dedupe import DedupIndex, decode_json_list, normalize_url, normalize_urls


def test_social_post_aliases_collapse_to_primary_host() -> None:
    a = normalize_url("https://twitter.com/user/status/123?x=1")
    b = normalize_url("https://x.com/user/status/123?y=2")
    assert a == b == "https://x.com/user/status/123"


def test_social_post_match_is_case_insensitive() -> None:
    assert normalize_url("HTTPS://Twitter.com/someone/status/9#top") == "https://x.com/someone/status/9"


def test_only_known_social_hosts_collapse() -> None:
    assert normalize_url("https://nottwitter.com/u/status/1") == "https://nottwitter.com/u/status/1"


def test_tracking_params_are_stripped() -> None:
    assert normalize_url("https://github.com/a/b?utm_source=x&ref=y") == "https://github.com/a/b"


def test_other_query_params_survive() -> None:
    assert normalize_url("https://example.com/p?id=5&utm_medium=mail") == "https://example.com/p?id=5"


def test_fragment_dropped_when_no_query_left() -> None:
    assert normalize_url("https://example.com/p?t=10#frag") == "https://example.com/p"


def test_unparseable_and_non_string_inputs_are_returned_unchanged() -> None:
    assert normalize_url("not a url") == "not a url"
    assert normalize_url("/relative/path") == "/relative/path"
    assert normalize_url("") == ""
    assert normalize_url(None) is None
    assert normalize_url(42) == 42


def test_normalization_is_idempotent() -> None:
    samples = [
        "https://twitter.com/u/status/1?s=20",
        "https://github.com/a/b?utm_source=x&ref=y",
        "https://example.com/search?q=a+b&utm_campaign=c",
        "https://example.com/p?flag",
        "https://example.com/p?path=%2Fa%2Fb&t=3",
        "http://example.com",
        "mailto:someone@example.com",
        "garbage",
    ]
    for url in samples:
        once = normalize_url(url)
        assert normalize_url(once) == once


def test_normalize_urls_filters_falsy_and_rejects_non_lists() -> None:
    assert normalize_urls("https://a.com") == []
    assert normalize_urls(None) == []
    assert normalize_urls(["", None, "https://a.com/?t=1"]) == ["https://a.com/"]


def test_decode_json_list_falls_back_to_empty() -> None:
    assert decode_json_list('["a", " b ", ""]') == ["a", "b"]
    assert decode_json_list("{not json") == []
    assert decode_json_list('{"a": 1}') == []
    assert decode_json_list(None) == []


def _build_index() -> DedupIndex:
    return DedupIndex.from_rows(
        [
            {"fileName": "a.eml", "urls": '["https://twitter.com/u/status/1?s=20"]'},
            {"fileName": "b.eml", "urls": "not json"},
        ]
    )


def test_dedup_index_url_match_wins_over_source_name() -> None:
    index = _build_index()
    reason = index.find_duplicate("a.eml", ["https://x.com/u/status/1"])
    assert reason is not None and reason.startswith("URL")


def test_dedup_index_detects_normalized_url_under_new_name() -> None:
    index = _build_index()
    assert index.find_duplicate("new.eml", ["https://x.com/u/status/1"]) is not None
    assert index.contains_url("https://twitter.com/u/status/1")


def test_dedup_index_source_name_and_misses() -> None:
    index = _build_index()
    reason = index.find_duplicate("b.eml", ["https://other.example.com/x"])
    assert reason is not None and "b.eml" in reason
    assert index.find_duplicate("c.eml", ["https://other.example.com/x"]) is None


def test_dedup_index_incremental_add() -> None:
    index = DedupIndex()
    assert index.find_duplicate("x.eml", ["https://a.com/p?utm_source=n"]) is None
    index.add("x.eml", ["https://a.com/p?utm_source=n"])
    assert index.find_duplicate("y.eml", ["https://a.com/p"]) is not None
    assert index.contains_source("x.eml")
    assert len(index) == 1
