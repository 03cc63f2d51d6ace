from .common import (
    clean_text,
    clean_text_ws,
    find_urls,
    format_timestamp,
    html_to_text,
    normalize_datetime_string,
    parse_datetime,
    utc_now,
)

__all__ = [
    "clean_text",
    "clean_text_ws",
    "find_urls",
    "format_timestamp",
    "html_to_text",
    "normalize_datetime_string",
    "parse_datetime",
    "utc_now",
]
