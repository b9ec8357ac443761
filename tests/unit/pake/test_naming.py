"""Unit tests for project folder naming patterns."""

import datetime

from pakeforge.pake.naming import (
    PatternToken,
    format_pattern,
    parse_pattern,
    resolve_name,
    resolve_pattern,
)

NOW = datetime.datetime(2024, 3, 5, 9, 7, 3)


def test_date_tokens_are_zero_padded() -> None:
    resolved = resolve_name(["year", "month", "day"], now=NOW)
    assert resolved.value == "2024-03-05"
    assert not resolved.implicit_timestamp


def test_tokens_are_ordered_canonically() -> None:
    resolved = resolve_name([PatternToken.DAY, PatternToken.NAME, PatternToken.YEAR], now=NOW, name="app")
    assert resolved.value == "app-2024-05"
    assert resolved.tokens == (PatternToken.NAME, PatternToken.YEAR, PatternToken.DAY)
    assert resolved.pattern == "{name}-{year}-{day}"


def test_time_token() -> None:
    assert resolve_name(["time"], now=NOW).value == "09:07:03"


def test_name_token_without_name_keeps_placeholder() -> None:
    assert resolve_name(["name"], now=NOW).value == "{name}"


def test_empty_selection_falls_back_to_timestamp() -> None:
    resolved = resolve_name([], now=NOW)
    assert resolved.implicit_timestamp
    assert resolved.tokens == (PatternToken.TIMESTAMP,)
    assert resolved.value == str(int(NOW.timestamp() * 1000))


def test_parse_pattern_ignores_unknown_placeholders() -> None:
    assert parse_pattern("{timestamp}-{name}-{bogus}") == (PatternToken.NAME, PatternToken.TIMESTAMP)
    assert parse_pattern("") == ()


def test_format_pattern() -> None:
    assert format_pattern(["timestamp", "name"]).value == "{name}-{timestamp}"
    fallback = format_pattern([])
    assert fallback.value == "{timestamp}"
    assert fallback.implicit_timestamp


def test_resolve_pattern() -> None:
    assert resolve_pattern("{name}-{year}", now=NOW, name="demo").value == "demo-2024"
    assert resolve_pattern("no tokens here", now=NOW).implicit_timestamp
