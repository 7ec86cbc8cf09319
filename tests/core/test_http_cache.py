"""Tests for HTTP caching helpers."""
import os
from datetime import UTC, datetime
from pathlib import Path

from starlette.requests import Request

from shiori.core.http_cache import (
    _etag_matches,
    _parse_if_none_match,
    check_not_modified,
    file_etag,
    format_http_date,
    thumbnail_etag,
)


def _request(headers: dict[str, str]) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
    }
    return Request(scope)


class TestParseIfNoneMatch:
    """Tests for If-None-Match parsing."""

    def test__parse_if_none_match__single(self) -> None:
        assert _parse_if_none_match('W/"abc"') == ['W/"abc"']

    def test__parse_if_none_match__list(self) -> None:
        assert _parse_if_none_match('W/"abc", "def"') == ['W/"abc"', '"def"']

    def test__parse_if_none_match__wildcard(self) -> None:
        assert _parse_if_none_match(" * ") == ["*"]

    def test__parse_if_none_match__empty(self) -> None:
        assert _parse_if_none_match("") == []

    def test__etag_matches__wildcard_matches_anything(self) -> None:
        assert _etag_matches('"x"', ["*"])
        assert not _etag_matches('"x"', ['"y"'])


class TestEtags:
    """ETag construction."""

    def test__thumbnail_etag__path_and_modified_time(self) -> None:
        modified = datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)
        etag = thumbnail_etag("thumb/7", modified)
        assert etag == f'"w/thumb/7-{int(modified.timestamp())}"'

    def test__thumbnail_etag__naive_datetime_is_utc(self) -> None:
        aware = datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)
        naive = aware.replace(tzinfo=None)
        assert thumbnail_etag("thumb/1", naive) == thumbnail_etag("thumb/1", aware)

    def test__file_etag__changes_with_variant(self, tmp_path: Path) -> None:
        path = tmp_path / "archive"
        path.write_bytes(b"data")
        stat = os.stat(path)
        plain = file_etag(stat)
        assert plain.startswith('W/"')
        assert file_etag(stat, "https://example.com/a.css") != plain
        assert file_etag(stat, "https://example.com/a.css") == file_etag(stat, "https://example.com/a.css")

    def test__format_http_date(self) -> None:
        value = datetime(2026, 1, 15, 10, 30, 0, tzinfo=UTC)
        assert format_http_date(value) == "Thu, 15 Jan 2026 10:30:00 GMT"


class TestCheckNotModified:
    """Conditional request handling."""

    def test__check_not_modified__matching_etag_returns_304(self) -> None:
        response = check_not_modified(
            _request({"If-None-Match": '"w/thumb/1-10"'}),
            '"w/thumb/1-10"',
            {"Cache-Control": "no-cache, must-revalidate"},
        )
        assert response is not None
        assert response.status_code == 304
        assert response.headers["etag"] == '"w/thumb/1-10"'
        assert response.headers["cache-control"] == "no-cache, must-revalidate"

    def test__check_not_modified__different_etag_proceeds(self) -> None:
        assert check_not_modified(_request({"If-None-Match": '"other"'}), '"w/thumb/1-10"') is None

    def test__check_not_modified__no_header_proceeds(self) -> None:
        assert check_not_modified(_request({}), '"w/thumb/1-10"') is None
