"""HTTP caching helpers for bookmark companion files."""
import hashlib
import os
from datetime import UTC, datetime
from email.utils import formatdate

from fastapi import Request, Response

# Thumbnails can be replaced by a cache refresh, so clients must revalidate
THUMBNAIL_CACHE_HEADERS = {"Cache-Control": "no-cache, must-revalidate"}
# Archives never change once written
ARCHIVE_CACHE_HEADERS = {"Cache-Control": "public, max-age=31536000"}


def thumbnail_etag(relative_path: str, modified_at: datetime | None) -> str:
    """ETag of a thumbnail: the file path plus the bookmark's modification time."""
    stamp = int(_as_utc(modified_at).timestamp()) if modified_at is not None else 0
    return f'"w/{relative_path}-{stamp}"'


def file_etag(stat: os.stat_result, variant: str = "") -> str:
    """
    Weak ETag derived from a file's mtime and size.

    `variant` distinguishes several resources served out of the same file.
    Uses MD5 for speed - this is fingerprinting, not cryptographic security.
    """
    tag = f"{int(stat.st_mtime):x}-{stat.st_size:x}"
    if variant:
        tag += "-" + hashlib.md5(variant.encode()).hexdigest()[:8]
    return f'W/"{tag}"'


def _as_utc(dt: datetime) -> datetime:
    return dt.replace(tzinfo=UTC) if dt.tzinfo is None else dt


def format_http_date(dt: datetime) -> str:
    """
    Format datetime as HTTP date (RFC 7231).

    Example: "Wed, 15 Jan 2026 10:30:00 GMT"

    Naive datetimes are assumed to be UTC.
    """
    return formatdate(_as_utc(dt).timestamp(), usegmt=True)


def _parse_if_none_match(header_value: str) -> list[str]:
    """
    Parse If-None-Match header value into list of ETags.

    Handles:
    - Single ETag: 'W/"abc123"' -> ['W/"abc123"']
    - Comma-separated: 'W/"abc", W/"def"' -> ['W/"abc"', 'W/"def"']
    - Wildcard: '*' -> ['*']
    """
    if not header_value:
        return []
    if header_value.strip() == "*":
        return ["*"]
    return [etag.strip() for etag in header_value.split(",") if etag.strip()]


def _etag_matches(etag: str, if_none_match_values: list[str]) -> bool:
    """Weak comparison per RFC 7232: `*` matches anything, otherwise exact match."""
    if "*" in if_none_match_values:
        return True
    return etag in if_none_match_values


def check_not_modified(
    request: Request,
    etag: str,
    headers: dict[str, str] | None = None,
) -> Response | None:
    """
    Return a 304 response if the client's If-None-Match matches `etag`.

    Returns None if the request should proceed with a full response.
    """
    if_none_match = request.headers.get("if-none-match")
    if not if_none_match:
        return None
    if not _etag_matches(etag, _parse_if_none_match(if_none_match)):
        return None
    return Response(status_code=304, headers={"ETag": etag, **(headers or {})})
