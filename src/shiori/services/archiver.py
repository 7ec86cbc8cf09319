"""WARC archives of fetched pages."""
import logging
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path

from warcio.archiveiterator import ArchiveIterator
from warcio.exceptions import ArchiveLoadFailed
from warcio.statusandheaders import StatusAndHeaders
from warcio.warcwriter import WARCWriter

from shiori import __version__
from shiori.services.url_scraper import FetchResult

logger = logging.getLogger(__name__)

# The stored payload is already decoded, so these would misdescribe it
_DROPPED_HEADERS = frozenset({"content-encoding", "transfer-encoding", "content-length"})


class ArchiveError(Exception):
    """Raised when an archive cannot be written or read."""


@dataclass
class ArchivedResource:
    """One HTTP response stored in an archive."""

    url: str
    content_type: str
    body: bytes


def _http_headers(fetch: FetchResult, body: bytes) -> StatusAndHeaders:
    headers = [
        (name, value)
        for name, value in fetch.headers
        if name.lower() not in _DROPPED_HEADERS
    ]
    headers.append(("Content-Length", str(len(body))))
    status = f"{fetch.status_code or 200} {fetch.reason_phrase or 'OK'}"
    return StatusAndHeaders(status, headers, protocol="HTTP/1.1")


def write_warc(destination: Path, url: str, fetch: FetchResult) -> None:
    """
    Write a gzip WARC file with a warcinfo record and the page response.

    Raises:
        ArchiveError: If the fetch carries no body.
    """
    if fetch.content is None:
        raise ArchiveError(f"Nothing to archive for {url}")

    body = fetch.content
    with destination.open("wb") as output:
        writer = WARCWriter(output, gzip=True)
        info = writer.create_warcinfo_record(
            destination.name,
            {"software": f"shiori/{__version__}", "format": "WARC File Format 1.1"},
        )
        writer.write_record(info)

        record = writer.create_warc_record(
            fetch.final_url or url,
            "response",
            payload=BytesIO(body),
            http_headers=_http_headers(fetch, body),
        )
        writer.write_record(record)


def read_warc_record(path: Path, url: str | None = None) -> ArchivedResource | None:
    """
    Read a response record from an archive.

    Args:
        path: Archive file.
        url: Target URI to look up. The first response record is returned
            when omitted.

    Returns:
        The resource, or None if no record matches.

    Raises:
        ArchiveError: If the file is not a readable WARC archive.
    """
    try:
        with path.open("rb") as stream:
            for record in ArchiveIterator(stream):
                if record.rec_type != "response":
                    continue
                target = record.rec_headers.get_header("WARC-Target-URI") or ""
                if url is not None and target != url:
                    continue
                content_type = ""
                if record.http_headers is not None:
                    content_type = record.http_headers.get_header("Content-Type") or ""
                return ArchivedResource(
                    url=target,
                    content_type=content_type or "application/octet-stream",
                    body=record.content_stream().read(),
                )
    except ArchiveLoadFailed as e:
        raise ArchiveError(f"Unreadable archive {path.name}: {e}") from e
    return None
