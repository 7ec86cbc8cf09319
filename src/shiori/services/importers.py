"""Netscape bookmark files and Pocket CSV exports."""
import csv
import html
import io
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from bs4 import BeautifulSoup

from shiori.core.dependencies import Dependencies
from shiori.schemas.bookmark import BookmarkCreate, BookmarkDTO
from shiori.services.exceptions import AlreadyExistsError, ValidationError
from shiori.services.processing import create_bookmark

logger = logging.getLogger(__name__)


@dataclass
class ImportRecord:
    """One bookmark read from an export file."""

    url: str
    title: str = ""
    excerpt: str = ""
    tags: list[str] = field(default_factory=list)


@dataclass
class ImportResult:
    """Outcome of an import run."""

    imported: list[BookmarkDTO] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)


def _split_tags(raw: str, separator: str) -> list[str]:
    return [tag.strip() for tag in raw.split(separator) if tag.strip()]


def parse_netscape(document: str) -> list[ImportRecord]:
    """
    Parse a Netscape bookmark file (the format browsers export).

    Tags come from the `TAGS` attribute (comma separated) and the excerpt
    from the `<DD>` that follows an entry.
    """
    soup = BeautifulSoup(document, "lxml")
    records = []
    for anchor in soup.find_all("a", href=True):
        url = anchor["href"].strip()
        if not url:
            continue

        excerpt = ""
        following = anchor.find_next(["dt", "dd"])
        if following is not None and following.name == "dd":
            # Unclosed <DT>s nest later entries inside the <DD>; only its own text counts
            excerpt = "".join(following.find_all(string=True, recursive=False)).strip()

        records.append(
            ImportRecord(
                url=url,
                title=anchor.get_text(strip=True),
                excerpt=excerpt,
                tags=_split_tags(anchor.get("tags", ""), ","),
            ),
        )
    return records


def parse_pocket_csv(document: str) -> list[ImportRecord]:
    """
    Parse a Pocket CSV export (`title,url,time_added,tags,status`).

    Pocket separates tags with `|`.
    """
    reader = csv.DictReader(io.StringIO(document))
    records = []
    for row in reader:
        url = (row.get("url") or "").strip()
        if not url:
            continue
        title = (row.get("title") or "").strip()
        records.append(
            ImportRecord(
                url=url,
                # Pocket writes the URL as title for untitled items
                title="" if title == url else title,
                tags=_split_tags(row.get("tags") or "", "|"),
            ),
        )
    return records


async def import_records(
    deps: Dependencies,
    records: Iterable[ImportRecord],
    offline: bool = True,
) -> ImportResult:
    """
    Store imported records through the ingestion pipeline.

    Args:
        deps: Process dependencies.
        records: Parsed records.
        offline: Skip fetching pages and keep only the fields in the file.

    Returns:
        Imported bookmarks, URLs skipped because they already exist, and
        URLs that failed with their error.
    """
    result = ImportResult()
    for record in records:
        try:
            request = BookmarkCreate(
                url=record.url,
                title=record.title,
                excerpt=record.excerpt,
                tags=record.tags,
                offline=offline,
            )
            bookmark = await create_bookmark(deps, request)
        except AlreadyExistsError:
            result.skipped.append(record.url)
            continue
        except (ValidationError, ValueError) as e:
            logger.warning("Skipping %s: %s", record.url, e)
            result.failed[record.url] = str(e)
            continue
        result.imported.append(bookmark)

    logger.info(
        "Imported %d bookmark(s), %d already existed, %d failed",
        len(result.imported), len(result.skipped), len(result.failed),
    )
    return result


def _timestamp(value: datetime | None) -> str:
    if value is None:
        return "0"
    # Stored timestamps are naive UTC
    return str(int(value.replace(tzinfo=UTC).timestamp()))


def export_netscape(bookmarks: Iterable[BookmarkDTO]) -> str:
    """Render bookmarks as a Netscape bookmark file."""
    lines = [
        "<!DOCTYPE NETSCAPE-Bookmark-file-1>",
        '<META HTTP-EQUIV="Content-Type" CONTENT="text/html; charset=UTF-8">',
        "<TITLE>Bookmarks</TITLE>",
        "<H1>Bookmarks</H1>",
        "<DL><p>",
    ]
    for bookmark in bookmarks:
        tags = ",".join(tag.name for tag in bookmark.tags)
        lines.append(
            f'    <DT><A HREF="{html.escape(bookmark.url, quote=True)}" '
            f'ADD_DATE="{_timestamp(bookmark.created_at)}" '
            f'LAST_MODIFIED="{_timestamp(bookmark.modified_at)}" '
            f'TAGS="{html.escape(tags, quote=True)}">{html.escape(bookmark.title)}</A>',
        )
        if bookmark.excerpt:
            lines.append(f"    <DD>{html.escape(bookmark.excerpt)}")
    lines.append("</DL><p>")
    return "\n".join(lines) + "\n"
