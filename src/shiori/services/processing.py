"""
Ingestion pipeline: canonicalize, fetch, extract, persist, and build the
companion files of a bookmark.

Fetching and extraction run outside any database transaction; each persist
step opens its own short writer transaction so a slow site never holds the
writer connection.
"""
import asyncio
import logging
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from shiori.core.dependencies import Dependencies
from shiori.models.bookmark import ARCHIVER_PDF, ARCHIVER_WARC
from shiori.schemas.bookmark import (
    BookmarkCreate,
    BookmarkDTO,
    ExtensionBookmarkRequest,
    UpdateCacheFailure,
    UpdateCacheRequest,
)
from shiori.schemas.tag import TagDTO
from shiori.services import bookmark_service
from shiori.services.archiver import ArchiveError, write_warc
from shiori.services.bookmark_service import GetBookmarksOptions
from shiori.services.ebook import EbookError, write_epub
from shiori.services.exceptions import BookmarkAlreadyExistsError, BookmarkNotFoundError
from shiori.services.storage import archive_path, ebook_path, thumbnail_path
from shiori.services.url_cleaner import canonicalize_url
from shiori.services.url_scraper import (
    ExtractedPage,
    FetchResult,
    download_image,
    extract_page,
    fetch_url,
)

logger = logging.getLogger(__name__)

# In-flight fetch+extract operations during a bulk cache refresh
UPDATE_CACHE_CONCURRENCY = 10


class FetchError(Exception):
    """Raised when a page could not be fetched during a cache refresh."""

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"Failed to fetch {url}: {reason}")


@dataclass
class UpdateCacheResult:
    """Refreshed bookmarks plus the ids that failed and why."""

    bookmarks: list[BookmarkDTO] = field(default_factory=list)
    failures: list[UpdateCacheFailure] = field(default_factory=list)


def clean_title(title: str, url: str) -> str:
    """Drop characters that can't be encoded as UTF-8; fall back to the URL."""
    cleaned = title.encode("utf-8", errors="ignore").decode("utf-8").strip()
    return cleaned or url


def populate_from_page(
    bookmark: BookmarkDTO,
    page: ExtractedPage,
    keep_title: bool,
    keep_excerpt: bool,
) -> BookmarkDTO:
    """
    Fill bookmark fields from an extraction.

    Title and excerpt are overwritten by non-empty extracted values unless
    the matching `keep_*` flag is set and the bookmark already has one.
    Author, content and HTML are replaced whenever the extraction has them.
    """
    update: dict[str, object] = {}
    if page.title and not (keep_title and bookmark.title):
        update["title"] = page.title
    if page.excerpt and not (keep_excerpt and bookmark.excerpt):
        update["excerpt"] = page.excerpt
    if page.byline:
        update["author"] = page.byline
    if page.text_content:
        update["content"] = page.text_content
    if page.content_html:
        update["html"] = page.content_html
    return bookmark.model_copy(update=update)


async def _fetch(deps: Dependencies, url: str) -> FetchResult:
    return await fetch_url(url, timeout=deps.settings.fetch_timeout)


async def _save_thumbnail(deps: Dependencies, bookmark_id: int, image_url: str) -> None:
    image = await download_image(image_url, timeout=deps.settings.fetch_timeout)
    if image is None:
        return
    try:
        await asyncio.to_thread(deps.storage.write_file, thumbnail_path(bookmark_id), image)
    except OSError as e:
        logger.warning("Failed to store thumbnail for bookmark %d: %s", bookmark_id, e)


async def _save_archive(deps: Dependencies, bookmark: BookmarkDTO, fetch: FetchResult) -> BookmarkDTO:
    relative = archive_path(bookmark.id)
    if fetch.is_pdf:
        await asyncio.to_thread(deps.storage.write_file, relative, fetch.content or b"")
        archiver = ARCHIVER_PDF
    else:
        tmp = await asyncio.to_thread(deps.storage.temp_file, ".warc.gz")
        try:
            await asyncio.to_thread(write_warc, tmp, bookmark.url, fetch)
            await asyncio.to_thread(deps.storage.move_file, tmp, relative)
        finally:
            tmp.unlink(missing_ok=True)
        archiver = ARCHIVER_WARC
    return bookmark.model_copy(update={"archiver": archiver, "archive_path": relative})


async def _save_ebook(deps: Dependencies, bookmark: BookmarkDTO) -> None:
    tmp = await asyncio.to_thread(deps.storage.temp_file, ".epub")
    try:
        await asyncio.to_thread(write_epub, tmp, bookmark)
        await asyncio.to_thread(deps.storage.move_file, tmp, ebook_path(bookmark.id))
    finally:
        tmp.unlink(missing_ok=True)


async def build_artifacts(
    deps: Dependencies,
    bookmark: BookmarkDTO,
    fetch: FetchResult | None,
    page: ExtractedPage | None,
    create_archive: bool,
    create_ebook: bool,
) -> BookmarkDTO:
    """
    Download the thumbnail and write the archive and ebook of a saved bookmark.

    Thumbnail failures are logged and ignored. Archive and ebook failures
    propagate.

    Returns:
        The bookmark with `archiver` and `archive_path` updated.

    Raises:
        ArchiveError: If the archive could not be written.
        EbookError: If there is no readable content for the ebook.
        OSError: If a file could not be written.
    """
    if page is not None and page.image_url:
        await _save_thumbnail(deps, bookmark.id, page.image_url)

    if create_archive and fetch is not None and fetch.content:
        bookmark = await _save_archive(deps, bookmark, fetch)

    is_pdf = fetch is not None and fetch.is_pdf
    if create_ebook and not is_pdf:
        await _save_ebook(deps, bookmark)

    return bookmark


async def _persist(deps: Dependencies, create: bool, bookmark: BookmarkDTO) -> BookmarkDTO:
    async def save(db: AsyncSession) -> BookmarkDTO:
        (saved,) = await bookmark_service.save_bookmarks(db, create, bookmark)
        return saved

    return await deps.database.write(save)


async def _finish(
    deps: Dependencies,
    saved: BookmarkDTO,
    fetch: FetchResult | None,
    page: ExtractedPage | None,
    create_archive: bool,
    create_ebook: bool,
) -> BookmarkDTO:
    """Companion files for a newly stored bookmark, then the re-save."""
    try:
        updated = await build_artifacts(deps, saved, fetch, page, create_archive, create_ebook)
    except (ArchiveError, EbookError, OSError) as e:
        logger.warning("Companion files for bookmark %d failed: %s", saved.id, e)
        updated = saved

    if (updated.archiver, updated.archive_path) != (saved.archiver, saved.archive_path):
        updated = await _persist(deps, False, updated)
    return deps.storage.with_file_flags(updated)


async def _fetch_and_extract(
    deps: Dependencies,
    url: str,
) -> tuple[FetchResult | None, ExtractedPage | None]:
    fetch = await _fetch(deps, url)
    if fetch.error:
        logger.warning("Could not fetch %s: %s", url, fetch.error)
        return None, None
    return fetch, await asyncio.to_thread(extract_page, fetch)


async def create_bookmark(deps: Dependencies, request: BookmarkCreate) -> BookmarkDTO:
    """
    Create a bookmark from a URL.

    Unless `offline` is set the page is fetched and extracted; a failed
    fetch still stores the bookmark with the caller's fields.

    Raises:
        InvalidURLError: If the URL has no scheme or host.
        BookmarkAlreadyExistsError: If the canonical URL is already stored.
    """
    url = canonicalize_url(request.url, deps.settings.tracking_params)

    async with deps.database.reader() as db:
        if await bookmark_service.get_bookmark(db, url=url, with_content=False) is not None:
            raise BookmarkAlreadyExistsError(url)

    bookmark = BookmarkDTO(
        url=url,
        title=request.title.strip(),
        excerpt=request.excerpt.strip(),
        public=request.public,
        tags=[TagDTO(name=name) for name in request.tags],
    )

    fetch, page = (None, None) if request.offline else await _fetch_and_extract(deps, url)
    if page is not None:
        bookmark = populate_from_page(bookmark, page, keep_title=True, keep_excerpt=True)
    bookmark = bookmark.model_copy(update={"title": clean_title(bookmark.title, url)})

    saved = await _persist(deps, True, bookmark)
    logger.info("Created bookmark %d for %s", saved.id, url)
    return await _finish(deps, saved, fetch, page, request.create_archive, request.create_ebook)


def _captured_fetch(url: str, html: str) -> FetchResult:
    return FetchResult(
        content=html.encode("utf-8"),
        final_url=url,
        status_code=200,
        content_type="text/html; charset=utf-8",
        error=None,
        headers=[("Content-Type", "text/html; charset=utf-8")],
        reason_phrase="OK",
        charset="utf-8",
    )


async def ingest_from_extension(
    deps: Dependencies,
    request: ExtensionBookmarkRequest,
) -> BookmarkDTO:
    """
    Store a bookmark pushed by the browser extension.

    If the URL is new, this behaves like `create_bookmark` with the captured
    HTML used in place of a fetch. If it already exists, the bookmark is
    merged: tags are unioned, non-empty caller fields win, and captured
    HTML replaces the stored content.

    Raises:
        InvalidURLError: If the URL has no scheme or host.
    """
    url = canonicalize_url(request.url, deps.settings.tracking_params)

    async with deps.database.reader() as db:
        existing = await bookmark_service.get_bookmark(db, url=url, with_content=True)

    if request.html:
        fetch = _captured_fetch(url, request.html)
        page = await asyncio.to_thread(extract_page, fetch)
    else:
        fetch, page = await _fetch_and_extract(deps, url)

    if existing is None:
        bookmark = BookmarkDTO(
            url=url,
            title=request.title.strip(),
            excerpt=request.excerpt.strip(),
            public=request.public,
            tags=[TagDTO(name=name) for name in request.tags],
        )
        if page is not None:
            bookmark = populate_from_page(bookmark, page, keep_title=True, keep_excerpt=True)
        bookmark = bookmark.model_copy(update={"title": clean_title(bookmark.title, url)})
        saved = await _persist(deps, True, bookmark)
        logger.info("Created bookmark %d for %s from the extension", saved.id, url)
        return await _finish(deps, saved, fetch, page, request.create_archive, request.create_ebook)

    known = {tag.name for tag in existing.tags}
    merged = existing.model_copy(
        update={
            "title": request.title.strip() or existing.title,
            "excerpt": request.excerpt.strip() or existing.excerpt,
            "public": request.public or existing.public,
            "tags": [
                *existing.tags,
                *(TagDTO(name=name) for name in request.tags if name not in known),
            ],
        },
    )
    if page is not None and request.html:
        merged = populate_from_page(merged, page, keep_title=True, keep_excerpt=True)
    merged = merged.model_copy(update={"title": clean_title(merged.title, url)})

    saved = await _persist(deps, False, merged)
    logger.info("Merged extension capture into bookmark %d", saved.id)
    return await _finish(deps, saved, fetch, page, request.create_archive, request.create_ebook)


def _has_requested_artifacts(bookmark: BookmarkDTO, request: UpdateCacheRequest) -> bool:
    if request.create_archive and not bookmark.has_archive:
        return False
    if request.create_ebook and not bookmark.has_ebook:
        return False
    return bookmark.has_content


async def refresh_bookmark(
    deps: Dependencies,
    bookmark: BookmarkDTO,
    request: UpdateCacheRequest,
) -> BookmarkDTO:
    """
    Re-fetch one stored bookmark and rebuild its content and files.

    Raises:
        FetchError: If the page could not be fetched.
        ArchiveError: If the archive could not be written.
        EbookError: If the ebook has no content to render.
    """
    bookmark = deps.storage.with_file_flags(bookmark)
    if request.skip_exist and _has_requested_artifacts(bookmark, request):
        logger.debug("Bookmark %d already cached, skipping", bookmark.id)
        return bookmark

    fetch = await _fetch(deps, bookmark.url)
    if fetch.error:
        raise FetchError(bookmark.url, fetch.error)
    page = await asyncio.to_thread(extract_page, fetch)

    updated = populate_from_page(
        bookmark,
        page,
        keep_title=request.keep_metadata,
        keep_excerpt=request.keep_metadata,
    )
    updated = updated.model_copy(update={"title": clean_title(updated.title, updated.url)})
    updated = await build_artifacts(
        deps, updated, fetch, page, request.create_archive, request.create_ebook,
    )
    saved = await _persist(deps, False, updated)
    return deps.storage.with_file_flags(saved)


async def update_cache(deps: Dependencies, request: UpdateCacheRequest) -> UpdateCacheResult:
    """
    Refresh the content of many bookmarks with at most
    `UPDATE_CACHE_CONCURRENCY` fetches in flight.

    A failing bookmark is recorded in `failures` and never aborts the batch.
    Cancelling the caller cancels every in-flight refresh.

    Raises:
        BookmarkNotFoundError: If none of the ids exist.
    """
    async with deps.database.reader() as db:
        bookmarks = await bookmark_service.get_bookmarks(
            db, GetBookmarksOptions(ids=list(request.ids), with_content=True),
        )
    if not bookmarks:
        raise BookmarkNotFoundError(request.ids[0])

    semaphore = asyncio.Semaphore(UPDATE_CACHE_CONCURRENCY)
    lock = asyncio.Lock()
    result = UpdateCacheResult()

    async def worker(bookmark: BookmarkDTO) -> None:
        async with semaphore:
            try:
                refreshed = await refresh_bookmark(deps, bookmark, request)
            except Exception as e:
                logger.warning("Cache refresh of bookmark %d failed: %s", bookmark.id, e)
                async with lock:
                    result.failures.append(UpdateCacheFailure(id=bookmark.id, error=str(e)))
                return
        async with lock:
            result.bookmarks.append(refreshed)

    async with asyncio.TaskGroup() as group:
        for bookmark in bookmarks:
            group.create_task(worker(bookmark))

    order = {bookmark_id: i for i, bookmark_id in enumerate(request.ids)}
    result.bookmarks.sort(key=lambda b: order.get(b.id, len(order)))
    result.failures.sort(key=lambda f: order.get(f.id, len(order)))
    return result
