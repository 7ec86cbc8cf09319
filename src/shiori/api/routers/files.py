"""
Bookmark companion files: reader page, archive, thumbnail and ebook.

Public bookmarks are readable anonymously; private ones need a login.
"""
import asyncio
import logging
from urllib.parse import urljoin

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import FileResponse, HTMLResponse
from jinja2 import Environment, select_autoescape
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.types import Receive, Scope, Send

from shiori.api.dependencies import get_current_account, get_dependencies, get_reader_session
from shiori.core.http_cache import (
    ARCHIVE_CACHE_HEADERS,
    THUMBNAIL_CACHE_HEADERS,
    check_not_modified,
    file_etag,
    format_http_date,
    thumbnail_etag,
)
from shiori.models.bookmark import ARCHIVER_PDF
from shiori.schemas.account import AccountDTO
from shiori.schemas.bookmark import BookmarkDTO
from shiori.services import bookmark_service
from shiori.services.archiver import ArchiveError, read_warc_record
from shiori.services.storage import archive_path, ebook_path, thumbnail_path

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookmark/{bookmark_id}", tags=["files"])

_jinja_env = Environment(autoescape=select_autoescape(default=True))

READER_TEMPLATE = _jinja_env.from_string(
    """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>{{ bookmark.title }}</title>
</head>
<body>
<article>
<header>
<h1>{{ bookmark.title }}</h1>
<p><a href="{{ bookmark.url }}">{{ bookmark.url }}</a>{% if bookmark.author %} · {{ bookmark.author }}{% endif %}</p>
{% if bookmark.has_archive %}<p><a href="archive">Archive</a></p>{% endif %}
</header>
{% if bookmark.html %}{{ bookmark.html | safe }}{% else %}{% for paragraph in paragraphs %}<p>{{ paragraph }}</p>
{% endfor %}{% endif %}
</article>
</body>
</html>
""",
)

_IMAGE_SIGNATURES = (
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
)


class QuietFileResponse(FileResponse):
    """FileResponse that ignores clients hanging up mid-transfer."""

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.debug("Client went away while sending %s: %s", self.path, e)


def _image_type(header: bytes) -> str:
    for signature, media_type in _IMAGE_SIGNATURES:
        if header.startswith(signature):
            return media_type
    if header[:4] == b"RIFF" and header[8:12] == b"WEBP":
        return "image/webp"
    return "application/octet-stream"


async def get_visible_bookmark(
    bookmark_id: int,
    account: AccountDTO | None = Depends(get_current_account),
    db: AsyncSession = Depends(get_reader_session),
) -> BookmarkDTO:
    """
    Load a bookmark the caller may see.

    Raises:
        HTTPException: 404 if it doesn't exist, 401 if it is private and the
            caller is anonymous.
    """
    bookmark = await bookmark_service.get_bookmark(db, bookmark_id=bookmark_id, with_content=True)
    if bookmark is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Bookmark not found")
    if not bookmark.public and account is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return bookmark


@router.get("/content", response_class=HTMLResponse)
async def reader_page(
    request: Request,
    bookmark: BookmarkDTO = Depends(get_visible_bookmark),
) -> HTMLResponse:
    """Server-rendered reader view of the stored content."""
    deps = get_dependencies(request)
    if not deps.settings.http_serve_web_ui:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")
    bookmark = deps.storage.with_file_flags(bookmark)
    paragraphs = [p.strip() for p in bookmark.content.split("\n") if p.strip()]
    return HTMLResponse(READER_TEMPLATE.render(bookmark=bookmark, paragraphs=paragraphs))


def _missing(what: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{what} not found")


async def _archive_response(
    request: Request,
    bookmark: BookmarkDTO,
    target_url: str | None,
) -> Response:
    storage = get_dependencies(request).storage
    relative = bookmark.archive_path or archive_path(bookmark.id)
    if not storage.file_exists(relative):
        raise _missing("Archive")

    stat = storage.stat(relative)
    etag = file_etag(stat, target_url or "")
    cached = check_not_modified(request, etag, ARCHIVE_CACHE_HEADERS)
    if cached is not None:
        return cached

    headers = {"ETag": etag, **ARCHIVE_CACHE_HEADERS}
    if bookmark.archiver == ARCHIVER_PDF:
        if target_url is not None:
            raise _missing("Archive file")
        return QuietFileResponse(storage.path(relative), media_type="application/pdf", headers=headers)

    try:
        resource = await asyncio.to_thread(read_warc_record, storage.path(relative), target_url)
    except ArchiveError as e:
        logger.warning("Bookmark %d: %s", bookmark.id, e)
        raise _missing("Archive") from e
    if resource is None:
        raise _missing("Archive file")
    return Response(content=resource.body, media_type=resource.content_type, headers=headers)


@router.get("/archive")
async def archive(
    request: Request,
    bookmark: BookmarkDTO = Depends(get_visible_bookmark),
) -> Response:
    """The archived page as it was fetched."""
    return await _archive_response(request, bookmark, None)


@router.get("/archive/file/{path:path}")
async def archive_file(
    request: Request,
    path: str,
    bookmark: BookmarkDTO = Depends(get_visible_bookmark),
) -> Response:
    """One resource stored in the archive, addressed relative to the page URL."""
    target = path if path.startswith(("http://", "https://")) else urljoin(bookmark.url, path)
    if request.url.query:
        target = f"{target}?{request.url.query}"
    return await _archive_response(request, bookmark, target)


@router.get("/thumb")
async def thumbnail(
    request: Request,
    bookmark: BookmarkDTO = Depends(get_visible_bookmark),
) -> Response:
    """Thumbnail image; revalidated on every use via its ETag."""
    storage = get_dependencies(request).storage
    relative = thumbnail_path(bookmark.id)
    if not storage.file_exists(relative):
        raise _missing("Thumbnail")

    etag = thumbnail_etag(relative, bookmark.modified_at)
    cached = check_not_modified(request, etag, THUMBNAIL_CACHE_HEADERS)
    if cached is not None:
        return cached

    path = storage.path(relative)
    with path.open("rb") as f:
        media_type = _image_type(f.read(12))
    headers = {"ETag": etag, **THUMBNAIL_CACHE_HEADERS}
    if bookmark.modified_at is not None:
        headers["Last-Modified"] = format_http_date(bookmark.modified_at)
    return QuietFileResponse(path, media_type=media_type, headers=headers)


@router.get("/ebook")
async def ebook(
    request: Request,
    bookmark: BookmarkDTO = Depends(get_visible_bookmark),
) -> Response:
    """The generated EPUB, as a download named after the bookmark title."""
    storage = get_dependencies(request).storage
    relative = ebook_path(bookmark.id)
    if not storage.file_exists(relative):
        raise _missing("Ebook")
    return QuietFileResponse(
        storage.path(relative),
        media_type="application/epub+zip",
        filename=f"{bookmark.title}.epub",
    )
