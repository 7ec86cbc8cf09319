"""Bookmark endpoints."""
import asyncio
import logging
import math

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from shiori.api.dependencies import (
    get_dependencies,
    get_reader_session,
    get_writer_session,
    require_owner,
    require_user,
)
from shiori.schemas.bookmark import (
    BookmarkCreate,
    BookmarkDeleteRequest,
    BookmarkDTO,
    BookmarkListResponse,
    BookmarkUpdate,
    BulkTagsRequest,
    ReadableResponse,
    UpdateCacheRequest,
    UpdateCacheResponse,
)
from shiori.schemas.response import Envelope, ok
from shiori.schemas.tag import BookmarkTagRequest, TagDTO
from shiori.services import bookmark_service, processing, tag_service
from shiori.services.bookmark_service import GetBookmarksOptions, OrderMethod
from shiori.services.exceptions import (
    BookmarkAlreadyExistsError,
    BookmarkNotFoundError,
    TagNotFoundError,
)
from shiori.services.tag_service import TagListOptions
from shiori.services.url_cleaner import canonicalize_url

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookmarks", tags=["bookmarks"], dependencies=[Depends(require_user)])

PAGE_SIZE = 30


def _split_list(values: list[str]) -> list[str]:
    """Accept both repeated query parameters and comma-separated values."""
    return [item.strip() for value in values for item in value.split(",") if item.strip()]


def _not_found(e: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.get("", response_model=Envelope[BookmarkListResponse])
async def list_bookmarks(
    request: Request,
    keyword: str = Query(default="", description="Matches the URL or full-text title, excerpt and content"),
    tags: list[str] = Query(default=[], description="Bookmarks must carry every tag; `*` means any tag"),
    excluded_tags: list[str] = Query(default=[], description="Bookmarks must carry none of these; `*` means untagged"),
    order: OrderMethod = Query(default=OrderMethod.DEFAULT, description="Sort order"),
    page: int = Query(default=1, ge=1, description="1-based page number"),
    limit: int = Query(default=PAGE_SIZE, ge=1, le=1000, description="Page size"),
    db: AsyncSession = Depends(get_reader_session),
) -> dict:
    """List bookmarks with keyword search, tag filters and pagination."""
    options = GetBookmarksOptions(
        tags=_split_list(tags),
        excluded_tags=_split_list(excluded_tags),
        keyword=keyword,
        order=order,
        limit=limit,
        offset=(page - 1) * limit,
    )
    bookmarks = await bookmark_service.get_bookmarks(db, options)
    total = await bookmark_service.get_bookmarks_count(db, options)

    storage = get_dependencies(request).storage
    return ok(
        BookmarkListResponse(
            bookmarks=[storage.with_file_flags(b) for b in bookmarks],
            total=total,
            page=page,
            max_page=max(1, math.ceil(total / limit)),
        ),
    )


@router.post("", response_model=Envelope[BookmarkDTO], status_code=status.HTTP_201_CREATED)
async def create_bookmark(request: Request, data: BookmarkCreate) -> dict:
    """
    Save a URL.

    The page is fetched and extracted unless `offline` is set. Returns 409 if
    the canonical URL is already stored.
    """
    try:
        bookmark = await processing.create_bookmark(get_dependencies(request), data)
    except BookmarkAlreadyExistsError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    return ok(bookmark)


@router.delete("", response_model=Envelope[list[int]])
async def delete_bookmarks(
    request: Request,
    data: BookmarkDeleteRequest,
    db: AsyncSession = Depends(get_writer_session),
) -> dict:
    """Delete several bookmarks and their companion files. Returns the deleted ids."""
    deleted = await bookmark_service.delete_bookmarks(db, *data.ids)
    if not deleted:
        raise _not_found(BookmarkNotFoundError(data.ids[0]))
    storage = get_dependencies(request).storage
    for bookmark_id in deleted:
        await asyncio.to_thread(storage.remove_bookmark_files, bookmark_id)
    return ok(deleted)


@router.put("/cache", response_model=Envelope[UpdateCacheResponse], dependencies=[Depends(require_owner)])
async def update_cache(request: Request, data: UpdateCacheRequest) -> dict:
    """
    Re-fetch the content of bookmarks, ten at a time.

    Bookmarks that fail are reported in `failures`; the rest are still
    refreshed. Returns 404 if none of the ids exist.
    """
    try:
        result = await processing.update_cache(get_dependencies(request), data)
    except BookmarkNotFoundError as e:
        raise _not_found(e) from e
    return ok(UpdateCacheResponse(bookmarks=result.bookmarks, failures=result.failures))


@router.put("/bulk/tags", response_model=Envelope[None])
async def bulk_update_tags(
    data: BulkTagsRequest,
    db: AsyncSession = Depends(get_writer_session),
) -> dict:
    """
    Add every tag to every bookmark. Applying the same request twice has no
    further effect.

    Returns 404 if any bookmark or tag id is unknown.
    """
    try:
        await bookmark_service.bulk_update_bookmark_tags(db, data.bookmark_ids, data.tag_ids)
    except (BookmarkNotFoundError, TagNotFoundError) as e:
        raise _not_found(e) from e
    return ok(None)


@router.get("/{bookmark_id}", response_model=Envelope[BookmarkDTO])
async def get_bookmark(
    request: Request,
    bookmark_id: int,
    db: AsyncSession = Depends(get_reader_session),
) -> dict:
    """Get a single bookmark (without its content)."""
    bookmark = await bookmark_service.get_bookmark(db, bookmark_id=bookmark_id, with_content=False)
    if bookmark is None:
        raise _not_found(BookmarkNotFoundError(bookmark_id))
    return ok(get_dependencies(request).storage.with_file_flags(bookmark))


def _replace_tags(current: list[TagDTO], names: list[str]) -> list[TagDTO]:
    wanted = set(names)
    known = {tag.name for tag in current}
    return [
        *(tag.model_copy(update={"deleted": tag.name not in wanted}) for tag in current),
        *(TagDTO(name=name) for name in names if name not in known),
    ]


@router.patch("/{bookmark_id}", response_model=Envelope[BookmarkDTO])
async def update_bookmark(
    request: Request,
    bookmark_id: int,
    data: BookmarkUpdate,
    db: AsyncSession = Depends(get_writer_session),
) -> dict:
    """
    Update a bookmark. Only supplied fields change; a supplied tag list
    replaces the current tags.

    Returns 404 if the bookmark doesn't exist.
    Returns 409 if the new URL belongs to another bookmark.
    """
    current = await bookmark_service.get_bookmark(db, bookmark_id=bookmark_id, with_content=True)
    if current is None:
        raise _not_found(BookmarkNotFoundError(bookmark_id))

    deps = get_dependencies(request)
    changes = {
        key: value
        for key, value in data.model_dump(exclude_unset=True).items()
        if value is not None
    }
    tag_names = changes.pop("tags", None)
    if "url" in changes:
        changes["url"] = canonicalize_url(changes["url"], deps.settings.tracking_params)

    updated = current.model_copy(update=changes)
    updated.title = processing.clean_title(updated.title, updated.url)
    if tag_names is not None:
        updated.tags = _replace_tags(current.tags, tag_names)

    try:
        (saved,) = await bookmark_service.save_bookmarks(db, False, updated)
    except BookmarkAlreadyExistsError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    return ok(deps.storage.with_file_flags(saved.model_copy(update={"content": "", "html": ""})))


@router.delete("/{bookmark_id}", response_model=Envelope[list[int]])
async def delete_bookmark(
    request: Request,
    bookmark_id: int,
    db: AsyncSession = Depends(get_writer_session),
) -> dict:
    """Delete a bookmark and its companion files."""
    deleted = await bookmark_service.delete_bookmarks(db, bookmark_id)
    if not deleted:
        raise _not_found(BookmarkNotFoundError(bookmark_id))
    await asyncio.to_thread(get_dependencies(request).storage.remove_bookmark_files, bookmark_id)
    return ok(deleted)


@router.get("/{bookmark_id}/readable", response_model=Envelope[ReadableResponse])
async def get_readable(
    bookmark_id: int,
    db: AsyncSession = Depends(get_reader_session),
) -> dict:
    """Readable text and HTML of a bookmark."""
    bookmark = await bookmark_service.get_bookmark(db, bookmark_id=bookmark_id, with_content=True)
    if bookmark is None:
        raise _not_found(BookmarkNotFoundError(bookmark_id))
    return ok(ReadableResponse(content=bookmark.content, html=bookmark.html))


@router.get("/{bookmark_id}/tags", response_model=Envelope[list[TagDTO]])
async def get_bookmark_tags(
    bookmark_id: int,
    db: AsyncSession = Depends(get_reader_session),
) -> dict:
    """Tags of one bookmark, ordered by name."""
    if not await bookmark_service.bookmark_exists(db, bookmark_id):
        raise _not_found(BookmarkNotFoundError(bookmark_id))
    tags = await tag_service.get_tags(
        db, TagListOptions(bookmark_id=bookmark_id, order_by_name=True),
    )
    return ok(tags)


@router.post("/{bookmark_id}/tags", response_model=Envelope[None], dependencies=[Depends(require_owner)])
async def add_bookmark_tag(
    bookmark_id: int,
    data: BookmarkTagRequest,
    db: AsyncSession = Depends(get_writer_session),
) -> dict:
    """Attach a tag to a bookmark. Idempotent."""
    try:
        await tag_service.add_tag_to_bookmark(db, bookmark_id, data.tag_id)
    except (BookmarkNotFoundError, TagNotFoundError) as e:
        raise _not_found(e) from e
    return ok(None)


@router.delete("/{bookmark_id}/tags", response_model=Envelope[None], dependencies=[Depends(require_owner)])
async def remove_bookmark_tag(
    bookmark_id: int,
    data: BookmarkTagRequest = Body(...),
    db: AsyncSession = Depends(get_writer_session),
) -> dict:
    """Detach a tag from a bookmark. Idempotent."""
    try:
        await tag_service.remove_tag_from_bookmark(db, bookmark_id, data.tag_id)
    except (BookmarkNotFoundError, TagNotFoundError) as e:
        raise _not_found(e) from e
    return ok(None)
