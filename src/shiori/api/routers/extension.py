"""Endpoints used by the browser extension."""
import asyncio

from fastapi import APIRouter, Body, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from shiori.api.dependencies import get_dependencies, get_writer_session, require_user
from shiori.schemas.bookmark import BookmarkDTO, ExtensionBookmarkRequest, ExtensionDeleteRequest
from shiori.schemas.response import Envelope, ok
from shiori.services import bookmark_service, processing
from shiori.services.exceptions import BookmarkNotFoundError
from shiori.services.url_cleaner import canonicalize_url

router = APIRouter(prefix="/api/bookmarks/ext", tags=["extension"], dependencies=[Depends(require_user)])


@router.post("", response_model=Envelope[BookmarkDTO])
async def save_from_extension(request: Request, data: ExtensionBookmarkRequest) -> dict:
    """
    Save the current tab. If the URL is already stored, the capture is merged
    into the existing bookmark instead of failing.
    """
    bookmark = await processing.ingest_from_extension(get_dependencies(request), data)
    return ok(bookmark)


@router.delete("", response_model=Envelope[None])
async def delete_from_extension(
    request: Request,
    data: ExtensionDeleteRequest = Body(...),
    db: AsyncSession = Depends(get_writer_session),
) -> dict:
    """Delete the bookmark stored for a URL."""
    deps = get_dependencies(request)
    url = canonicalize_url(data.url, deps.settings.tracking_params)
    bookmark = await bookmark_service.get_bookmark(db, url=url, with_content=False)
    if bookmark is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(BookmarkNotFoundError(url=url)),
        )
    await bookmark_service.delete_bookmarks(db, bookmark.id)
    await asyncio.to_thread(deps.storage.remove_bookmark_files, bookmark.id)
    return ok(None)
