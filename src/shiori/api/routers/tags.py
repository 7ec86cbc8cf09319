"""Tag management endpoints."""
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from shiori.api.dependencies import get_reader_session, get_writer_session, require_owner, require_user
from shiori.schemas.response import Envelope, ok
from shiori.schemas.tag import TagCreate, TagDTO, TagUpdate
from shiori.services import tag_service
from shiori.services.exceptions import TagAlreadyExistsError, TagNotFoundError
from shiori.services.tag_service import TagListOptions

router = APIRouter(prefix="/tags", tags=["tags"], dependencies=[Depends(require_user)])


@router.get("", response_model=Envelope[list[TagDTO]])
async def list_tags(
    with_bookmark_count: bool = Query(default=False, description="Include the number of bookmarks per tag"),
    bookmark_id: int | None = Query(default=None, description="Only tags of this bookmark"),
    order_by: Literal["id", "name"] = Query(default="id", description="Sort field"),
    search: str = Query(default="", description="Case-insensitive substring match on the name"),
    db: AsyncSession = Depends(get_reader_session),
) -> dict:
    """
    List tags.

    `search` and `bookmark_id` cannot be combined (400).
    """
    tags = await tag_service.get_tags(
        db,
        TagListOptions(
            with_bookmark_count=with_bookmark_count,
            bookmark_id=bookmark_id,
            order_by_name=order_by == "name",
            search=search,
        ),
    )
    return ok(tags)


@router.post(
    "",
    response_model=Envelope[TagDTO],
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_owner)],
)
async def create_tag(
    data: TagCreate,
    db: AsyncSession = Depends(get_writer_session),
) -> dict:
    """Create a tag. Creating an existing name returns the existing tag."""
    (tag,) = await tag_service.create_tags(db, data.name)
    return ok(tag)


@router.get("/{tag_id}", response_model=Envelope[TagDTO])
async def get_tag(
    tag_id: int,
    db: AsyncSession = Depends(get_reader_session),
) -> dict:
    """Get a tag with its bookmark count."""
    try:
        tag = await tag_service.get_tag(db, tag_id)
    except TagNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    return ok(tag)


@router.patch("/{tag_id}", response_model=Envelope[TagDTO], dependencies=[Depends(require_owner)])
async def rename_tag(
    tag_id: int,
    data: TagUpdate,
    db: AsyncSession = Depends(get_writer_session),
) -> dict:
    """
    Rename a tag.

    Returns 404 if the tag doesn't exist.
    Returns 409 if a tag with the new name already exists.
    """
    try:
        tag = await tag_service.rename_tag(db, tag_id, data.name)
    except TagNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except TagAlreadyExistsError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    return ok(tag)


@router.delete("/{tag_id}", response_model=Envelope[None], dependencies=[Depends(require_owner)])
async def delete_tag(
    tag_id: int,
    db: AsyncSession = Depends(get_writer_session),
) -> dict:
    """Delete a tag and remove it from every bookmark."""
    try:
        await tag_service.delete_tag(db, tag_id)
    except TagNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    return ok(None)
