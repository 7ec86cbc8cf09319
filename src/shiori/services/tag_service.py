"""Service layer for tag operations and bookmark/tag edges."""
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy import delete, exists, func, insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.expression import ScalarSelect

from shiori.models.bookmark import Bookmark
from shiori.models.tag import Tag, bookmark_tag
from shiori.schemas.tag import TagDTO, normalize_tag_name
from shiori.services.exceptions import (
    BookmarkNotFoundError,
    TagAlreadyExistsError,
    TagNotFoundError,
    ValidationError,
)


@dataclass
class TagListOptions:
    """
    Filters for `get_tags`.

    `search` and `bookmark_id` cannot be combined.
    """

    with_bookmark_count: bool = False
    bookmark_id: int | None = None
    order_by_name: bool = False
    search: str = ""


def normalize_tag_names(names: Iterable[str]) -> list[str]:
    """
    Normalize tag names, dropping duplicates while keeping order.

    Raises:
        ValidationError: If a name is empty after normalization.
    """
    normalized = []
    for name in names:
        try:
            normalized.append(normalize_tag_name(name))
        except ValueError as e:
            raise ValidationError(str(e), {"name": str(e)}) from e
    return list(dict.fromkeys(normalized))


async def get_or_create_tags(
    db: AsyncSession,
    tag_names: Iterable[str],
) -> list[Tag]:
    """
    Get existing tags or create new ones.

    Args:
        db: Database session.
        tag_names: Tag names; normalized before lookup.

    Returns:
        Tag objects in the order of the (deduplicated) input.
    """
    normalized = normalize_tag_names(tag_names)
    if not normalized:
        return []

    result = await db.execute(select(Tag).where(Tag.name.in_(normalized)))
    existing_tags = {tag.name: tag for tag in result.scalars()}

    tags = []
    for name in normalized:
        if name in existing_tags:
            tags.append(existing_tags[name])
        else:
            new_tag = Tag(name=name)
            db.add(new_tag)
            tags.append(new_tag)

    await db.flush()
    return tags


async def create_tags(db: AsyncSession, *tag_names: str) -> list[TagDTO]:
    """Create tags by name. Names that already exist are returned as-is."""
    tags = await get_or_create_tags(db, tag_names)
    return [TagDTO(id=tag.id, name=tag.name) for tag in tags]


async def tag_exists(db: AsyncSession, tag_id: int) -> bool:
    """Check whether a tag id exists."""
    return bool(await db.scalar(select(exists().where(Tag.id == tag_id))))


async def get_tag_by_name(db: AsyncSession, tag_name: str) -> Tag | None:
    """Return the tag with the normalized `tag_name`, if any."""
    try:
        normalized = normalize_tag_name(tag_name)
    except ValueError:
        return None
    return await db.scalar(select(Tag).where(Tag.name == normalized))


def _bookmark_count() -> ScalarSelect[int]:
    return (
        select(func.count(bookmark_tag.c.bookmark_id))
        .where(bookmark_tag.c.tag_id == Tag.id)
        .correlate(Tag)
        .scalar_subquery()
    )


async def get_tag(db: AsyncSession, tag_id: int) -> TagDTO:
    """
    Get a tag by id, including its bookmark count.

    Raises:
        TagNotFoundError: If the tag doesn't exist.
    """
    row = (
        await db.execute(
            select(Tag.id, Tag.name, _bookmark_count().label("bookmark_count"))
            .where(Tag.id == tag_id),
        )
    ).first()
    if row is None:
        raise TagNotFoundError(tag_id)
    return TagDTO(id=row.id, name=row.name, bookmark_count=row.bookmark_count)


async def get_tags(db: AsyncSession, options: TagListOptions | None = None) -> list[TagDTO]:
    """
    List tags.

    Args:
        db: Database session.
        options: Optional count column, bookmark filter, name search and
            ordering. Defaults to all tags ordered by id.

    Raises:
        ValidationError: If `search` is combined with `bookmark_id`.
    """
    options = options or TagListOptions()
    if options.search and options.bookmark_id is not None:
        raise ValidationError(
            "search and bookmark_id cannot be combined",
            {"search": "cannot be combined with bookmark_id"},
        )

    columns = [Tag.id, Tag.name]
    if options.bookmark_id is not None:
        # Filtered by bookmark: the count needs its own correlated subquery
        if options.with_bookmark_count:
            columns.append(_bookmark_count().label("bookmark_count"))
        stmt = (
            select(*columns)
            .join(bookmark_tag, bookmark_tag.c.tag_id == Tag.id)
            .where(bookmark_tag.c.bookmark_id == options.bookmark_id)
        )
    elif options.with_bookmark_count:
        columns.append(func.count(bookmark_tag.c.bookmark_id).label("bookmark_count"))
        stmt = (
            select(*columns)
            .outerjoin(bookmark_tag, bookmark_tag.c.tag_id == Tag.id)
            .group_by(Tag.id, Tag.name)
        )
    else:
        stmt = select(*columns)

    if options.search:
        stmt = stmt.where(
            func.lower(Tag.name).contains(options.search.strip().lower(), autoescape=True),
        )

    stmt = stmt.order_by(Tag.name.asc() if options.order_by_name else Tag.id.asc())

    result = await db.execute(stmt)
    return [
        TagDTO(
            id=row.id,
            name=row.name,
            bookmark_count=row.bookmark_count if options.with_bookmark_count else None,
        )
        for row in result
    ]


async def rename_tag(db: AsyncSession, tag_id: int, new_name: str) -> TagDTO:
    """
    Rename a tag.

    Raises:
        TagNotFoundError: If the tag doesn't exist.
        TagAlreadyExistsError: If another tag already has the new name.
        ValidationError: If the new name is empty.
    """
    normalized = normalize_tag_names([new_name])
    if not normalized:
        raise ValidationError("Tag name cannot be empty", {"name": "cannot be empty"})
    new_normalized = normalized[0]

    tag = await db.get(Tag, tag_id)
    if tag is None:
        raise TagNotFoundError(tag_id)

    if tag.name == new_normalized:
        return TagDTO(id=tag.id, name=tag.name)

    existing = await get_tag_by_name(db, new_normalized)
    if existing is not None:
        raise TagAlreadyExistsError(new_normalized)

    tag.name = new_normalized
    try:
        await db.flush()
    except IntegrityError as e:
        # Another writer created the name between check and flush
        raise TagAlreadyExistsError(new_normalized) from e
    return TagDTO(id=tag.id, name=tag.name)


async def delete_tag(db: AsyncSession, tag_id: int) -> None:
    """
    Delete a tag and every edge pointing at it.

    Raises:
        TagNotFoundError: If the tag doesn't exist.
    """
    if not await tag_exists(db, tag_id):
        raise TagNotFoundError(tag_id)

    await db.execute(delete(bookmark_tag).where(bookmark_tag.c.tag_id == tag_id))
    await db.execute(delete(Tag).where(Tag.id == tag_id))
    await db.flush()


async def ensure_bookmark_tag(db: AsyncSession, bookmark_id: int, tag_id: int) -> bool:
    """
    Create the edge if it is missing.

    Returns:
        True if an edge was inserted, False if it already existed.
    """
    edge_exists = await db.scalar(
        select(
            exists().where(
                bookmark_tag.c.bookmark_id == bookmark_id,
                bookmark_tag.c.tag_id == tag_id,
            ),
        ),
    )
    if edge_exists:
        return False
    await db.execute(insert(bookmark_tag).values(bookmark_id=bookmark_id, tag_id=tag_id))
    return True


async def remove_bookmark_tag(db: AsyncSession, bookmark_id: int, tag_id: int) -> None:
    """Delete the edge if present. The tag row itself is kept."""
    await db.execute(
        delete(bookmark_tag).where(
            bookmark_tag.c.bookmark_id == bookmark_id,
            bookmark_tag.c.tag_id == tag_id,
        ),
    )


async def _require_bookmark_and_tag(db: AsyncSession, bookmark_id: int, tag_id: int) -> None:
    if not await db.scalar(select(exists().where(Bookmark.id == bookmark_id))):
        raise BookmarkNotFoundError(bookmark_id)
    if not await tag_exists(db, tag_id):
        raise TagNotFoundError(tag_id)


async def add_tag_to_bookmark(db: AsyncSession, bookmark_id: int, tag_id: int) -> None:
    """
    Attach a tag to a bookmark. Idempotent.

    Raises:
        BookmarkNotFoundError: If the bookmark doesn't exist.
        TagNotFoundError: If the tag doesn't exist.
    """
    await _require_bookmark_and_tag(db, bookmark_id, tag_id)
    await ensure_bookmark_tag(db, bookmark_id, tag_id)
    await db.flush()


async def remove_tag_from_bookmark(db: AsyncSession, bookmark_id: int, tag_id: int) -> None:
    """
    Detach a tag from a bookmark. Idempotent.

    Raises:
        BookmarkNotFoundError: If the bookmark doesn't exist.
        TagNotFoundError: If the tag doesn't exist.
    """
    await _require_bookmark_and_tag(db, bookmark_id, tag_id)
    await remove_bookmark_tag(db, bookmark_id, tag_id)
    await db.flush()
