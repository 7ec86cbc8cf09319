"""
Service layer for bookmark persistence and search.

Bookmarks cross this boundary as `BookmarkDTO` values; ORM rows never leave
the module. Full-text search is delegated to each dialect's native facility
(see the 0.3.0 migration for the matching indexes).
"""
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import StrEnum

from sqlalchemy import ColumnElement, delete, exists, func, or_, select, text
from sqlalchemy.dialects import mysql
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import defer, selectinload

from shiori.models.base import utcnow
from shiori.models.bookmark import Bookmark, url_digest
from shiori.models.tag import Tag, bookmark_tag
from shiori.schemas.bookmark import BookmarkDTO
from shiori.schemas.tag import TagDTO
from shiori.services.exceptions import (
    BookmarkAlreadyExistsError,
    BookmarkNotFoundError,
    TagNotFoundError,
    ValidationError,
)
from shiori.services.tag_service import (
    ensure_bookmark_tag,
    get_or_create_tags,
    get_tag_by_name,
    normalize_tag_names,
    remove_bookmark_tag,
)

logger = logging.getLogger(__name__)

# Matches any tag (in `tags`) or no tag at all (in `excluded_tags`)
ANY_TAG = "*"


class OrderMethod(StrEnum):
    """Sort order for bookmark listings. Ties are broken by id ascending."""

    DEFAULT = "default"  # id ASC
    LAST_ADDED = "last_added"  # id DESC
    LAST_MODIFIED = "last_modified"  # modified_at DESC


@dataclass
class GetBookmarksOptions:
    """Filters for `get_bookmarks`; every supplied filter must hold."""

    ids: list[int] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    excluded_tags: list[str] = field(default_factory=list)
    keyword: str = ""
    with_content: bool = False
    order: OrderMethod = OrderMethod.DEFAULT
    limit: int = 0
    offset: int = 0


def _dialect(db: AsyncSession) -> str:
    return db.get_bind().dialect.name


def fts5_phrase(keyword: str) -> str:
    """
    Quote a user keyword as a single FTS5 phrase.

    Hyphens would be parsed as column filters/NOT operators, so they become
    spaces; embedded double quotes are doubled.
    """
    keyword = keyword.replace("-", " ").replace('"', '""')
    return f'"{keyword}"'


def _keyword_clause(keyword: str, dialect: str) -> ColumnElement[bool]:
    url_match = Bookmark.url.contains(keyword, autoescape=True)

    if dialect == "sqlite":
        fulltext = Bookmark.id.in_(
            text("SELECT rowid FROM bookmark_fts WHERE bookmark_fts MATCH :fts_keyword")
            .bindparams(fts_keyword=fts5_phrase(keyword))
            .columns(rowid=Bookmark.id.type),
        )
    elif dialect == "mysql":
        fulltext = mysql.match(
            Bookmark.title, Bookmark.excerpt, Bookmark.content, against=keyword,
        ).in_boolean_mode()
    elif dialect == "postgresql":
        # Must mirror the ix_bookmark_search expression for the index to be used
        fulltext = text(
            "to_tsvector('english', bookmark.title || ' ' || bookmark.excerpt "
            "|| ' ' || bookmark.content) @@ plainto_tsquery('english', :pg_keyword)",
        ).bindparams(pg_keyword=keyword)
    else:
        fulltext = or_(
            Bookmark.title.contains(keyword, autoescape=True),
            Bookmark.excerpt.contains(keyword, autoescape=True),
            Bookmark.content.contains(keyword, autoescape=True),
        )
    return or_(url_match, fulltext)


def _tag_filter_names(names: Sequence[str]) -> tuple[bool, list[str]]:
    wildcard = ANY_TAG in names
    plain = [name for name in names if name != ANY_TAG and name.strip()]
    return wildcard, normalize_tag_names(plain)


def _build_filters(options: GetBookmarksOptions, dialect: str) -> list[ColumnElement[bool]]:
    filters: list[ColumnElement[bool]] = []

    if options.ids:
        filters.append(Bookmark.id.in_(options.ids))

    keyword = options.keyword.strip()
    if keyword:
        filters.append(_keyword_clause(keyword, dialect))

    any_tag, required = _tag_filter_names(options.tags)
    if any_tag:
        filters.append(Bookmark.id.in_(select(bookmark_tag.c.bookmark_id).distinct()))
    if required:
        # Bookmark must carry every required tag
        filters.append(
            Bookmark.id.in_(
                select(bookmark_tag.c.bookmark_id)
                .join(Tag, Tag.id == bookmark_tag.c.tag_id)
                .where(Tag.name.in_(required))
                .group_by(bookmark_tag.c.bookmark_id)
                .having(func.count(func.distinct(Tag.id)) == len(required)),
            ),
        )

    no_tag, excluded = _tag_filter_names(options.excluded_tags)
    if no_tag:
        filters.append(Bookmark.id.not_in(select(bookmark_tag.c.bookmark_id).distinct()))
    if excluded:
        filters.append(
            Bookmark.id.not_in(
                select(bookmark_tag.c.bookmark_id)
                .join(Tag, Tag.id == bookmark_tag.c.tag_id)
                .where(Tag.name.in_(excluded)),
            ),
        )

    return filters


def _order_by(order: OrderMethod) -> list[ColumnElement]:
    if order == OrderMethod.LAST_ADDED:
        return [Bookmark.id.desc()]
    if order == OrderMethod.LAST_MODIFIED:
        return [Bookmark.modified_at.desc(), Bookmark.id.asc()]
    return [Bookmark.id.asc()]


def to_dto(bookmark: Bookmark, with_content: bool = False) -> BookmarkDTO:
    """Copy an ORM row (with tags loaded) into a `BookmarkDTO`."""
    return BookmarkDTO(
        id=bookmark.id,
        url=bookmark.url,
        title=bookmark.title,
        excerpt=bookmark.excerpt,
        author=bookmark.author,
        public=bool(bookmark.public),
        created_at=bookmark.created_at,
        modified_at=bookmark.modified_at,
        content=bookmark.content if with_content else "",
        html=bookmark.html if with_content else "",
        has_content=bookmark.has_content,
        archiver=bookmark.archiver,
        archive_path=bookmark.archive_path,
        tags=[TagDTO(id=tag.id, name=tag.name) for tag in bookmark.tags],
    )


async def get_bookmarks(
    db: AsyncSession,
    options: GetBookmarksOptions | None = None,
) -> list[BookmarkDTO]:
    """
    List bookmarks matching `options`.

    Tags are hydrated with one extra IN-query per page, ordered by name.
    """
    options = options or GetBookmarksOptions()
    stmt = (
        select(Bookmark)
        .where(*_build_filters(options, _dialect(db)))
        .order_by(*_order_by(options.order))
        .options(selectinload(Bookmark.tags))
        .execution_options(populate_existing=True)
    )
    if not options.with_content:
        stmt = stmt.options(defer(Bookmark.content), defer(Bookmark.html))
    if options.limit > 0:
        stmt = stmt.limit(options.limit).offset(max(options.offset, 0))

    result = await db.execute(stmt)
    return [to_dto(bookmark, options.with_content) for bookmark in result.scalars()]


async def get_bookmarks_count(
    db: AsyncSession,
    options: GetBookmarksOptions | None = None,
) -> int:
    """Count bookmarks matching the same filters as `get_bookmarks`."""
    options = options or GetBookmarksOptions()
    stmt = (
        select(func.count())
        .select_from(Bookmark)
        .where(*_build_filters(options, _dialect(db)))
    )
    return int(await db.scalar(stmt) or 0)


async def get_bookmark(
    db: AsyncSession,
    bookmark_id: int | None = None,
    url: str | None = None,
    with_content: bool = True,
) -> BookmarkDTO | None:
    """
    Get one bookmark by id, or by URL when no id is given.

    Returns:
        The bookmark, or None if nothing matches.

    Raises:
        ValueError: If neither an id nor a URL is supplied.
    """
    if bookmark_id:
        condition = Bookmark.id == bookmark_id
    elif url:
        condition = Bookmark.url_hash == url_digest(url)
    else:
        raise ValueError("bookmark_id or url is required")

    stmt = (
        select(Bookmark)
        .where(condition)
        .options(selectinload(Bookmark.tags))
        .execution_options(populate_existing=True)
    )
    if not with_content:
        stmt = stmt.options(defer(Bookmark.content), defer(Bookmark.html))
    bookmark = (await db.execute(stmt)).scalar_one_or_none()
    return None if bookmark is None else to_dto(bookmark, with_content)


async def bookmark_exists(db: AsyncSession, bookmark_id: int) -> bool:
    """Check whether a bookmark id exists."""
    return bool(await db.scalar(select(exists().where(Bookmark.id == bookmark_id))))


async def _url_taken(db: AsyncSession, url: str, exclude_id: int | None = None) -> bool:
    condition = [Bookmark.url_hash == url_digest(url)]
    if exclude_id is not None:
        condition.append(Bookmark.id != exclude_id)
    return bool(await db.scalar(select(exists().where(*condition))))


def _validate(item: BookmarkDTO) -> None:
    if not item.url:
        raise ValidationError("URL must not be empty", {"url": "must not be empty"})
    if not item.title:
        raise ValidationError("Title must not be empty", {"title": "must not be empty"})


def _apply_fields(bookmark: Bookmark, item: BookmarkDTO) -> None:
    bookmark.url = item.url
    bookmark.title = item.title
    bookmark.excerpt = item.excerpt
    bookmark.author = item.author
    bookmark.public = 1 if item.public else 0
    bookmark.content = item.content
    bookmark.html = item.html
    bookmark.has_content = item.content != ""
    bookmark.archiver = item.archiver
    bookmark.archive_path = item.archive_path


async def _sync_tags(db: AsyncSession, bookmark_id: int, tags: Sequence[TagDTO]) -> None:
    for tag in tags:
        if tag.deleted:
            tag_id = tag.id
            if tag_id is None:
                existing = await get_tag_by_name(db, tag.name)
                tag_id = existing.id if existing is not None else None
            if tag_id is not None:
                await remove_bookmark_tag(db, bookmark_id, tag_id)
            continue

        (tag_row,) = await get_or_create_tags(db, [tag.name])
        await ensure_bookmark_tag(db, bookmark_id, tag_row.id)


async def save_bookmarks(
    db: AsyncSession,
    create: bool,
    *bookmarks: BookmarkDTO,
) -> list[BookmarkDTO]:
    """
    Insert (`create=True`) or update (`create=False`) bookmarks.

    Every column is written from the DTO, so updates must start from a fully
    loaded bookmark. `modified_at` is always set to now; `created_at` only on
    insert. Tags flagged `deleted` lose their edge, all others are created on
    demand and linked. Atomic with the caller's transaction.

    Returns:
        The saved bookmarks, reloaded with ids, timestamps and tags.

    Raises:
        ValidationError: If a URL or title is empty.
        BookmarkAlreadyExistsError: If a URL is already stored by another bookmark.
        BookmarkNotFoundError: If an updated bookmark doesn't exist.
    """
    now = utcnow()
    saved_ids: list[int] = []

    for item in bookmarks:
        _validate(item)

        if create:
            if await _url_taken(db, item.url):
                raise BookmarkAlreadyExistsError(item.url)
            bookmark = Bookmark(created_at=now)
            db.add(bookmark)
        else:
            bookmark = await db.get(Bookmark, item.id) if item.id else None
            if bookmark is None:
                raise BookmarkNotFoundError(item.id)
            if await _url_taken(db, item.url, exclude_id=item.id):
                raise BookmarkAlreadyExistsError(item.url)

        _apply_fields(bookmark, item)
        bookmark.modified_at = max(now, bookmark.created_at)

        try:
            await db.flush()
        except IntegrityError as e:
            raise BookmarkAlreadyExistsError(item.url) from e

        await _sync_tags(db, bookmark.id, item.tags)
        saved_ids.append(bookmark.id)

    await db.flush()
    saved = {
        dto.id: dto
        for dto in await get_bookmarks(db, GetBookmarksOptions(ids=saved_ids, with_content=True))
    }
    return [saved[bookmark_id] for bookmark_id in saved_ids]


async def save_bookmark(db: AsyncSession, bookmark: BookmarkDTO) -> BookmarkDTO:
    """
    Update the columns of one existing bookmark without touching its tags.

    Raises:
        BookmarkNotFoundError: If the bookmark doesn't exist.
    """
    _validate(bookmark)
    row = await db.get(Bookmark, bookmark.id) if bookmark.id else None
    if row is None:
        raise BookmarkNotFoundError(bookmark.id)
    if await _url_taken(db, bookmark.url, exclude_id=bookmark.id):
        raise BookmarkAlreadyExistsError(bookmark.url)

    _apply_fields(row, bookmark)
    row.modified_at = max(utcnow(), row.created_at)
    await db.flush()

    saved = await get_bookmark(db, bookmark_id=row.id)
    assert saved is not None
    return saved


async def delete_bookmarks(
    db: AsyncSession,
    *bookmark_ids: int,
    truncate: bool = False,
) -> list[int]:
    """
    Delete bookmarks and their tag edges.

    Deleting everything requires `truncate=True`; an empty id list without it
    is rejected.

    Returns:
        Ids of the bookmarks that were deleted (companion files are the
        caller's to remove).

    Raises:
        ValidationError: If no ids are given and `truncate` is False.
    """
    if not bookmark_ids and not truncate:
        raise ValidationError(
            "No bookmark ids given; pass truncate=True to delete every bookmark",
            {"ids": "must not be empty"},
        )

    stmt = select(Bookmark.id)
    if bookmark_ids:
        stmt = stmt.where(Bookmark.id.in_(bookmark_ids))
    deleted_ids = list((await db.execute(stmt)).scalars())
    if not deleted_ids:
        return []

    await db.execute(delete(bookmark_tag).where(bookmark_tag.c.bookmark_id.in_(deleted_ids)))
    await db.execute(delete(Bookmark).where(Bookmark.id.in_(deleted_ids)))
    await db.flush()
    logger.info("Deleted %d bookmark(s)", len(deleted_ids))
    return deleted_ids


async def bulk_update_bookmark_tags(
    db: AsyncSession,
    bookmark_ids: Sequence[int],
    tag_ids: Sequence[int],
) -> None:
    """
    Add every tag to every bookmark. Existing edges are left alone, so the
    operation is idempotent.

    Raises:
        BookmarkNotFoundError: If any bookmark id is unknown.
        TagNotFoundError: If any tag id is unknown.
    """
    bookmark_ids = list(dict.fromkeys(bookmark_ids))
    tag_ids = list(dict.fromkeys(tag_ids))

    found_bookmarks = set(
        (await db.execute(select(Bookmark.id).where(Bookmark.id.in_(bookmark_ids)))).scalars(),
    )
    missing_bookmarks = [i for i in bookmark_ids if i not in found_bookmarks]
    if missing_bookmarks:
        raise BookmarkNotFoundError(missing_bookmarks[0])

    found_tags = set((await db.execute(select(Tag.id).where(Tag.id.in_(tag_ids)))).scalars())
    missing_tags = [i for i in tag_ids if i not in found_tags]
    if missing_tags:
        raise TagNotFoundError(tag_ids=missing_tags)

    for bookmark_id in bookmark_ids:
        for tag_id in tag_ids:
            await ensure_bookmark_tag(db, bookmark_id, tag_id)
    await db.flush()
