"""Tests for tag operations."""
from collections.abc import AsyncGenerator

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from shiori.core.dependencies import Dependencies
from shiori.schemas.bookmark import BookmarkDTO
from shiori.schemas.tag import TagDTO
from shiori.services import bookmark_service, tag_service
from shiori.services.exceptions import (
    BookmarkNotFoundError,
    TagAlreadyExistsError,
    TagNotFoundError,
    ValidationError,
)
from shiori.services.tag_service import TagListOptions, normalize_tag_names


@pytest.fixture
async def db(deps: Dependencies) -> AsyncGenerator[AsyncSession]:
    async with deps.database.writer() as session:
        yield session


async def _bookmark(db: AsyncSession, url: str, *tags: str) -> BookmarkDTO:
    (saved,) = await bookmark_service.save_bookmarks(
        db, True, BookmarkDTO(url=url, title=url, tags=[TagDTO(name=t) for t in tags]),
    )
    return saved


def test__normalize_tag_names__dedupes_and_lowercases() -> None:
    assert normalize_tag_names(["Go", " go ", "Web  Dev"]) == ["go", "web dev"]


def test__normalize_tag_names__empty_rejected() -> None:
    with pytest.raises(ValidationError):
        normalize_tag_names(["ok", "   "])


async def test__get_or_create_tags__reuses_existing(db: AsyncSession) -> None:
    first = await tag_service.get_or_create_tags(db, ["python"])
    second = await tag_service.get_or_create_tags(db, ["Python", "rust"])

    assert second[0].id == first[0].id
    assert [t.name for t in second] == ["python", "rust"]


async def test__get_tags__counts_include_unused(db: AsyncSession) -> None:
    await _bookmark(db, "https://example.com/a", "used")
    await tag_service.create_tags(db, "unused")

    tags = await tag_service.get_tags(db, TagListOptions(with_bookmark_count=True, order_by_name=True))

    assert [(t.name, t.bookmark_count) for t in tags] == [("unused", 0), ("used", 1)]


async def test__get_tags__bookmark_filter_with_counts(db: AsyncSession) -> None:
    first = await _bookmark(db, "https://example.com/a", "shared", "only-a")
    await _bookmark(db, "https://example.com/b", "shared")

    tags = await tag_service.get_tags(
        db, TagListOptions(bookmark_id=first.id, with_bookmark_count=True, order_by_name=True),
    )

    assert [(t.name, t.bookmark_count) for t in tags] == [("only-a", 1), ("shared", 2)]


async def test__get_tags__search_escapes_wildcards(db: AsyncSession) -> None:
    await tag_service.create_tags(db, "100%", "1000")
    tags = await tag_service.get_tags(db, TagListOptions(search="0%"))
    assert [t.name for t in tags] == ["100%"]


async def test__get_tags__search_and_bookmark_conflict(db: AsyncSession) -> None:
    with pytest.raises(ValidationError):
        await tag_service.get_tags(db, TagListOptions(search="a", bookmark_id=1))


async def test__rename_tag(db: AsyncSession) -> None:
    (tag,) = await tag_service.create_tags(db, "old")
    renamed = await tag_service.rename_tag(db, tag.id, " New ")
    assert renamed == TagDTO(id=tag.id, name="new")


async def test__rename_tag__same_name_is_noop(db: AsyncSession) -> None:
    (tag,) = await tag_service.create_tags(db, "same")
    assert (await tag_service.rename_tag(db, tag.id, "SAME")).name == "same"


async def test__rename_tag__conflict_and_missing(db: AsyncSession) -> None:
    first, _ = await tag_service.create_tags(db, "first", "second")
    with pytest.raises(TagAlreadyExistsError):
        await tag_service.rename_tag(db, first.id, "second")
    with pytest.raises(TagNotFoundError):
        await tag_service.rename_tag(db, 999, "whatever")


async def test__delete_tag(db: AsyncSession) -> None:
    bookmark = await _bookmark(db, "https://example.com/a", "gone")
    (tag,) = await tag_service.get_tags(db, TagListOptions(bookmark_id=bookmark.id))

    await tag_service.delete_tag(db, tag.id)

    assert await tag_service.get_tags(db) == []
    with pytest.raises(TagNotFoundError):
        await tag_service.delete_tag(db, tag.id)


async def test__add_and_remove_tag__idempotent(db: AsyncSession) -> None:
    bookmark = await _bookmark(db, "https://example.com/a")
    (tag,) = await tag_service.create_tags(db, "later")

    await tag_service.add_tag_to_bookmark(db, bookmark.id, tag.id)
    await tag_service.add_tag_to_bookmark(db, bookmark.id, tag.id)
    assert (await tag_service.get_tag(db, tag.id)).bookmark_count == 1

    await tag_service.remove_tag_from_bookmark(db, bookmark.id, tag.id)
    await tag_service.remove_tag_from_bookmark(db, bookmark.id, tag.id)
    assert (await tag_service.get_tag(db, tag.id)).bookmark_count == 0


async def test__add_tag_to_bookmark__unknown_ids(db: AsyncSession) -> None:
    (tag,) = await tag_service.create_tags(db, "t")
    with pytest.raises(BookmarkNotFoundError):
        await tag_service.add_tag_to_bookmark(db, 999, tag.id)

    bookmark = await _bookmark(db, "https://example.com/a")
    with pytest.raises(TagNotFoundError):
        await tag_service.add_tag_to_bookmark(db, bookmark.id, 999)
