"""Tag model and the bookmark/tag junction table."""
from typing import TYPE_CHECKING

from sqlalchemy import Column, ForeignKey, Index, Integer, String, Table
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shiori.models.base import Base

if TYPE_CHECKING:
    from shiori.models.bookmark import Bookmark


# Junction table; the (bookmark_id, tag_id) pair is the primary key
bookmark_tag = Table(
    "bookmark_tag",
    Base.metadata,
    Column(
        "bookmark_id",
        Integer,
        ForeignKey("bookmark.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "tag_id",
        Integer,
        ForeignKey("tag.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Index("ix_bookmark_tag_tag_id", "tag_id"),
)


class Tag(Base):
    """Tag model - globally unique, normalized names."""

    __tablename__ = "tag"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(250), nullable=False, unique=True)

    bookmarks: Mapped[list["Bookmark"]] = relationship(
        secondary=bookmark_tag,
        back_populates="tags",
    )
