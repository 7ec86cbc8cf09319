"""Bookmark model for stored URLs and their extracted content."""
import hashlib
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.dialects import mysql
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from shiori.models.base import Base, utcnow
from shiori.models.tag import bookmark_tag

if TYPE_CHECKING:
    from shiori.models.tag import Tag

# MySQL TEXT tops out at 64KB, which readable HTML regularly exceeds
LongText = Text().with_variant(mysql.LONGTEXT(), "mysql")

ARCHIVER_WARC = "warc"
ARCHIVER_PDF = "pdf"


def url_digest(url: str) -> str:
    """SHA-256 hex digest of a URL, the key of the unique URL index."""
    return hashlib.sha256(url.encode("utf-8")).hexdigest()


class Bookmark(Base):
    """
    Bookmark model - one row per canonical URL.

    `public` is kept as a 0/1 integer on every dialect. `content` holds the
    plain text used for full-text search and `html` the readable markup shown
    in the reader view. Companion files (thumbnail, archive, ebook) live on
    disk and are keyed by `id`.
    """

    __tablename__ = "bookmark"
    __table_args__ = (
        # URLs are unbounded TEXT; uniqueness is enforced on their digest
        Index("uq_bookmark_url_hash", "url_hash", unique=True),
        Index("ix_bookmark_modified_at", "modified_at"),
        Index("ix_bookmark_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    url_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    excerpt: Mapped[str] = mapped_column(Text, nullable=False, default="")
    author: Mapped[str] = mapped_column(Text, nullable=False, default="")
    public: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    content: Mapped[str] = mapped_column(LongText, nullable=False, default="")
    html: Mapped[str] = mapped_column(LongText, nullable=False, default="")
    has_content: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    archiver: Mapped[str] = mapped_column(String(20), nullable=False, default="")
    archive_path: Mapped[str] = mapped_column(String(1024), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    modified_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    tags: Mapped[list["Tag"]] = relationship(
        secondary=bookmark_tag,
        back_populates="bookmarks",
        order_by="Tag.name",
    )

    @validates("url")
    def _hash_url(self, _key: str, url: str) -> str:
        self.url_hash = url_digest(url)
        return url
