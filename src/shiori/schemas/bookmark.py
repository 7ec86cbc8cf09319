"""Pydantic schemas for bookmark endpoints."""
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from shiori.schemas.tag import TagDTO, normalize_tag_name


class BookmarkDTO(BaseModel):
    """
    Bookmark as exchanged between the store, the ingestion pipeline and adapters.

    `content` and `html` are empty unless explicitly loaded. The `has_*` file
    flags and `image_url` are derived from companion files on disk and are
    never persisted.
    """

    model_config = ConfigDict(from_attributes=True)

    id: int = 0
    url: str
    title: str = ""
    excerpt: str = ""
    author: str = ""
    public: bool = False
    created_at: datetime | None = None
    modified_at: datetime | None = None
    content: str = ""
    html: str = ""
    image_url: str = ""
    has_content: bool = False
    has_archive: bool = False
    has_ebook: bool = False
    has_thumbnail: bool = False
    archiver: str = ""
    archive_path: str = ""
    tags: list[TagDTO] = []

    # Ingestion switches, not stored
    create_archive: bool = Field(default=False, exclude=True)
    create_ebook: bool = Field(default=False, exclude=True)


def _tag_names(v: list) -> list[str]:
    names = []
    for tag in v or []:
        raw = tag.get("name", "") if isinstance(tag, dict) else tag
        if not isinstance(raw, str):
            raise ValueError("Tag names must be strings")
        names.append(normalize_tag_name(raw))
    # keep first occurrence order
    return list(dict.fromkeys(names))


class BookmarkCreate(BaseModel):
    """Schema for creating a bookmark."""

    url: str = Field(..., min_length=1)
    title: str = ""
    excerpt: str = ""
    tags: list[str] = []
    public: bool = False
    create_archive: bool = False
    create_ebook: bool = False
    # Skip fetching and extraction, store only caller supplied fields
    offline: bool = False

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tags(cls, v: list) -> list[str]:
        """Accept plain names or `{name}` objects and normalize them."""
        return _tag_names(v)


class BookmarkUpdate(BaseModel):
    """Schema for updating a bookmark. All fields optional."""

    url: str | None = Field(default=None, min_length=1)
    title: str | None = None
    excerpt: str | None = None
    author: str | None = None
    public: bool | None = None
    tags: list[str] | None = None

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tags(cls, v: list | None) -> list[str] | None:
        """Normalize tag names when the tag list is replaced."""
        if v is None:
            return None
        return _tag_names(v)


class BookmarkListResponse(BaseModel):
    """One page of bookmarks plus paging metadata."""

    bookmarks: list[BookmarkDTO]
    total: int
    page: int
    max_page: int


class ReadableResponse(BaseModel):
    """Readable content of a bookmark."""

    content: str
    html: str


class BulkTagsRequest(BaseModel):
    """Add every tag in `tag_ids` to every bookmark in `bookmark_ids`."""

    bookmark_ids: list[int] = Field(..., min_length=1)
    tag_ids: list[int] = Field(..., min_length=1)


class UpdateCacheRequest(BaseModel):
    """Re-fetch and re-process a set of bookmarks."""

    ids: list[int] = Field(..., min_length=1)
    keep_metadata: bool = False
    create_archive: bool = False
    create_ebook: bool = False
    skip_exist: bool = False

    @field_validator("ids", mode="after")
    @classmethod
    def positive_ids(cls, v: list[int]) -> list[int]:
        """Bookmark ids start at 1."""
        if any(bookmark_id <= 0 for bookmark_id in v):
            raise ValueError("Bookmark ids must be positive")
        return v


class UpdateCacheFailure(BaseModel):
    """A bookmark that could not be refreshed."""

    id: int
    error: str


class UpdateCacheResponse(BaseModel):
    """Result of a bulk cache refresh."""

    bookmarks: list[BookmarkDTO]
    failures: list[UpdateCacheFailure]


class ExtensionBookmarkRequest(BaseModel):
    """Bookmark pushed by the browser extension, optionally with captured HTML."""

    url: str = Field(..., min_length=1)
    title: str = ""
    excerpt: str = ""
    html: str = ""
    tags: list[str] = []
    public: bool = False
    create_archive: bool = False
    create_ebook: bool = False

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tags(cls, v: list) -> list[str]:
        """Accept plain names or `{name}` objects and normalize them."""
        return _tag_names(v)


class ExtensionDeleteRequest(BaseModel):
    """Delete the bookmark stored for `url`."""

    url: str = Field(..., min_length=1)


class BookmarkDeleteRequest(BaseModel):
    """Delete several bookmarks at once."""

    ids: list[int] = Field(..., min_length=1)
