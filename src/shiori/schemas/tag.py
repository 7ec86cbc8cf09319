"""Pydantic schemas for tags."""
import re

from pydantic import BaseModel, ConfigDict, Field, field_validator

_WHITESPACE = re.compile(r"\s+")


def normalize_tag_name(name: str) -> str:
    """
    Lowercase a tag name and collapse internal whitespace runs.

    Raises:
        ValueError: If nothing remains after normalization.
    """
    normalized = _WHITESPACE.sub(" ", name).strip().lower()
    if not normalized:
        raise ValueError("Tag name cannot be empty")
    return normalized


class TagDTO(BaseModel):
    """
    Tag as exchanged between layers.

    `bookmark_count` is only filled when requested. `deleted` is an instruction
    used when saving a bookmark: the edge to this tag is removed.
    """

    model_config = ConfigDict(from_attributes=True)

    id: int | None = None
    name: str
    bookmark_count: int | None = None
    deleted: bool = False


class TagCreate(BaseModel):
    """Schema for creating a tag."""

    name: str = Field(..., min_length=1, max_length=250)

    @field_validator("name", mode="before")
    @classmethod
    def normalize(cls, v: str) -> str:
        """Normalize the tag name."""
        if not isinstance(v, str):
            raise ValueError("Tag name must be a string")
        return normalize_tag_name(v)


class TagUpdate(TagCreate):
    """Schema for renaming a tag."""


class BookmarkTagRequest(BaseModel):
    """Body of add/remove tag on a single bookmark."""

    tag_id: int = Field(..., gt=0)
