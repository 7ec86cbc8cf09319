"""SQLAlchemy models."""
from shiori.models.account import Account
from shiori.models.base import Base
from shiori.models.bookmark import Bookmark
from shiori.models.system import shiori_system
from shiori.models.tag import Tag, bookmark_tag

__all__ = [
    "Account",
    "Base",
    "Bookmark",
    "Tag",
    "bookmark_tag",
    "shiori_system",
]
