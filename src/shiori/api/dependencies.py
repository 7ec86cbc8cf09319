"""FastAPI dependencies for injection."""
from shiori.core.auth import get_current_account, require_owner, require_user
from shiori.db.session import get_dependencies, get_reader_session, get_writer_session

__all__ = [
    "get_current_account",
    "get_dependencies",
    "get_reader_session",
    "get_writer_session",
    "require_owner",
    "require_user",
]
