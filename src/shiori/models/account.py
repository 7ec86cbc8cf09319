"""Account model for login credentials and UI preferences."""
from typing import Any

from sqlalchemy import JSON, Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from shiori.models.base import Base


class Account(Base):
    """Account model - bcrypt password hash plus a JSON preferences blob."""

    __tablename__ = "account"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(250), nullable=False, unique=True)
    # Column keeps its historical name; only hashes are ever stored
    password_hash: Mapped[str] = mapped_column("password", Text, nullable=False)
    owner: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    config: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
