"""initial schema: account, bookmark, tag, bookmark_tag

Version: 0.1.0 -> 0.2.0
"""
import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import mysql

from_version = "0.1.0"
to_version = "0.2.0"

LongText = sa.Text().with_variant(mysql.LONGTEXT(), "mysql")


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "account",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("username", sa.String(250), nullable=False),
        sa.Column("password", sa.Text(), nullable=False),
        sa.Column("owner", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("config", sa.JSON(), nullable=False),
        sa.UniqueConstraint("username", name="uq_account_username"),
        mysql_charset="utf8mb4",
    )

    op.create_table(
        "bookmark",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("excerpt", sa.Text(), nullable=False),
        sa.Column("author", sa.Text(), nullable=False),
        sa.Column("public", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("content", LongText, nullable=False),
        sa.Column("html", LongText, nullable=False),
        sa.Column("has_content", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("modified_at", sa.DateTime(), nullable=False),
        mysql_charset="utf8mb4",
    )
    op.create_index("uq_bookmark_url", "bookmark", ["url"], unique=True, mysql_length=255)
    op.create_index("ix_bookmark_modified_at", "bookmark", ["modified_at"])
    op.create_index("ix_bookmark_created_at", "bookmark", ["created_at"])

    op.create_table(
        "tag",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(250), nullable=False),
        sa.UniqueConstraint("name", name="uq_tag_name"),
        mysql_charset="utf8mb4",
    )

    op.create_table(
        "bookmark_tag",
        sa.Column(
            "bookmark_id",
            sa.Integer(),
            sa.ForeignKey("bookmark.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "tag_id",
            sa.Integer(),
            sa.ForeignKey("tag.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        mysql_charset="utf8mb4",
    )
    op.create_index("ix_bookmark_tag_tag_id", "bookmark_tag", ["tag_id"])
