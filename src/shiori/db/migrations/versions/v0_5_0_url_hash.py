"""unique URL digest

Version: 0.4.0 -> 0.5.0

Replaces the unique index on `url` with one on a SHA-256 digest of it. MySQL
could only index the first 255 characters of the TEXT column, so distinct
long URLs sharing a prefix collided.
"""
import hashlib

import sqlalchemy as sa
from alembic import op

from_version = "0.4.0"
to_version = "0.5.0"


def upgrade() -> None:
    """Upgrade schema."""
    op.add_column(
        "bookmark",
        sa.Column("url_hash", sa.String(64), nullable=False, server_default=""),
    )

    bookmark = sa.table(
        "bookmark",
        sa.column("id", sa.Integer),
        sa.column("url", sa.Text),
        sa.column("url_hash", sa.String),
    )
    connection = op.get_bind()
    rows = connection.execute(sa.select(bookmark.c.id, bookmark.c.url)).all()
    for bookmark_id, url in rows:
        connection.execute(
            sa.update(bookmark)
            .where(bookmark.c.id == bookmark_id)
            .values(url_hash=hashlib.sha256(url.encode("utf-8")).hexdigest()),
        )

    op.drop_index("uq_bookmark_url", table_name="bookmark")
    op.create_index("uq_bookmark_url_hash", "bookmark", ["url_hash"], unique=True)
