"""archiver columns and promotion of existing WARC archives

Version: 0.3.0 -> 0.4.0

Adds `archiver` and `archive_path`. Bookmarks that already have an
`archive/<id>` file in the data directory are marked as WARC archives.
"""
from pathlib import Path

import sqlalchemy as sa
from alembic import op

from_version = "0.3.0"
to_version = "0.4.0"


def upgrade() -> None:
    """Upgrade schema."""
    op.add_column(
        "bookmark",
        sa.Column("archiver", sa.String(20), nullable=False, server_default=""),
    )
    op.add_column(
        "bookmark",
        sa.Column("archive_path", sa.String(1024), nullable=False, server_default=""),
    )

    data_dir: Path | None = op.get_context().opts.get("data_dir")
    if data_dir is None:
        return

    bookmark = sa.table(
        "bookmark",
        sa.column("id", sa.Integer),
        sa.column("archiver", sa.String),
        sa.column("archive_path", sa.String),
    )
    connection = op.get_bind()
    ids = connection.execute(
        sa.select(bookmark.c.id).where(bookmark.c.archiver == ""),
    ).scalars().all()

    promoted = [
        bookmark_id for bookmark_id in ids
        if (Path(data_dir) / "archive" / str(bookmark_id)).is_file()
    ]
    for bookmark_id in promoted:
        connection.execute(
            sa.update(bookmark)
            .where(bookmark.c.id == bookmark_id)
            .values(archiver="warc", archive_path=f"archive/{bookmark_id}"),
        )
