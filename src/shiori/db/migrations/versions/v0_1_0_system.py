"""create shiori_system

Version: 0.0.0 -> 0.1.0

Creates the single-row metadata table holding the schema version.
"""
import sqlalchemy as sa
from alembic import op

from_version = "0.0.0"
to_version = "0.1.0"


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "shiori_system",
        sa.Column("database_schema_version", sa.String(12), nullable=False),
        mysql_charset="utf8mb4",
    )
