"""full-text index over title, excerpt and content

Version: 0.2.0 -> 0.3.0

Each dialect uses its native facility:
  - SQLite: external-content FTS5 table kept in sync by triggers
  - MySQL: FULLTEXT index queried with MATCH ... AGAINST in boolean mode
  - PostgreSQL: GIN expression index over to_tsvector(); the expression must
    stay identical to the one used by bookmark search queries
"""
from alembic import op

from_version = "0.2.0"
to_version = "0.3.0"


def upgrade() -> None:
    """Upgrade schema."""
    dialect = op.get_context().dialect.name

    if dialect == "sqlite":
        op.execute("""
            CREATE VIRTUAL TABLE bookmark_fts USING fts5(
                title,
                excerpt,
                content,
                content='bookmark',
                content_rowid='id'
            )
        """)
        op.execute("""
            CREATE TRIGGER bookmark_fts_ai AFTER INSERT ON bookmark BEGIN
                INSERT INTO bookmark_fts(rowid, title, excerpt, content)
                VALUES (new.id, new.title, new.excerpt, new.content);
            END
        """)
        op.execute("""
            CREATE TRIGGER bookmark_fts_au AFTER UPDATE ON bookmark BEGIN
                INSERT INTO bookmark_fts(bookmark_fts, rowid, title, excerpt, content)
                VALUES ('delete', old.id, old.title, old.excerpt, old.content);
                INSERT INTO bookmark_fts(rowid, title, excerpt, content)
                VALUES (new.id, new.title, new.excerpt, new.content);
            END
        """)
        op.execute("""
            CREATE TRIGGER bookmark_fts_ad AFTER DELETE ON bookmark BEGIN
                INSERT INTO bookmark_fts(bookmark_fts, rowid, title, excerpt, content)
                VALUES ('delete', old.id, old.title, old.excerpt, old.content);
            END
        """)
        # Index rows that existed before the triggers
        op.execute("INSERT INTO bookmark_fts(bookmark_fts) VALUES ('rebuild')")

    elif dialect == "mysql":
        op.execute(
            "CREATE FULLTEXT INDEX ft_bookmark_search ON bookmark (title, excerpt, content)",
        )

    elif dialect == "postgresql":
        op.execute("""
            CREATE INDEX ix_bookmark_search ON bookmark USING GIN (
                to_tsvector('english', title || ' ' || excerpt || ' ' || content)
            )
        """)
