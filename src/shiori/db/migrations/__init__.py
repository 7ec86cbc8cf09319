"""Ordered schema history shared by SQLite, MySQL and PostgreSQL."""
from shiori.db.migrations.runner import (
    Migration,
    MigrationError,
    MigrationRequiredError,
    latest_version,
    run_migrations,
)
from shiori.db.migrations.versions import (
    v0_1_0_system,
    v0_2_0_initial,
    v0_3_0_fulltext,
    v0_4_0_archiver,
    v0_5_0_url_hash,
)

MIGRATIONS: list[Migration] = [
    Migration.from_module(module)
    for module in (
        v0_1_0_system,
        v0_2_0_initial,
        v0_3_0_fulltext,
        v0_4_0_archiver,
        v0_5_0_url_hash,
    )
]

LATEST_VERSION = latest_version(MIGRATIONS)

__all__ = [
    "LATEST_VERSION",
    "MIGRATIONS",
    "Migration",
    "MigrationError",
    "MigrationRequiredError",
    "run_migrations",
]
