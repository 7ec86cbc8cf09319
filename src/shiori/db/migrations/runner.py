"""
Semver schema migration runner.

Each migration is a module exposing `from_version`, `to_version` and an
alembic-style `upgrade()` function that issues DDL through `alembic.op`. The
runner reads the version recorded in `shiori_system`, applies the migration
whose `from_version` matches inside a transaction, records `to_version` in the
same transaction and repeats until nothing matches.
"""
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from types import ModuleType

from alembic.operations import Operations
from alembic.runtime.migration import MigrationContext
from sqlalchemy import Connection, inspect, insert, select, update

from shiori.models.system import shiori_system

logger = logging.getLogger(__name__)

INITIAL_VERSION = "0.0.0"


class MigrationError(Exception):
    """Raised when a migration fails; the recorded version is left unchanged."""

    def __init__(self, from_version: str, to_version: str, cause: Exception) -> None:
        self.from_version = from_version
        self.to_version = to_version
        self.cause = cause
        super().__init__(f"Failed to migrate database from {from_version} to {to_version}: {cause}")


class MigrationRequiredError(Exception):
    """Raised at startup when the schema is older than the code expects."""

    def __init__(self, current_version: str, latest_version: str) -> None:
        self.current_version = current_version
        self.latest_version = latest_version
        super().__init__(
            f"Database schema version {current_version} is behind {latest_version}, "
            "run `shiori migrate` first",
        )


def parse_version(version: str) -> tuple[int, int, int]:
    """Parse `MAJOR.MINOR.PATCH` into a comparable tuple."""
    parts = version.strip().split(".")
    if len(parts) != 3 or not all(part.isdigit() for part in parts):
        raise ValueError(f"Invalid schema version: {version!r}")
    major, minor, patch = (int(part) for part in parts)
    return major, minor, patch


@dataclass(frozen=True)
class Migration:
    """One step of the schema history."""

    from_version: str
    to_version: str
    upgrade: Callable[[], None]
    name: str = ""

    @classmethod
    def from_module(cls, module: ModuleType) -> "Migration":
        """Build a migration from a versions module."""
        return cls(
            from_version=module.from_version,
            to_version=module.to_version,
            upgrade=module.upgrade,
            name=module.__name__.rsplit(".", 1)[-1],
        )


def get_schema_version(connection: Connection) -> str:
    """Return the recorded schema version, or 0.0.0 for an empty database."""
    if not inspect(connection).has_table(shiori_system.name):
        return INITIAL_VERSION
    version = connection.execute(
        select(shiori_system.c.database_schema_version).limit(1),
    ).scalar_one_or_none()
    return version or INITIAL_VERSION


def set_schema_version(connection: Connection, version: str) -> None:
    """Record `version`, inserting the metadata row on first use."""
    parse_version(version)
    result = connection.execute(
        update(shiori_system).values(database_schema_version=version),
    )
    if result.rowcount == 0:
        connection.execute(insert(shiori_system).values(database_schema_version=version))


def latest_version(migrations: Sequence[Migration]) -> str:
    """Version reached after applying every migration."""
    if not migrations:
        return INITIAL_VERSION
    return max((m.to_version for m in migrations), key=parse_version)


def run_migrations(
    connection: Connection,
    migrations: Sequence[Migration],
    data_dir: Path | None = None,
) -> str:
    """
    Apply pending migrations and return the resulting schema version.

    Safe to call repeatedly: when the recorded version has no matching
    migration the database is left untouched.

    Args:
        connection: Sync connection with no transaction in progress.
        migrations: Ordered migration list.
        data_dir: Data directory, exposed to data migrations via
            `op.get_context().opts["data_dir"]`.

    Raises:
        MigrationError: If a migration fails. Its transaction is rolled back.
    """
    by_from = {parse_version(m.from_version): m for m in migrations}

    current = get_schema_version(connection)
    connection.commit()

    while (migration := by_from.get(parse_version(current))) is not None:
        logger.info(
            "Migrating database schema %s -> %s (%s)",
            migration.from_version, migration.to_version, migration.name,
        )
        try:
            with connection.begin():
                context = MigrationContext.configure(
                    connection,
                    opts={"data_dir": data_dir},
                )
                with Operations.context(context):
                    migration.upgrade()
                set_schema_version(connection, migration.to_version)
        except Exception as e:
            logger.error(
                "Migration %s -> %s failed: %s",
                migration.from_version, migration.to_version, e,
            )
            raise MigrationError(migration.from_version, migration.to_version, e) from e
        current = migration.to_version

    return current
