"""Process-wide dependencies, created once and passed explicitly."""
from dataclasses import dataclass

from shiori.core.config import Settings
from shiori.db.database import Database
from shiori.services.storage import StorageDomain


@dataclass
class Dependencies:
    """
    Everything a handler or command needs besides its own arguments.

    Attached to `app.state.deps` by the HTTP adapter and handed to CLI
    command functions directly.
    """

    settings: Settings
    database: Database
    storage: StorageDomain

    @classmethod
    def from_settings(cls, settings: Settings) -> "Dependencies":
        """Build the database handle and storage domain described by `settings`."""
        return cls(
            settings=settings,
            database=Database.from_settings(settings),
            storage=StorageDomain(settings.dir),
        )

    async def close(self) -> None:
        """Release pooled database connections."""
        await self.database.dispose()
