"""Request-scoped database sessions."""
from collections.abc import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from shiori.core.dependencies import Dependencies


def get_dependencies(request: Request) -> Dependencies:
    """Return the process dependencies attached to the application."""
    return request.app.state.deps


async def get_reader_session(request: Request) -> AsyncGenerator[AsyncSession]:
    """Yield a read-only session for the duration of the request."""
    async with get_dependencies(request).database.reader() as session:
        yield session


async def get_writer_session(request: Request) -> AsyncGenerator[AsyncSession]:
    """
    Yield a session on the writer connection.

    Uses unit-of-work pattern: services use flush() for refreshing objects,
    commit happens once here at request end. This ensures atomic transactions
    per request - if anything fails, all changes are rolled back.

    Routes that run the ingestion pipeline must not depend on this: the
    pipeline opens its own writer transactions and the writer pool holds a
    single connection.
    """
    async with get_dependencies(request).database.writer() as session:
        yield session
