"""Pytest fixtures for testing."""
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from shiori.api.main import create_app
from shiori.core.config import Settings
from shiori.core.dependencies import Dependencies
from shiori.schemas.account import AccountDTO
from shiori.schemas.bookmark import BookmarkDTO
from shiori.schemas.tag import TagDTO
from shiori.services import account_service, auth_service, bookmark_service

TEST_SECRET_KEY = "test-secret-key-with-enough-length-for-hs256"


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing at a throwaway data directory and SQLite file."""
    return Settings(
        _env_file=None,
        dir=tmp_path / "data",
        database_url=None,
        dbms="sqlite",
        http_secret_key=TEST_SECRET_KEY,
        http_access_log=False,
        db_auto_migrate=True,
    )


@pytest.fixture
async def deps(settings: Settings) -> AsyncGenerator[Dependencies]:
    """Dependencies with a database migrated by the real migration runner."""
    dependencies = Dependencies.from_settings(settings)
    await dependencies.database.init()
    await dependencies.database.migrate()
    yield dependencies
    await dependencies.close()


@pytest.fixture
async def db_session(deps: Dependencies) -> AsyncGenerator[AsyncSession]:
    """
    Reader session for assertions.

    Writes in tests go through `deps.database.write` so the single writer
    connection is free again before the app needs it.
    """
    async with deps.database.reader() as session:
        yield session


async def create_account(
    deps: Dependencies,
    username: str,
    password: str,
    owner: bool = False,
) -> AccountDTO:
    """Create and commit an account."""
    async def create(db: AsyncSession) -> AccountDTO:
        return await account_service.create_account(db, username, password, owner=owner)

    return await deps.database.write(create)


async def create_bookmark(
    deps: Dependencies,
    url: str,
    title: str = "",
    tags: list[str] | None = None,
    content: str = "",
    public: bool = False,
) -> BookmarkDTO:
    """Insert and commit a bookmark without going through the ingestion pipeline."""
    bookmark = BookmarkDTO(
        url=url,
        title=title or url,
        content=content,
        public=public,
        tags=[TagDTO(name=name) for name in tags or []],
    )

    async def save(db: AsyncSession) -> BookmarkDTO:
        (saved,) = await bookmark_service.save_bookmarks(db, True, bookmark)
        return saved

    return await deps.database.write(save)


def auth_headers(account: AccountDTO, settings: Settings) -> dict[str, str]:
    """Bearer header for `account`."""
    issued = auth_service.create_login_token(account, settings, remember_me=False)
    return {"Authorization": f"Bearer {issued.token}"}


@asynccontextmanager
async def make_client(
    deps: Dependencies,
    headers: dict[str, str] | None = None,
) -> AsyncGenerator[AsyncClient]:
    """HTTP client driving the app in-process."""
    app = create_app(deps)
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers=headers,
    ) as test_client:
        yield test_client


@pytest.fixture
async def owner(deps: Dependencies) -> AccountDTO:
    """An owner (admin) account."""
    return await create_account(deps, "admin", "admin-password", owner=True)


@pytest.fixture
async def visitor(deps: Dependencies) -> AccountDTO:
    """A non-owner account."""
    return await create_account(deps, "visitor", "visitor-password", owner=False)


@pytest.fixture
async def client(
    deps: Dependencies,
    owner: AccountDTO,
    settings: Settings,
) -> AsyncGenerator[AsyncClient]:
    """Client authenticated as the owner account."""
    async with make_client(deps, auth_headers(owner, settings)) as test_client:
        yield test_client


@pytest.fixture
async def visitor_client(
    deps: Dependencies,
    visitor: AccountDTO,
    settings: Settings,
) -> AsyncGenerator[AsyncClient]:
    """Client authenticated as a non-owner account."""
    async with make_client(deps, auth_headers(visitor, settings)) as test_client:
        yield test_client


@pytest.fixture
async def anon_client(deps: Dependencies) -> AsyncGenerator[AsyncClient]:
    """Client without credentials."""
    async with make_client(deps) as test_client:
        yield test_client
