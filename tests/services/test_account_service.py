"""Tests for account storage and password hashing."""
from collections.abc import AsyncGenerator

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from shiori.core.dependencies import Dependencies
from shiori.schemas.account import AccountConfig
from shiori.services import account_service
from shiori.services.exceptions import AccountAlreadyExistsError, AccountNotFoundError, ValidationError


@pytest.fixture
async def db(deps: Dependencies) -> AsyncGenerator[AsyncSession]:
    async with deps.database.writer() as session:
        yield session


class TestPasswords:
    """bcrypt hashing."""

    def test__hash_password__verifies(self) -> None:
        hashed = account_service.hash_password("secret")
        assert hashed.startswith("$2b$10$")
        assert account_service.verify_password("secret", hashed)
        assert not account_service.verify_password("Secret", hashed)

    def test__verify_password__malformed_hash(self) -> None:
        assert not account_service.verify_password("secret", "not-a-bcrypt-hash")

    def test__verify_password__overlong_password(self) -> None:
        hashed = account_service.hash_password("x" * 72)
        assert not account_service.verify_password("x" * 73, hashed)


class TestCreateAccount:
    """Tests for create_account function."""

    async def test__create_account__stores_hash(self, db: AsyncSession) -> None:
        account = await account_service.create_account(db, "  alice ", "pw", owner=True)

        assert account.username == "alice"
        assert account.owner is True
        assert account.config == AccountConfig()
        row = await account_service.get_account_by_username(db, "alice")
        assert row.password_hash != "pw"
        assert account_service.verify_password("pw", row.password_hash)

    async def test__create_account__duplicate(self, db: AsyncSession) -> None:
        await account_service.create_account(db, "alice", "pw")
        with pytest.raises(AccountAlreadyExistsError):
            await account_service.create_account(db, "alice", "other")

    @pytest.mark.parametrize(
        ("username", "password", "field"),
        [("", "pw", "username"), ("bob", "", "password"), ("bob", "x" * 73, "password")],
    )
    async def test__create_account__validation(
        self,
        db: AsyncSession,
        username: str,
        password: str,
        field: str,
    ) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await account_service.create_account(db, username, password)
        assert field in exc_info.value.errors


class TestQueryAccounts:
    """Listing and lookup."""

    async def test__list_accounts__filters(self, db: AsyncSession) -> None:
        await account_service.create_account(db, "carol", "pw")
        await account_service.create_account(db, "alice", "pw", owner=True)
        await account_service.create_account(db, "alicia", "pw")

        assert [a.username for a in await account_service.list_accounts(db)] == ["alice", "alicia", "carol"]
        assert [a.username for a in await account_service.list_accounts(db, keyword="ali")] == ["alice", "alicia"]
        assert [a.username for a in await account_service.list_accounts(db, username="carol")] == ["carol"]
        assert [a.username for a in await account_service.list_accounts(db, owner_only=True)] == ["alice"]

    async def test__count_accounts(self, db: AsyncSession) -> None:
        assert await account_service.count_accounts(db) == 0
        await account_service.create_account(db, "alice", "pw")
        assert await account_service.count_accounts(db) == 1

    async def test__get_account__missing(self, db: AsyncSession) -> None:
        with pytest.raises(AccountNotFoundError):
            await account_service.get_account(db, 42)


class TestUpdateAccount:
    """Tests for update_account function."""

    async def test__update_account__fields(self, db: AsyncSession) -> None:
        account = await account_service.create_account(db, "alice", "pw")

        updated = await account_service.update_account(
            db, account.id, username="alicia", password="new-pw", owner=True, config={"theme": "dark"},
        )

        assert (updated.username, updated.owner, updated.config.theme) == ("alicia", True, "dark")
        row = await account_service.get_account_by_username(db, "alicia")
        assert account_service.verify_password("new-pw", row.password_hash)

    async def test__update_account__none_leaves_fields(self, db: AsyncSession) -> None:
        account = await account_service.create_account(db, "alice", "pw", owner=True)
        updated = await account_service.update_account(db, account.id)
        assert updated == account

    async def test__update_account__username_taken(self, db: AsyncSession) -> None:
        await account_service.create_account(db, "alice", "pw")
        bob = await account_service.create_account(db, "bob", "pw")
        with pytest.raises(AccountAlreadyExistsError):
            await account_service.update_account(db, bob.id, username="alice")

    async def test__update_account__missing(self, db: AsyncSession) -> None:
        with pytest.raises(AccountNotFoundError):
            await account_service.update_account(db, 42, owner=True)


async def test__delete_account(db: AsyncSession) -> None:
    account = await account_service.create_account(db, "alice", "pw")

    await account_service.delete_account(db, account.id)

    assert await account_service.count_accounts(db) == 0
    with pytest.raises(AccountNotFoundError):
        await account_service.delete_account(db, account.id)
