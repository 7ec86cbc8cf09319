"""Tests for credential checks and token signing."""
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta

import jwt
import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from shiori.core.config import Settings
from shiori.core.dependencies import Dependencies
from shiori.services import account_service, auth_service
from shiori.services.auth_service import BOOTSTRAP_ACCOUNT_ID, TOKEN_ALGORITHM
from shiori.services.exceptions import InvalidCredentialsError, UnauthorizedError
from tests.conftest import TEST_SECRET_KEY


@pytest.fixture
async def db(deps: Dependencies) -> AsyncGenerator[AsyncSession]:
    async with deps.database.writer() as session:
        yield session


class TestTokens:
    """Tests for create_token and decode_token functions."""

    def test__create_token__claims(self) -> None:
        now = datetime(2024, 1, 1, 12, 0, 0, 500, tzinfo=UTC)

        issued = auth_service.create_token(7, TEST_SECRET_KEY, timedelta(hours=1), now=now)

        payload = jwt.decode(
            issued.token, TEST_SECRET_KEY, algorithms=[TOKEN_ALGORITHM], options={"verify_exp": False},
        )
        assert payload == {
            "account_id": 7,
            "iat": int(datetime(2024, 1, 1, 12, tzinfo=UTC).timestamp()),
            "exp": int(datetime(2024, 1, 1, 13, tzinfo=UTC).timestamp()),
        }
        assert issued.expires_at == datetime(2024, 1, 1, 13, tzinfo=UTC)

    def test__decode_token__round_trip(self) -> None:
        issued = auth_service.create_token(3, TEST_SECRET_KEY, timedelta(minutes=5))
        claims = auth_service.decode_token(issued.token, TEST_SECRET_KEY)
        assert claims.account_id == 3
        assert claims.expires_at == issued.expires_at

    def test__decode_token__expired(self) -> None:
        issued = auth_service.create_token(
            3, TEST_SECRET_KEY, timedelta(hours=1), now=datetime.now(UTC) - timedelta(hours=2),
        )
        with pytest.raises(UnauthorizedError, match="expired"):
            auth_service.decode_token(issued.token, TEST_SECRET_KEY)

    def test__decode_token__wrong_key(self) -> None:
        issued = auth_service.create_token(3, TEST_SECRET_KEY, timedelta(hours=1))
        with pytest.raises(UnauthorizedError, match="Invalid token"):
            auth_service.decode_token(issued.token, "another-secret-key-that-is-long-enough")

    def test__decode_token__garbage(self) -> None:
        with pytest.raises(UnauthorizedError):
            auth_service.decode_token("not.a.token", TEST_SECRET_KEY)

    @pytest.mark.parametrize("account_id", ["7", True, None])
    def test__decode_token__account_id_must_be_int(self, account_id: object) -> None:
        now = datetime.now(UTC)
        token = jwt.encode(
            {
                "account_id": account_id,
                "iat": int(now.timestamp()),
                "exp": int((now + timedelta(hours=1)).timestamp()),
            },
            TEST_SECRET_KEY,
            algorithm=TOKEN_ALGORITHM,
        )
        with pytest.raises(UnauthorizedError):
            auth_service.decode_token(token, TEST_SECRET_KEY)

    def test__decode_token__missing_exp(self) -> None:
        token = jwt.encode({"account_id": 1, "iat": 0}, TEST_SECRET_KEY, algorithm=TOKEN_ALGORITHM)
        with pytest.raises(UnauthorizedError):
            auth_service.decode_token(token, TEST_SECRET_KEY)


class TestCredentials:
    """Tests for get_account_from_credentials function."""

    async def test__credentials__valid(self, db: AsyncSession, settings: Settings) -> None:
        created = await account_service.create_account(db, "alice", "pw")
        account = await auth_service.get_account_from_credentials(db, "alice", "pw", settings)
        assert account == created

    async def test__credentials__wrong_password(self, db: AsyncSession, settings: Settings) -> None:
        await account_service.create_account(db, "alice", "pw")
        with pytest.raises(InvalidCredentialsError):
            await auth_service.get_account_from_credentials(db, "alice", "nope", settings)

    async def test__credentials__unknown_user(self, db: AsyncSession, settings: Settings) -> None:
        await account_service.create_account(db, "alice", "pw")
        with pytest.raises(InvalidCredentialsError):
            await auth_service.get_account_from_credentials(db, "bob", "pw", settings)

    async def test__credentials__bootstrap_while_empty(self, db: AsyncSession, settings: Settings) -> None:
        account = await auth_service.get_account_from_credentials(db, "shiori", "gopher", settings)
        assert (account.id, account.username, account.owner) == (BOOTSTRAP_ACCOUNT_ID, "shiori", True)

    async def test__credentials__bootstrap_gone_once_accounts_exist(
        self,
        db: AsyncSession,
        settings: Settings,
    ) -> None:
        await account_service.create_account(db, "alice", "pw", owner=True)
        with pytest.raises(InvalidCredentialsError):
            await auth_service.get_account_from_credentials(db, "shiori", "gopher", settings)

    async def test__credentials__bootstrap_disabled(self, db: AsyncSession, settings: Settings) -> None:
        settings = settings.model_copy(update={"default_login_enabled": False})
        with pytest.raises(InvalidCredentialsError):
            await auth_service.get_account_from_credentials(db, "shiori", "gopher", settings)


class TestCheckToken:
    """Tests for check_token function."""

    async def test__check_token__resolves_account(self, db: AsyncSession, settings: Settings) -> None:
        created = await account_service.create_account(db, "alice", "pw", owner=True)
        issued = auth_service.create_login_token(created, settings, remember_me=False)

        assert await auth_service.check_token(db, issued.token, settings) == created

    async def test__check_token__deleted_account(self, db: AsyncSession, settings: Settings) -> None:
        created = await account_service.create_account(db, "alice", "pw")
        issued = auth_service.create_login_token(created, settings, remember_me=False)
        await account_service.delete_account(db, created.id)

        with pytest.raises(UnauthorizedError):
            await auth_service.check_token(db, issued.token, settings)

    async def test__check_token__bootstrap_revoked_by_first_account(
        self,
        db: AsyncSession,
        settings: Settings,
    ) -> None:
        issued = auth_service.create_login_token(auth_service.bootstrap_account(settings), settings, True)
        assert (await auth_service.check_token(db, issued.token, settings)).id == BOOTSTRAP_ACCOUNT_ID

        await account_service.create_account(db, "alice", "pw", owner=True)

        with pytest.raises(UnauthorizedError):
            await auth_service.check_token(db, issued.token, settings)


def test__token_lifetimes(settings: Settings) -> None:
    account = auth_service.bootstrap_account(settings)
    start = datetime.now(UTC).replace(microsecond=0)

    short = auth_service.create_login_token(account, settings, remember_me=False)
    long = auth_service.create_login_token(account, settings, remember_me=True)
    refreshed = auth_service.refresh_token(account, settings)

    assert short.expires_at - start in (timedelta(hours=1), timedelta(hours=1, seconds=1))
    assert long.expires_at - start in (timedelta(days=30), timedelta(days=30, seconds=1))
    assert refreshed.expires_at - start in (timedelta(hours=72), timedelta(hours=72, seconds=1))
