"""
Authentication domain: credential checks and signed bearer tokens.

Tokens are HS256 JWTs carrying `account_id`, `iat` and `exp`. They are
stateless; logging out simply drops the token on the client.
"""
import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import jwt
from sqlalchemy.ext.asyncio import AsyncSession

from shiori.core.config import Settings
from shiori.schemas.account import AccountDTO
from shiori.services import account_service
from shiori.services.exceptions import (
    AccountNotFoundError,
    InvalidCredentialsError,
    UnauthorizedError,
)

logger = logging.getLogger(__name__)

TOKEN_ALGORITHM = "HS256"
LOGIN_EXPIRATION = timedelta(hours=1)
REMEMBER_ME_EXPIRATION = timedelta(days=30)
REFRESH_EXPIRATION = timedelta(hours=72)

# Id of the transient owner produced by the bootstrap login
BOOTSTRAP_ACCOUNT_ID = 0

# Checked when the username is unknown so both paths cost one bcrypt round
_DUMMY_HASH = account_service.hash_password("shiori-dummy-password")


@dataclass(frozen=True)
class TokenClaims:
    """Decoded token payload."""

    account_id: int
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class IssuedToken:
    """A freshly signed token and its expiry."""

    token: str
    expires_at: datetime


def create_token(
    account_id: int,
    secret_key: str,
    expires_in: timedelta,
    now: datetime | None = None,
) -> IssuedToken:
    """
    Sign a token for `account_id`.

    Args:
        account_id: Account the token authenticates.
        secret_key: HMAC signing key.
        expires_in: Lifetime from `now`.
        now: Issue time, defaults to the current UTC time.
    """
    issued_at = (now or datetime.now(UTC)).replace(microsecond=0)
    expires_at = issued_at + expires_in
    payload = {
        "account_id": account_id,
        "iat": int(issued_at.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    token = jwt.encode(payload, secret_key, algorithm=TOKEN_ALGORITHM)
    return IssuedToken(token=token, expires_at=expires_at)


def decode_token(token: str, secret_key: str) -> TokenClaims:
    """
    Verify signature and expiry of a token.

    Raises:
        UnauthorizedError: If the token is malformed, tampered with or expired.
    """
    try:
        payload = jwt.decode(
            token,
            secret_key,
            algorithms=[TOKEN_ALGORITHM],
            options={"require": ["exp", "iat", "account_id"]},
        )
    except jwt.ExpiredSignatureError as e:
        raise UnauthorizedError("Token has expired") from e
    except jwt.PyJWTError as e:
        logger.debug("Token validation failed: %s", e)
        raise UnauthorizedError("Invalid token") from e

    account_id = payload["account_id"]
    if not isinstance(account_id, int) or isinstance(account_id, bool):
        raise UnauthorizedError("Invalid token")

    return TokenClaims(
        account_id=account_id,
        issued_at=datetime.fromtimestamp(payload["iat"], UTC),
        expires_at=datetime.fromtimestamp(payload["exp"], UTC),
    )


def bootstrap_account(settings: Settings) -> AccountDTO:
    """The transient owner used while no account exists."""
    return AccountDTO(id=BOOTSTRAP_ACCOUNT_ID, username=settings.default_username, owner=True)


async def _bootstrap_allowed(db: AsyncSession, settings: Settings) -> bool:
    if not settings.default_login_enabled:
        return False
    return await account_service.count_accounts(db) == 0


async def get_account_from_credentials(
    db: AsyncSession,
    username: str,
    password: str,
    settings: Settings,
) -> AccountDTO:
    """
    Check a username/password pair.

    While the account table is empty (and the bootstrap login is enabled) the
    configured default credentials authenticate as a transient owner.

    Raises:
        InvalidCredentialsError: If the pair doesn't match.
    """
    account = await account_service.get_account_by_username(db, username)
    if account is None:
        account_service.verify_password(password, _DUMMY_HASH)
        if (
            username == settings.default_username
            and password == settings.default_password
            and await _bootstrap_allowed(db, settings)
        ):
            logger.warning(
                "Default credentials used to log in; create an owner account "
                "and change the password",
            )
            return bootstrap_account(settings)
        raise InvalidCredentialsError

    if not account_service.verify_password(password, account.password_hash):
        raise InvalidCredentialsError
    return account_service.to_dto(account)


async def check_token(db: AsyncSession, token: str, settings: Settings) -> AccountDTO:
    """
    Resolve a bearer token to its account.

    Raises:
        UnauthorizedError: If the token is invalid, expired or names an account
            that no longer exists.
    """
    claims = decode_token(token, settings.http_secret_key)

    if claims.account_id == BOOTSTRAP_ACCOUNT_ID:
        if await _bootstrap_allowed(db, settings):
            return bootstrap_account(settings)
        raise UnauthorizedError("Invalid token")

    try:
        return await account_service.get_account(db, claims.account_id)
    except AccountNotFoundError as e:
        raise UnauthorizedError("Invalid token") from e


def create_login_token(account: AccountDTO, settings: Settings, remember_me: bool) -> IssuedToken:
    """Token for a fresh login: 30 days with remember-me, 1 hour otherwise."""
    expires_in = REMEMBER_ME_EXPIRATION if remember_me else LOGIN_EXPIRATION
    return create_token(account.id, settings.http_secret_key, expires_in)


def refresh_token(account: AccountDTO, settings: Settings) -> IssuedToken:
    """Re-issue a 72 hour token for an already authenticated account."""
    return create_token(account.id, settings.http_secret_key, REFRESH_EXPIRATION)
