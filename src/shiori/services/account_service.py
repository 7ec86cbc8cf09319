"""Service layer for account storage and password hashing."""
import logging
from typing import Any

import bcrypt
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shiori.models.account import Account
from shiori.schemas.account import AccountConfig, AccountDTO
from shiori.services.exceptions import (
    AccountAlreadyExistsError,
    AccountNotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

BCRYPT_ROUNDS = 10
# bcrypt only looks at the first 72 bytes and recent releases reject longer input
MAX_PASSWORD_BYTES = 72


def hash_password(password: str) -> str:
    """Hash a password with bcrypt (cost 10)."""
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode()


def verify_password(password: str, password_hash: str) -> bool:
    """Constant-time comparison of a password against a bcrypt hash."""
    encoded = password.encode()
    if len(encoded) > MAX_PASSWORD_BYTES:
        return False
    try:
        return bcrypt.checkpw(encoded, password_hash.encode())
    except ValueError:
        # Malformed hash in the database
        logger.warning("Stored password hash is not a valid bcrypt hash")
        return False


def _validate_password(password: str) -> None:
    if not password:
        raise ValidationError("password should not be empty", {"password": "should not be empty"})
    if len(password.encode()) > MAX_PASSWORD_BYTES:
        raise ValidationError(
            f"password must be at most {MAX_PASSWORD_BYTES} bytes",
            {"password": f"must be at most {MAX_PASSWORD_BYTES} bytes"},
        )


def _validate_username(username: str) -> str:
    username = username.strip()
    if not username:
        raise ValidationError("username should not be empty", {"username": "should not be empty"})
    return username


def to_dto(account: Account) -> AccountDTO:
    """Copy an ORM row into an `AccountDTO` (without the password hash)."""
    return AccountDTO(
        id=account.id,
        username=account.username,
        owner=account.owner,
        config=AccountConfig.model_validate(account.config or {}),
    )


async def count_accounts(db: AsyncSession) -> int:
    """Number of stored accounts."""
    return int(await db.scalar(select(func.count()).select_from(Account)) or 0)


async def get_account_by_username(db: AsyncSession, username: str) -> Account | None:
    """Return the account row (including its hash) for an exact username."""
    return await db.scalar(select(Account).where(Account.username == username))


async def get_account(db: AsyncSession, account_id: int) -> AccountDTO:
    """
    Get an account by id.

    Raises:
        AccountNotFoundError: If the account doesn't exist.
    """
    account = await db.get(Account, account_id)
    if account is None:
        raise AccountNotFoundError(account_id=account_id)
    return to_dto(account)


async def list_accounts(
    db: AsyncSession,
    keyword: str = "",
    username: str = "",
    owner_only: bool = False,
) -> list[AccountDTO]:
    """
    List accounts ordered by username.

    Args:
        db: Database session.
        keyword: Substring match on username.
        username: Exact username match.
        owner_only: Only return owner accounts.
    """
    stmt = select(Account)
    if keyword:
        stmt = stmt.where(Account.username.contains(keyword, autoescape=True))
    if username:
        stmt = stmt.where(Account.username == username)
    if owner_only:
        stmt = stmt.where(Account.owner.is_(True))
    stmt = stmt.order_by(Account.username.asc())

    result = await db.execute(stmt)
    return [to_dto(account) for account in result.scalars()]


async def create_account(
    db: AsyncSession,
    username: str,
    password: str,
    owner: bool = False,
    config: AccountConfig | None = None,
) -> AccountDTO:
    """
    Create an account with a bcrypt-hashed password.

    Raises:
        ValidationError: If username or password is empty.
        AccountAlreadyExistsError: If the username is taken.
    """
    username = _validate_username(username)
    _validate_password(password)

    if await get_account_by_username(db, username) is not None:
        raise AccountAlreadyExistsError(username)

    account = Account(
        username=username,
        password_hash=hash_password(password),
        owner=owner,
        config=(config or AccountConfig()).model_dump(),
    )
    db.add(account)
    try:
        await db.flush()
    except IntegrityError as e:
        raise AccountAlreadyExistsError(username) from e

    logger.info("Created account %r (owner=%s)", username, owner)
    return to_dto(account)


async def update_account(
    db: AsyncSession,
    account_id: int,
    *,
    username: str | None = None,
    password: str | None = None,
    owner: bool | None = None,
    config: AccountConfig | dict[str, Any] | None = None,
) -> AccountDTO:
    """
    Partially update an account. Fields left as None are unchanged.

    Raises:
        AccountNotFoundError: If the account doesn't exist.
        AccountAlreadyExistsError: If the new username is taken.
        ValidationError: If a supplied username or password is empty.
    """
    account = await db.get(Account, account_id)
    if account is None:
        raise AccountNotFoundError(account_id=account_id)

    if username is not None:
        username = _validate_username(username)
        if username != account.username:
            taken = await db.scalar(
                select(Account.id).where(Account.username == username, Account.id != account_id),
            )
            if taken is not None:
                raise AccountAlreadyExistsError(username)
            account.username = username

    if password is not None:
        _validate_password(password)
        account.password_hash = hash_password(password)

    if owner is not None:
        account.owner = owner

    if config is not None:
        account.config = AccountConfig.model_validate(config).model_dump()

    try:
        await db.flush()
    except IntegrityError as e:
        raise AccountAlreadyExistsError(account.username) from e
    return to_dto(account)


async def delete_account(db: AsyncSession, account_id: int) -> None:
    """
    Delete an account. Bookmarks are not owned by accounts and stay.

    Raises:
        AccountNotFoundError: If the account doesn't exist.
    """
    result = await db.execute(delete(Account).where(Account.id == account_id))
    if result.rowcount == 0:
        raise AccountNotFoundError(account_id=account_id)
    await db.flush()

