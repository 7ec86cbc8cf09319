"""Account management endpoints (owners only)."""
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from shiori.api.dependencies import get_reader_session, get_writer_session, require_owner
from shiori.schemas.account import AccountCreate, AccountDTO, AccountUpdate
from shiori.schemas.response import Envelope, ok
from shiori.services import account_service
from shiori.services.exceptions import AccountAlreadyExistsError, AccountNotFoundError

router = APIRouter(prefix="/accounts", tags=["accounts"], dependencies=[Depends(require_owner)])


@router.get("", response_model=Envelope[list[AccountDTO]])
async def list_accounts(
    keyword: str = Query(default="", description="Substring match on username"),
    username: str = Query(default="", description="Exact username"),
    owner: bool = Query(default=False, description="Only owner accounts"),
    db: AsyncSession = Depends(get_reader_session),
) -> dict:
    """List accounts ordered by username."""
    accounts = await account_service.list_accounts(db, keyword, username, owner)
    return ok(accounts)


@router.post("", response_model=Envelope[AccountDTO], status_code=status.HTTP_201_CREATED)
async def create_account(
    data: AccountCreate,
    db: AsyncSession = Depends(get_writer_session),
) -> dict:
    """
    Create an account.

    Returns 409 if the username is taken.
    """
    try:
        account = await account_service.create_account(
            db, data.username, data.password, data.owner, data.config,
        )
    except AccountAlreadyExistsError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    return ok(account)


@router.get("/{account_id}", response_model=Envelope[AccountDTO])
async def get_account(
    account_id: int,
    db: AsyncSession = Depends(get_reader_session),
) -> dict:
    """Get one account."""
    try:
        account = await account_service.get_account(db, account_id)
    except AccountNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    return ok(account)


@router.patch("/{account_id}", response_model=Envelope[AccountDTO])
async def update_account(
    account_id: int,
    data: AccountUpdate,
    db: AsyncSession = Depends(get_writer_session),
) -> dict:
    """
    Partially update an account.

    Returns 404 if the account doesn't exist.
    Returns 409 if the new username is taken.
    """
    try:
        account = await account_service.update_account(
            db,
            account_id,
            username=data.username,
            password=data.password,
            owner=data.owner,
            config=data.config,
        )
    except AccountNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except AccountAlreadyExistsError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    return ok(account)


@router.delete("/{account_id}", response_model=Envelope[None])
async def delete_account(
    account_id: int,
    db: AsyncSession = Depends(get_writer_session),
) -> dict:
    """Delete an account. Bookmarks are kept."""
    try:
        await account_service.delete_account(db, account_id)
    except AccountNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    return ok(None)
