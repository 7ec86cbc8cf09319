"""Login, token refresh and self-service account endpoints."""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from shiori.api.dependencies import get_dependencies, get_reader_session, get_writer_session, require_user
from shiori.core.auth import TOKEN_COOKIE
from shiori.schemas.account import AccountDTO, AccountSelfUpdate
from shiori.schemas.auth import LoginRequest, LoginResponse
from shiori.schemas.response import Envelope, ok
from shiori.services import account_service, auth_service
from shiori.services.auth_service import BOOTSTRAP_ACCOUNT_ID, IssuedToken
from shiori.services.exceptions import (
    AccountAlreadyExistsError,
    AccountNotFoundError,
    InvalidCredentialsError,
    ValidationError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def _login_payload(request: Request, response: Response, issued: IssuedToken) -> dict:
    settings = get_dependencies(request).settings
    expires = int(issued.expires_at.timestamp())
    response.set_cookie(
        TOKEN_COOKIE,
        issued.token,
        expires=issued.expires_at,
        path=settings.http_root_path,
        httponly=True,
        samesite="lax",
    )
    return ok(LoginResponse(token=issued.token, expires=expires).model_dump())


@router.post("/login", response_model=Envelope[LoginResponse])
async def login(
    data: LoginRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_reader_session),
) -> dict:
    """
    Exchange username and password for a bearer token.

    The token is also set as the `token` cookie. With `remember_me` it is
    valid for 30 days, otherwise for one hour.
    """
    settings = get_dependencies(request).settings
    try:
        account = await auth_service.get_account_from_credentials(
            db, data.username, data.password, settings,
        )
    except InvalidCredentialsError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e)) from e

    issued = auth_service.create_login_token(account, settings, data.remember_me)
    logger.info("Account %r logged in", account.username)
    return _login_payload(request, response, issued)


@router.post("/refresh", response_model=Envelope[LoginResponse])
async def refresh(
    request: Request,
    response: Response,
    account: AccountDTO = Depends(require_user),
) -> dict:
    """Issue a fresh 72 hour token for the current account."""
    issued = auth_service.refresh_token(account, get_dependencies(request).settings)
    return _login_payload(request, response, issued)


@router.get("/me", response_model=Envelope[AccountDTO])
async def me(account: AccountDTO = Depends(require_user)) -> dict:
    """Return the current account."""
    return ok(account)


@router.patch("/account", response_model=Envelope[AccountDTO])
async def update_own_account(
    data: AccountSelfUpdate,
    account: AccountDTO = Depends(require_user),
    db: AsyncSession = Depends(get_writer_session),
) -> dict:
    """
    Change the caller's own password and/or preferences.

    A new password is only accepted together with the correct current one.
    Existing tokens stay valid until they expire.
    """
    if account.id == BOOTSTRAP_ACCOUNT_ID:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="The default account cannot be changed; create an account first",
        )

    if data.new_password:
        row = await account_service.get_account_by_username(db, account.username)
        if row is None or not account_service.verify_password(data.old_password or "", row.password_hash):
            raise ValidationError("Old password is incorrect", {"old_password": "is incorrect"})

    try:
        updated = await account_service.update_account(
            db,
            account.id,
            password=data.new_password or None,
            config=data.config,
        )
    except AccountNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except AccountAlreadyExistsError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    return ok(updated)


@router.post("/logout", response_model=Envelope[None])
async def logout(
    request: Request,
    response: Response,
    _account: AccountDTO = Depends(require_user),
) -> dict:
    """Tokens are stateless; logging out only drops the cookie."""
    response.delete_cookie(TOKEN_COOKIE, path=get_dependencies(request).settings.http_root_path)
    return ok(None)
