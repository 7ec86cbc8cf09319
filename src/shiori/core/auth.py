"""Authentication dependencies: bearer tokens, the token cookie and proxy SSO."""
import ipaddress
import logging

from fastapi import Depends, HTTPException, Request, Response, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from shiori.core.config import Settings
from shiori.db.session import get_dependencies
from shiori.schemas.account import AccountDTO
from shiori.services import account_service, auth_service
from shiori.services.exceptions import UnauthorizedError

logger = logging.getLogger(__name__)

TOKEN_COOKIE = "token"

# HTTP Bearer token scheme
security = HTTPBearer(auto_error=False)


def is_trusted_proxy(client_host: str | None, settings: Settings) -> bool:
    """True if `client_host` lies inside one of the trusted SSO networks."""
    if not client_host:
        return False
    try:
        address = ipaddress.ip_address(client_host)
    except ValueError:
        return False
    return any(address in network for network in settings.trusted_proxy_networks)


async def get_account_from_proxy(
    request: Request,
    db: AsyncSession,
    settings: Settings,
) -> AccountDTO | None:
    """
    Resolve the identity asserted by a trusted reverse proxy.

    The peer address is checked against the trusted networks before the
    header is even read; a header from anywhere else is ignored.
    """
    client_host = request.client.host if request.client else None
    if not is_trusted_proxy(client_host, settings):
        return None

    username = request.headers.get(settings.http_sso_proxy_auth_header_name, "").strip()
    if not username:
        return None

    account = await account_service.get_account_by_username(db, username)
    if account is None:
        logger.warning("SSO proxy asserted unknown user %r", username)
        return None
    return account_service.to_dto(account)


async def _resolve_account(
    request: Request,
    response: Response,
    credentials: HTTPAuthorizationCredentials | None,
    db: AsyncSession,
    settings: Settings,
) -> AccountDTO | None:
    if settings.http_sso_proxy_auth:
        account = await get_account_from_proxy(request, db, settings)
        if account is not None:
            return account

    from_cookie = credentials is None
    token = credentials.credentials if credentials is not None else request.cookies.get(TOKEN_COOKIE)
    if not token:
        return None

    try:
        return await auth_service.check_token(db, token, settings)
    except UnauthorizedError as e:
        logger.debug("Ignoring token: %s", e)
        if from_cookie:
            response.delete_cookie(TOKEN_COOKIE, path=settings.http_root_path)
        return None


async def get_current_account(
    request: Request,
    response: Response,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> AccountDTO | None:
    """
    Return the authenticated account, or None for anonymous requests.

    Order: trusted proxy header (when SSO is enabled), then the
    `Authorization: Bearer` header, then the `token` cookie. An invalid or
    expired token makes the request anonymous and clears the cookie.

    The lookup uses its own reader session, returned to the pool before the
    route runs: ingestion routes open further reader sessions themselves.
    """
    deps = get_dependencies(request)
    async with deps.database.reader() as db:
        account = await _resolve_account(request, response, credentials, db, deps.settings)

    if account is not None:
        request.state.account = account
    return account


async def require_user(
    account: AccountDTO | None = Depends(get_current_account),
) -> AccountDTO:
    """Require a logged-in account (owner or visitor)."""
    if account is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return account


async def require_owner(account: AccountDTO = Depends(require_user)) -> AccountDTO:
    """Require a logged-in owner account."""
    if not account.owner:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return account
