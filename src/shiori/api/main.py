"""FastAPI application factory."""
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from shiori import __version__
from shiori.api.routers import accounts, auth, bookmarks, extension, files, system, tags
from shiori.core.config import get_settings
from shiori.core.dependencies import Dependencies
from shiori.core.request_context import RequestIdMiddleware
from shiori.db.migrations import MigrationRequiredError
from shiori.schemas.response import error
from shiori.services.exceptions import ValidationError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """
    Manage application lifespan - startup and shutdown.

    Startup brings the schema up to date (or, with auto-migrate disabled,
    refuses to start on an outdated schema).
    """
    deps: Dependencies = app.state.deps
    await deps.database.init()
    if deps.settings.db_auto_migrate:
        await deps.database.migrate()
    else:
        try:
            await deps.database.check_schema_version()
        except MigrationRequiredError:
            logger.critical("Database schema is outdated; run `shiori migrate` first")
            raise

    yield

    await deps.close()


def _validation_params(exc: RequestValidationError) -> dict[str, str]:
    params: dict[str, str] = {}
    for err in exc.errors():
        location = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        field = ".".join(location) or "body"
        params.setdefault(field, err.get("msg", "invalid value"))
    return params


async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render HTTPException in the response envelope."""
    return JSONResponse(
        status_code=exc.status_code,
        content=error(exc.detail),
        headers=getattr(exc, "headers", None),
    )


async def request_validation_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request validation errors are 400s naming the offending fields."""
    params = _validation_params(exc)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error("Invalid request", params),
    )


async def service_validation_handler(_request: Request, exc: ValidationError) -> JSONResponse:
    """Validation errors raised below the routers."""
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error(str(exc), exc.errors),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log unexpected failures with the request id and hide the details."""
    logger.exception(
        "Unhandled error on %s %s", request.method, request.url.path, exc_info=exc,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error("Internal server error"),
    )


def create_app(deps: Dependencies | None = None) -> FastAPI:
    """
    Build the application around an explicit `Dependencies` record.

    Args:
        deps: Process dependencies. Built from the environment when omitted,
            which is what `uvicorn --factory shiori.api.main:create_app` does.
    """
    if deps is None:
        deps = Dependencies.from_settings(get_settings())
    settings = deps.settings

    root_path = settings.http_root_path.rstrip("/")
    app = FastAPI(
        title="Shiori",
        description="Self-hosted bookmark manager.",
        version=__version__,
        lifespan=lifespan,
        root_path=root_path,
    )
    app.state.deps = deps

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(ValidationError, service_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.add_middleware(RequestIdMiddleware, access_log=settings.http_access_log)

    app.include_router(system.liveness_router)
    app.include_router(auth.router, prefix="/api/v1")
    app.include_router(accounts.router, prefix="/api/v1")
    app.include_router(bookmarks.router, prefix="/api/v1")
    app.include_router(tags.router, prefix="/api/v1")
    app.include_router(system.router, prefix="/api/v1")
    app.include_router(extension.router)
    app.include_router(files.router)
    return app
