"""Liveness and system information endpoints."""
import platform

from fastapi import APIRouter, Depends, Request

from shiori import __version__
from shiori.api.dependencies import get_dependencies, require_owner
from shiori.core.config import Settings
from shiori.schemas.response import Envelope, ok
from shiori.schemas.system import SystemInfo, VersionInfo

liveness_router = APIRouter(tags=["system"])
router = APIRouter(prefix="/system", tags=["system"], dependencies=[Depends(require_owner)])


def version_info(settings: Settings) -> VersionInfo:
    """Build information reported by liveness and `shiori version`."""
    return VersionInfo(version=__version__, commit=settings.build_commit, date=settings.build_date)


@liveness_router.get("/system/liveness", response_model=Envelope[VersionInfo])
async def liveness(request: Request) -> dict:
    """Unauthenticated check that the server is up."""
    return ok(version_info(get_dependencies(request).settings))


@router.get("/info", response_model=Envelope[SystemInfo])
async def system_info(request: Request) -> dict:
    """Version, database driver and platform of the running server."""
    deps = get_dependencies(request)
    return ok(
        SystemInfo(
            version=version_info(deps.settings),
            database=deps.database.dialect,
            os=f"{platform.system().lower()} ({platform.machine()})",
        ),
    )
