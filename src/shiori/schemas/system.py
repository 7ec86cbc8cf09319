"""Pydantic schemas for liveness and system information."""
from pydantic import BaseModel


class VersionInfo(BaseModel):
    """Build information."""

    version: str
    commit: str
    date: str


class SystemInfo(BaseModel):
    """Runtime information reported to owners."""

    version: VersionInfo
    database: str
    os: str
