"""Pydantic schemas for login and token endpoints."""
from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    """Username/password login."""

    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    remember_me: bool = False


class LoginResponse(BaseModel):
    """Issued bearer token and its expiry as a unix timestamp."""

    token: str
    expires: int
