"""Uniform response envelope shared by every JSON endpoint."""
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class Envelope(BaseModel, Generic[T]):
    """
    `{ok, message, error_params?}` wrapper.

    `message` carries the payload on success and a human readable error (or
    structured detail) on failure. `error_params` maps field names to
    validation messages.
    """

    ok: bool = True
    message: T
    error_params: dict[str, str] | None = None


def ok(message: Any) -> dict[str, Any]:
    """Success envelope for handlers that build their payload by hand."""
    return {"ok": True, "message": message}


def error(message: Any, error_params: dict[str, str] | None = None) -> dict[str, Any]:
    """Failure envelope; `error_params` is omitted when empty."""
    body: dict[str, Any] = {"ok": False, "message": message}
    if error_params:
        body["error_params"] = error_params
    return body
