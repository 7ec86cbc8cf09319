"""Request-scoped context: request id propagation and access logging."""
import logging
import time
import uuid
from contextvars import ContextVar

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

REQUEST_ID_HEADER = "X-Request-ID"

_request_id: ContextVar[str | None] = ContextVar("request_id", default=None)

access_logger = logging.getLogger("shiori.access")


class RequestIdFilter(logging.Filter):
    """Attach the current request id to every log record as `request_id`."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id.get() or "-"
        return True


class RequestIdMiddleware(BaseHTTPMiddleware):
    """
    Generate a UUIDv4 request id for every request.

    The id is stored in a context variable for log records and echoed back in
    the `X-Request-ID` response header. When `access_log` is enabled one line is
    logged per request.
    """

    def __init__(self, app, access_log: bool = True) -> None:  # noqa: ANN001
        super().__init__(app)
        self.access_log = access_log

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint,
    ) -> Response:
        """Assign the request id, call the handler and log the outcome."""
        request_id = str(uuid.uuid4())
        token = _request_id.set(request_id)
        request.state.request_id = request_id
        started = time.perf_counter()
        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id
            if self.access_log:
                access_logger.info(
                    "%s %s %d %.1fms",
                    request.method,
                    request.url.path,
                    response.status_code,
                    (time.perf_counter() - started) * 1000,
                )
            return response
        finally:
            _request_id.reset(token)
