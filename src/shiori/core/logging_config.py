"""Process-wide logging setup."""
import logging

from shiori.core.config import Settings
from shiori.core.request_context import RequestIdFilter

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s"


def configure_logging(settings: Settings) -> None:
    """
    Configure the root logger once per process.

    Installs a single stream handler that tags every record with the current
    request id. Calling it again replaces the handler instead of duplicating it.
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, "_shiori_handler", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler()
    handler._shiori_handler = True  # type: ignore[attr-defined]
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(RequestIdFilter())
    root.addHandler(handler)
    root.setLevel(settings.log_level.upper())

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
