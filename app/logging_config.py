"""Process-wide logging setup."""

from __future__ import annotations

import logging

_FORMAT = "[%(asctime)s] %(levelname)s - %(name)s - %(message)s"

# Third-party loggers that are too chatty at INFO
_QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def configure_logging(level: str = "INFO") -> None:
    """Install a stream handler on the root logger if none is present.

    Existing handlers (pytest's capture handler, uvicorn's) are left alone so
    this is safe to call more than once.
    """
    root = logging.getLogger()
    root.setLevel(level.upper())

    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT))
        root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
