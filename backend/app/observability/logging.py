from __future__ import annotations

import logging

from app.config import settings

_configured = False


def configure_logging(level: str | None = None) -> None:
    """Configure root logging once for the process.

    Uvicorn installs its own handlers; we only attach ours when the root logger
    has none, so running under pytest or uvicorn does not duplicate lines.
    """
    global _configured
    if _configured:
        return

    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(settings.log_format))
        root.addHandler(handler)

    logging.getLogger("app").setLevel((level or settings.log_level).upper())
    # httpx logs every request at INFO; the tick sync would flood the output
    logging.getLogger("httpx").setLevel(logging.WARNING)
    _configured = True
