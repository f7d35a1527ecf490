"""Logging setup shared by all modules."""

import logging
import sys
from typing import Optional

from pythonjsonlogger.json import JsonFormatter

_TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
_JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

_configured = False


def setup_logging(level: str = "INFO", fmt: str = "json", stream: Optional[object] = None) -> None:
    """Configure the root logger.

    Args:
        level: Log level name (DEBUG, INFO, ...).
        fmt: "json" for structured output, anything else for plain text.
        stream: Output stream, stderr by default.
    """
    global _configured

    root = logging.getLogger()
    root.setLevel(level.upper())

    handler = logging.StreamHandler(stream or sys.stderr)
    if fmt == "json":
        handler.setFormatter(
            JsonFormatter(_JSON_FORMAT, rename_fields={"levelname": "level", "name": "logger"})
        )
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT))

    if _configured:
        for existing in list(root.handlers):
            if getattr(existing, "_ragcache", False):
                root.removeHandler(existing)

    handler._ragcache = True
    root.addHandler(handler)
    _configured = True

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a module logger."""
    return logging.getLogger(name)
