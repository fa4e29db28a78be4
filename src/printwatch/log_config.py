"""Logging setup for printwatch.

Installs a console handler and a rotating file handler on the root
logger.  Every record is tagged with a short ``component`` attribute
(``discovery``, ``poller``, ...) derived from its logger name so the
interleaved output of the background threads stays readable.
"""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

_DEFAULT_LOG_DIR = os.path.join(str(Path.home()), ".printwatch", "logs")

_FORMAT = "%(asctime)s [%(threadName)s] %(component)s %(levelname)s %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


class ComponentFilter(logging.Filter):
    """Adds ``record.component``: the last dotted part of the logger name.

    ``printwatch.discovery`` becomes ``discovery``; foreign loggers keep
    their top-level package name (``zeroconf``, ``uvicorn``).
    """

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name
        if name.startswith("printwatch."):
            record.component = name.rsplit(".", 1)[-1]
        else:
            record.component = name.split(".", 1)[0]
        return True


def configure_logging(
    log_dir: Optional[str] = None,
    *,
    level: Optional[str] = None,
    max_bytes: int = 5_000_000,
    backup_count: int = 3,
    console: bool = True,
) -> None:
    """Configure console and rotating file logging.

    Safe to call more than once; handlers are only added once.

    :param log_dir: Directory for log files.  Reads ``PRINTWATCH_LOG_DIR``
        env var, then falls back to ``~/.printwatch/logs/``.
    :param level: Log level string.  Reads ``PRINTWATCH_LOG_LEVEL`` env
        var, then falls back to ``"INFO"``.
    :param max_bytes: Maximum log file size before rotation (default 5 MB).
    :param backup_count: Number of rotated log files to keep (default 3).
    :param console: Also log to stderr.
    """
    log_dir = log_dir or os.environ.get("PRINTWATCH_LOG_DIR", _DEFAULT_LOG_DIR)
    level = level or os.environ.get("PRINTWATCH_LOG_LEVEL", "INFO")
    log_level = getattr(logging, level.upper(), logging.INFO)

    os.makedirs(log_dir, exist_ok=True)
    log_path = os.path.join(log_dir, "printwatch.log")

    component_filter = ComponentFilter()
    formatter = logging.Formatter(_FORMAT, datefmt=_DATEFMT)

    root = logging.getLogger()
    root.setLevel(log_level)

    if not any(isinstance(h, RotatingFileHandler) for h in root.handlers):
        file_handler = RotatingFileHandler(log_path, maxBytes=max_bytes, backupCount=backup_count)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    has_console = any(
        type(h) is logging.StreamHandler for h in root.handlers  # noqa: E721
    )
    if console and not has_console:
        stream_handler = logging.StreamHandler()
        stream_handler.setLevel(log_level)
        stream_handler.setFormatter(formatter)
        root.addHandler(stream_handler)

    for handler in root.handlers:
        if not any(isinstance(f, ComponentFilter) for f in handler.filters):
            handler.addFilter(component_filter)

    # zeroconf is chatty at INFO about interface selection.
    logging.getLogger("zeroconf").setLevel(max(log_level, logging.WARNING))
