"""Log file and console handlers for StockLedger.

Every module logs through ``logging.getLogger(__name__)``; this module only
decides where those records go. The log file under ``<app dir>/logs`` always
receives them. The command line adds a stderr handler when ``--verbose`` is
given so sync warnings and request failures show up in the terminal too.
"""
from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

from core import app_paths

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
CONSOLE_FORMAT = "%(levelname)s %(name)s: %(message)s"
LOG_FILENAME = "stockledger.log"
CONSOLE_HANDLER_NAME = "stockledger-console"

_LOG_PATH: Optional[Path] = None


def _file_handler_installed(root: logging.Logger, log_path: Path) -> bool:
    target = str(log_path.resolve())
    return any(
        isinstance(handler, logging.FileHandler) and handler.baseFilename == target
        for handler in root.handlers
    )


def _console_handler(root: logging.Logger) -> Optional[logging.Handler]:
    for handler in root.handlers:
        if handler.get_name() == CONSOLE_HANDLER_NAME:
            return handler
    return None


def configure_logging(
    level: int = logging.INFO,
    path: Optional[Path] = None,
    *,
    console: bool = False,
) -> Path:
    """Send log records to the StockLedger log file, and to stderr if asked.

    Calling this again is safe: the file handler for a given path and the
    console handler are each installed once. ``console=True`` on a later call
    adds the stderr handler or lowers its level to ``level``.

    Returns the path of the log file.
    """

    global _LOG_PATH

    if path is not None:
        log_path = Path(path)
    else:
        log_path = _LOG_PATH or app_paths.logs_path(LOG_FILENAME)

    root = logging.getLogger()
    root.setLevel(level if not root.handlers else min(root.level, level))

    if not _file_handler_installed(root, log_path):
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(file_handler)

    if console:
        stream_handler = _console_handler(root)
        if stream_handler is None:
            stream_handler = logging.StreamHandler(sys.stderr)
            stream_handler.set_name(CONSOLE_HANDLER_NAME)
            stream_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
            root.addHandler(stream_handler)
        stream_handler.setLevel(level)

    _LOG_PATH = log_path
    root.debug("Logging to %s (console=%s)", log_path, console)
    return log_path


def get_log_path() -> Path:
    if _LOG_PATH is None:
        return configure_logging()
    return _LOG_PATH


__all__ = ["CONSOLE_FORMAT", "CONSOLE_HANDLER_NAME", "LOG_FORMAT", "configure_logging", "get_log_path"]
