"""Logging setup for the agent and its command line entry point."""

from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

__all__ = ["setup_logging", "get_log_path", "resolve_level"]

LOG_DIR_ENV = "THIMBLE_LOG_DIR"
_DEFAULT_LOG_DIR = Path.home() / ".thimble" / "logs"
_FILE_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"
_CONSOLE_FORMAT = "%(levelname)s %(name)s: %(message)s"
# Transport libraries log every request at DEBUG.
_QUIET_LOGGERS = ("asyncio", "httpx", "httpcore", "openai")

_CONFIGURED = False
_LOG_PATH: Path | None = None


def resolve_level(debug: bool) -> int:
    return logging.DEBUG if debug else logging.INFO


def get_log_path() -> Path | None:
    """Return the active log file, or ``None`` before :func:`setup_logging`."""

    return _LOG_PATH


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Send root logging to ``thimble.log`` and optionally to stderr.

    The log directory is *log_dir*, else ``$THIMBLE_LOG_DIR``, else
    ``~/.thimble/logs``. Only the first call configures anything unless
    *force* is set; later calls return the existing log path.
    """

    global _CONFIGURED, _LOG_PATH
    if _CONFIGURED and _LOG_PATH is not None and not force:
        return _LOG_PATH

    directory = Path(log_dir or os.environ.get(LOG_DIR_ENV) or _DEFAULT_LOG_DIR).expanduser()
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / "thimble.log"

    file_handler = RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(_FILE_FORMAT))
    handlers: list[logging.Handler] = [file_handler]
    if console:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
        handlers.append(stream_handler)
    for handler in handlers:
        handler.setLevel(level)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.captureWarnings(True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    _CONFIGURED, _LOG_PATH = True, path
    return path
