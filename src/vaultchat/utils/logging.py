"""Logging setup for command-line runs: a rotating log file plus optional stderr output."""

from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path

__all__ = ["setup_logging", "LOG_FILE_NAME"]

LOG_FILE_NAME = "vaultchat.log"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_QUIET_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")
_OWNED_MARKER = "_vaultchat_owned"


def setup_logging(
    level: int,
    log_dir: Path | str,
    *,
    console: bool = True,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
) -> Path:
    """Install vaultchat's handlers on the root logger and return the log file path.

    Calling it again swaps out the handlers from the previous call, so the CLI
    can reconfigure once settings are known. Handlers installed by anything
    else (pytest, an embedding application) are left alone.
    """

    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, _OWNED_MARKER, False):
            root.removeHandler(handler)
            handler.close()

    directory = Path(log_dir).expanduser()
    directory.mkdir(parents=True, exist_ok=True)
    log_path = directory / LOG_FILE_NAME

    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(
            log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
    ]
    if console:
        handlers.append(logging.StreamHandler(sys.stderr))

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        setattr(handler, _OWNED_MARKER, True)
        root.addHandler(handler)
    root.setLevel(level)
    logging.captureWarnings(True)

    # Client libraries log every request at INFO/DEBUG.
    quiet_level = max(level, logging.WARNING)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)
    return log_path
