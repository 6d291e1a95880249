"""Logging setup for TaskTree.

Every process (TUI, API server, CLI commands) calls setup_logging() once at
startup. Records go to a rotating file under ~/.tasktree/logs, or to the
Textual devtools console when running the TUI in dev mode. Modules obtain
their logger with get_logger(__name__).
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from textual.logging import TextualHandler


LOG_DIR = Path.home() / ".tasktree" / "logs"
LOG_FILE = LOG_DIR / "tasktree.log"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

MAX_BYTES = 10 * 1024 * 1024  # 10MB
BACKUP_COUNT = 5

# Libraries that log every request or statement at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "aiosqlite", "uvicorn.access")


def _resolve_level(log_level: Optional[str]) -> str:
    """Pick the level name from the argument or TASKTREE_LOG_LEVEL, INFO if unknown."""
    name = (log_level or os.getenv("TASKTREE_LOG_LEVEL", "INFO")).upper()
    if not isinstance(getattr(logging, name, None), int):
        return "INFO"
    return name


def setup_logging(
    log_level: Optional[str] = None,
    use_textual_handler: bool = False
) -> None:
    """Configure the root logger.

    Replaces any handlers already on the root logger, so calling this more
    than once is harmless.

    Args:
        log_level: Level name. Falls back to TASKTREE_LOG_LEVEL, then INFO.
        use_textual_handler: Send records to the Textual console instead of
                             the log file (``textual run --dev``).
    """
    level_name = _resolve_level(log_level)
    level = getattr(logging, level_name)

    LOG_DIR.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    if use_textual_handler:
        handler: logging.Handler = TextualHandler()
    else:
        handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=MAX_BYTES,
            backupCount=BACKUP_COUNT,
            encoding="utf-8"
        )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    root_logger.addHandler(handler)

    if level > logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    get_logger(__name__).info(
        f"Logging initialized: level={level_name}, file={LOG_FILE}, "
        f"textual_handler={use_textual_handler}"
    )


def get_logger(name: str) -> logging.Logger:
    """Return the logger for a module, e.g. ``get_logger(__name__)``."""
    return logging.getLogger(name)
