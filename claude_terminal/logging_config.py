"""claude-terminal logging configuration.

Logging goes through loguru. The dashboard shares its terminal with tmux, so
only warnings reach stderr; everything else is written to a rotating file in
the platform log directory:

- macOS: ~/Library/Logs/claude-terminal/claude-terminal.log
- Linux: ~/.local/state/claude-terminal/log/claude-terminal.log
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Optional

import platformdirs
from loguru import logger

APP_NAME = "claude-terminal"
LOG_LEVEL_ENV = "CLAUDE_TERMINAL_LOG_LEVEL"
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[name]} | {message}"


def get_log_path() -> Path:
    log_dir = Path(platformdirs.user_log_dir(appname=APP_NAME, ensure_exists=True))
    return log_dir / f"{APP_NAME}.log"


def setup_logging(level: Optional[str] = None, *, log_file: Optional[Path] = None) -> None:
    """Configure claude-terminal logging.

    Args:
        level: Optional override for `CLAUDE_TERMINAL_LOG_LEVEL`.
        log_file: Optional file sink path (defaults to the platform log dir).
    """
    if level:
        os.environ[LOG_LEVEL_ENV] = level
    file_level = os.getenv(LOG_LEVEL_ENV, "INFO").upper()

    logger.remove()
    logger.configure(extra={"name": APP_NAME})
    logger.add(sys.stderr, level="WARNING", format="{level}: {message}")
    logger.add(
        str(log_file or get_log_path()),
        level=file_level,
        format=_FILE_FORMAT,
        rotation="10 MB",
        retention="7 days",
        enqueue=False,
    )


def get_logger(name: str):  # type: ignore[no-untyped-def]
    """Return a logger bound to a module name."""
    return logger.bind(name=name)
