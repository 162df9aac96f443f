"""
Logging for HashlineKit.

Console output goes to stderr (stdout carries CLI results and MCP frames),
optional file output is one JSON object per line.

Usage:
    from hl_log import setup_logger, get_logger

    # Once, at process start (hl.main and hl_mcp do this)
    setup_logger(level="DEBUG", log_file="hashline.log")

    # In modules
    logger = get_logger(__name__)
    logger.debug("Relocated anchor", extra={"file_path": "app.py", "line_number": 12})

Defaults come from the HASHLINEKIT_LOG_LEVEL and HASHLINEKIT_LOG_FILE
environment variables. Importing the library never installs handlers.
"""

import json
import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

LOGGER_NAME = "hashlinekit"
ENV_LOG_LEVEL = "HASHLINEKIT_LOG_LEVEL"
ENV_LOG_FILE = "HASHLINEKIT_LOG_FILE"

_CONTEXT_FIELDS = ("file_path", "line_number", "edit_index", "operation")


class ConsoleFormatter(logging.Formatter):
    """Colorized single-line formatter for stderr."""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m',
    }

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        level = record.levelname
        if self.use_colors:
            parts = [f"{self.COLORS.get(level, '')}{level}{self.COLORS['RESET']}"]
        else:
            parts = [level]

        parts.append(f"{record.name}:")
        file_path = getattr(record, "file_path", None)
        if file_path:
            line_number = getattr(record, "line_number", None)
            parts.append(f"({file_path}:{line_number})" if line_number else f"({file_path})")
        parts.append(record.getMessage())

        text = " ".join(parts)
        if record.exc_info:
            text += "\n" + self.formatException(record.exc_info)
        return text


class JSONFormatter(logging.Formatter):
    """JSON formatter for file logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            'timestamp': datetime.now().isoformat(),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name,
        }
        for field in _CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = value
        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


def _resolve_level(level: Union[int, str, None]) -> int:
    if level is None:
        level = os.environ.get(ENV_LOG_LEVEL, "WARNING")
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level}")
    return resolved


def setup_logger(
    level: Union[int, str, None] = None,
    log_file: Optional[Union[str, Path]] = None,
    console: bool = True,
    use_colors: bool = True,
) -> logging.Logger:
    """
    Configure the ``hashlinekit`` logger hierarchy.

    Args:
        level: Logging level name or number (default: $HASHLINEKIT_LOG_LEVEL or WARNING)
        log_file: Path to a JSON-lines log file (default: $HASHLINEKIT_LOG_FILE)
        console: Enable stderr output
        use_colors: Use ANSI colors when stderr is a terminal

    Returns:
        The configured root logger of the hierarchy
    """
    resolved = _resolve_level(level)
    if log_file is None:
        log_file = os.environ.get(ENV_LOG_FILE) or None

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(resolved)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(resolved)
        console_handler.setFormatter(ConsoleFormatter(use_colors))
        logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding='utf-8')
        file_handler.setLevel(resolved)
        file_handler.setFormatter(JSONFormatter())
        logger.addHandler(file_handler)

    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return ``hashlinekit`` or a child of it (``hashlinekit.<name>``)."""
    if not name or name == LOGGER_NAME:
        return logging.getLogger(LOGGER_NAME)
    if name.startswith(LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{LOGGER_NAME}.{name}")
