"""Logging setup for the gift wheel service.

``get_logger(name)`` installs the shared handlers on first use: a console
stream and a size-rotated file (``giftwheel.log`` at the project root unless
``LOG_FILE`` says otherwise). ``LOG_LEVEL`` picks the level; ``LOG_FILE=-``
disables the file handler.
"""
from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

DEFAULT_LOG_FILE = Path(__file__).resolve().parents[3] / 'giftwheel.log'
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
MAX_LOG_BYTES = 5 * 1024 * 1024
LOG_BACKUPS = 3

# uvicorn already logs every request through its own access logger
QUIET_LOGGERS = ('uvicorn.access', 'httpx')

_handlers_installed = False


def _resolve_log_file(value: str) -> Optional[Path]:
    if value == '-':
        return None
    return Path(value) if value else DEFAULT_LOG_FILE


def configure_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> None:
    """Install console and file handlers on the root logger (once)."""
    global _handlers_installed
    if _handlers_installed:
        return

    level_name = (level or os.getenv('LOG_LEVEL', 'INFO')).upper()
    numeric_level = getattr(logging, level_name, logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT)

    root = logging.getLogger()
    root.setLevel(numeric_level)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    path = _resolve_log_file(log_file if log_file is not None else os.getenv('LOG_FILE', ''))
    if path is not None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            rotating = RotatingFileHandler(path, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS, encoding='utf-8')
            rotating.setFormatter(formatter)
            root.addHandler(rotating)
        except OSError as exc:
            root.warning('Cannot write log file %s (%s); logging to console only', path, exc)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    _handlers_installed = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Module logger; handlers are configured lazily on the first call."""
    configure_logging()
    return logging.getLogger(name)
