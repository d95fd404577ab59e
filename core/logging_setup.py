"""Logging setup helper with rotating file handler."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from typing import Any, Dict

DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] %(threadName)s %(name)s: %(message)s"


def setup_logging(cfg: Dict[str, Any]) -> logging.Logger:
    """Configure the root logger with console and optional rotating-file outputs.

    Parameters
    ----------
    cfg : dict
        The ``logging`` section of ``runtime.yaml``.  ``file: null`` disables
        the file handler.

    Returns
    -------
    logging.Logger
        The configured root logger.
    """
    level = cfg.get("level", "INFO")
    log_file = cfg.get("file", "threshold_logic.log")
    fmt = cfg.get("format", DEFAULT_FORMAT)
    rotate = cfg.get("rotate", {})
    max_bytes = rotate.get("max_bytes", 5_242_880)
    backup_count = rotate.get("backup_count", 5)

    formatter = logging.Formatter(fmt)
    handlers = []

    if log_file:
        file_handler = RotatingFileHandler(
            log_file, maxBytes=max_bytes, backupCount=backup_count
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    root = logging.getLogger()
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    root.handlers = handlers

    return root
