"""Console logging for vmigrate."""

from __future__ import annotations

import logging

from rich.logging import RichHandler


def get_logger(name: str) -> logging.Logger:
    """Get a configured logger instance."""
    logger = logging.getLogger(name)

    if not logger.handlers:
        handler = RichHandler(
            show_time=True,
            show_path=False,
            markup=True,
            rich_tracebacks=True,
        )
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
        logger.propagate = False

    return logger


def set_log_level(level: str) -> None:
    """Set log level (DEBUG, INFO, WARNING, ERROR) on every vmigrate logger."""
    numeric = getattr(logging, level.upper(), logging.INFO)
    for name in list(logging.root.manager.loggerDict):
        if name == "vmigrate" or name.startswith("vmigrate."):
            logging.getLogger(name).setLevel(numeric)
