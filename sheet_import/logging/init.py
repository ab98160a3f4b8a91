from __future__ import annotations

import logging
import sys

"""Logging initialization with labeled prefixes.

Every line printed by the CLI starts with one of the labels
INFO | WARN | ERROR | SUMMARY (DEBUG when --debug is given). Library modules
log through ``logging.getLogger(__name__)`` below the ``sheet_import`` logger,
so configuring that logger once covers the whole package.
"""

__all__ = [
    "LOGGER_NAME",
    "SUMMARY_LEVEL",
    "get_logger",
    "log_summary",
    "reset_logging",
    "setup_logging",
]

LOGGER_NAME = "sheet_import"

# Custom SUMMARY level (between INFO=20 and WARNING=30)
SUMMARY_LEVEL = 25

_logger: logging.Logger | None = None


class LabeledFormatter(logging.Formatter):
    """Formatter producing ``LABEL message`` lines."""

    LEVEL_LABELS = {
        logging.DEBUG: "DEBUG",
        logging.INFO: "INFO",
        logging.WARNING: "WARN",
        logging.ERROR: "ERROR",
        logging.CRITICAL: "CRITICAL",
        SUMMARY_LEVEL: "SUMMARY",
    }

    def format(self, record: logging.LogRecord) -> str:
        level_label = self.LEVEL_LABELS.get(record.levelno, record.levelname)
        message = f"{level_label} {record.getMessage()}"
        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)
        return message


def setup_logging(debug: bool = False) -> logging.Logger:
    """Configure the package logger (idempotent).

    Args:
        debug: lower the level to DEBUG

    Returns:
        The configured ``sheet_import`` logger
    """
    global _logger

    level = logging.DEBUG if debug else logging.INFO
    if _logger is not None:
        _logger.setLevel(level)
        for handler in _logger.handlers:
            handler.setLevel(level)
        return _logger

    logging.addLevelName(SUMMARY_LEVEL, "SUMMARY")

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    # 重複出力防止: 既存ハンドラを除去
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(LabeledFormatter())
    logger.addHandler(handler)

    # root へ伝播させない
    logger.propagate = False

    _logger = logger
    return logger


def get_logger() -> logging.Logger:
    """Return the package logger, configuring it on first use."""
    if _logger is None:
        return setup_logging()
    return _logger


def log_summary(message: str) -> None:
    """Log ``message`` at SUMMARY level."""
    get_logger().log(SUMMARY_LEVEL, message)


def reset_logging() -> None:
    """Reset the global logger state. Mainly for testing purposes."""
    global _logger
    if _logger is not None:
        for handler in _logger.handlers[:]:
            _logger.removeHandler(handler)
        _logger.propagate = True
    _logger = None
