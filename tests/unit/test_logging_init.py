from __future__ import annotations

import logging
import sys

from sheet_import.logging.init import (
    LOGGER_NAME,
    SUMMARY_LEVEL,
    LabeledFormatter,
    get_logger,
    log_summary,
    reset_logging,
    setup_logging,
)


def test_setup_logging_is_idempotent():
    reset_logging()
    logger = setup_logging()
    assert logger.name == LOGGER_NAME
    assert logger.level == logging.INFO
    assert len(logger.handlers) == 1
    assert logger.propagate is False
    again = setup_logging(debug=True)
    assert again is logger
    assert len(logger.handlers) == 1
    assert logger.level == logging.DEBUG


def test_labeled_prefixes(capsys):
    reset_logging()
    logger = setup_logging()
    logger.info("hello")
    logger.warning("careful")
    logger.error("broken")
    log_summary("rows=1")
    logging.getLogger(f"{LOGGER_NAME}.services.execution").info("from child")
    logger.debug("hidden")
    out = capsys.readouterr().out.splitlines()
    assert out == ["INFO hello", "WARN careful", "ERROR broken", "SUMMARY rows=1", "INFO from child"]


def test_debug_lines_when_enabled(capsys):
    reset_logging()
    setup_logging(debug=True).debug("visible")
    assert capsys.readouterr().out.strip() == "DEBUG visible"


def test_formatter_appends_traceback():
    fmt = LabeledFormatter()
    try:
        raise ValueError("bad")
    except ValueError:
        record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())
    text = fmt.format(record)
    assert text.startswith("ERROR failed\n")
    assert "ValueError: bad" in text


def test_get_logger_sets_up_on_first_use():
    reset_logging()
    assert get_logger().name == LOGGER_NAME
    assert logging.getLevelName(SUMMARY_LEVEL) == "SUMMARY"
