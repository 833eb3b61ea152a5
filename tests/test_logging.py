"""Tests for the loguru configuration helpers."""

from loguru import logger

from log_config.logger import configure_file_logging, get_logger, log_performance


def test_file_logging_splits_debug_and_errors(tmp_path):
    handler_ids = configure_file_logging(tmp_path / "logs")
    try:
        log = get_logger("tests.logging")
        log.debug("detail message")
        log.error("failure message")
        log_performance("slow step", 250.0, threshold_ms=100.0)
    finally:
        for handler_id in handler_ids:
            logger.remove(handler_id)

    debug_files = list((tmp_path / "logs").glob("fisheye_*.log"))
    error_files = list((tmp_path / "logs").glob("errors_*.log"))
    assert len(debug_files) == 1
    assert len(error_files) == 1

    debug_text = debug_files[0].read_text()
    assert "detail message" in debug_text
    assert "Slow operation: slow step" in debug_text
    error_text = error_files[0].read_text()
    assert "failure message" in error_text
    assert "detail message" not in error_text
