"""Unit tests for logging infrastructure."""
import logging
from clipmerge.infrastructure.logging import setup_logging


def test_setup_logging_creates_log_file(tmp_path):
    log_dir = tmp_path / "logs"

    logger = setup_logging(log_dir, debug=False)

    assert isinstance(logger, logging.Logger)
    assert (log_dir / "clipmerge.log").exists()


def test_setup_logging_debug_mode(tmp_path):
    logger = setup_logging(tmp_path, debug=True)
    assert logger.getEffectiveLevel() == logging.DEBUG


def test_setup_logging_normal_mode(tmp_path):
    logger = setup_logging(tmp_path, debug=False)
    assert logger.getEffectiveLevel() == logging.INFO


def test_setup_logging_custom_path(tmp_path):
    custom = tmp_path / "nested" / "service.log"

    setup_logging(tmp_path / "logs", log_path=custom)
    logging.getLogger("clipmerge.test").info("MERGE_START: session=s1 clips=2")

    for handler in logging.getLogger().handlers:
        handler.flush()
    assert "MERGE_START: session=s1" in custom.read_text()


def test_setup_logging_console_toggle(tmp_path):
    setup_logging(tmp_path, console=False)
    assert not any(
        type(h) is logging.StreamHandler for h in logging.getLogger().handlers
    )

    setup_logging(tmp_path, console=True)
    assert any(type(h) is logging.StreamHandler for h in logging.getLogger().handlers)
