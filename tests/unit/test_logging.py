"""Unit tests for logging infrastructure."""
import logging
from rich.logging import RichHandler
from bpff.infrastructure.logging import setup_logging


def test_setup_logging_creates_log_file(tmp_path):
    """setup_logging writes bpff.log inside the workspace directory."""
    logger = setup_logging(tmp_path / "ws", debug=False)

    assert isinstance(logger, logging.Logger)
    assert (tmp_path / "ws" / "bpff.log").exists()


def test_setup_logging_levels(tmp_path):
    setup_logging(tmp_path, debug=True)
    assert logging.getLogger().getEffectiveLevel() == logging.DEBUG

    setup_logging(tmp_path, debug=False)
    assert logging.getLogger().getEffectiveLevel() == logging.INFO
    assert logging.getLogger("watchdog").level == logging.INFO


def test_setup_logging_custom_path(tmp_path):
    custom = tmp_path / "logs" / "run.log"
    setup_logging(tmp_path / "ws", log_path=custom)
    logging.getLogger("bpff.test").info("hello from test")
    for handler in logging.getLogger().handlers:
        handler.flush()
    assert "hello from test" in custom.read_text()
    assert " - INFO - " in custom.read_text()


def test_console_mode_adds_rich_handler(tmp_path):
    setup_logging(tmp_path, console=True)
    handlers = logging.getLogger().handlers
    assert any(isinstance(h, RichHandler) for h in handlers)
    assert any(isinstance(h, logging.FileHandler) for h in handlers)
