import logging
from logging.handlers import RotatingFileHandler

from roomrelay.backend.logging_config import setup_logging


def test_setup_logging_configures_console_and_file(tmp_path) -> None:
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        setup_logging(level="debug", log_file=str(tmp_path / "logs" / "relay.log"))

        assert root.level == logging.DEBUG
        assert len(root.handlers) == 2
        assert any(isinstance(handler, RotatingFileHandler) for handler in root.handlers)
        assert (tmp_path / "logs").is_dir()
        assert logging.getLogger("aioice").level == logging.WARNING
    finally:
        for handler in root.handlers:
            handler.close()
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)


def test_setup_logging_replaces_existing_handlers() -> None:
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        setup_logging()
        setup_logging(level="WARNING")

        assert len(root.handlers) == 1
        assert root.level == logging.WARNING
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
