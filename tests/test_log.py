"""Tests for supervisor logging setup."""

import logging

import pytest

from bot_kernel.log import configure_logging


@pytest.fixture
def kernel_logger():
    logger = logging.getLogger("bot_kernel")
    saved = (list(logger.handlers), logger.level, logger.propagate)
    yield logger
    for handler in list(logger.handlers):
        if handler not in saved[0]:
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(saved[1])
    logger.propagate = saved[2]


class TestConfigureLogging:
    def test_console_only(self, kernel_logger):
        logger = configure_logging("WARNING")
        assert logger is kernel_logger
        assert logger.propagate is False
        [console] = [h for h in logger.handlers if getattr(h, "_bot_kernel", False)]
        assert console.level == logging.WARNING

    def test_file_handler_records_debug(self, kernel_logger, tmp_path):
        configure_logging("INFO", log_dir=str(tmp_path / "logs"), supervisor="bot1")
        logging.getLogger("bot_kernel.movement.controller").debug("Movement completed: distance=%d", 3)
        for handler in kernel_logger.handlers:
            handler.flush()

        [path] = list((tmp_path / "logs").glob("Supervisor-log-bot1-*.txt"))
        content = path.read_text(encoding="utf-8")
        assert "Movement completed: distance=3" in content
        assert "bot_kernel.movement.controller" in content

    def test_reconfigure_replaces_handlers(self, kernel_logger, tmp_path):
        configure_logging("INFO", log_dir=str(tmp_path))
        configure_logging("DEBUG")
        ours = [h for h in kernel_logger.handlers if getattr(h, "_bot_kernel", False)]
        assert len(ours) == 1
