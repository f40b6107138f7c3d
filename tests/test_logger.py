"""
Tests for logging setup
"""

import logging

from screen_gaze.utils.logger import setup_logger_from_config


def test_module_loggers_write_to_configured_file(tmp_path):
    config = {'logging': {
        'level': 'DEBUG',
        'log_directory': str(tmp_path),
        'log_file': 'gaze.log',
        'console': False,
    }}
    logger = setup_logger_from_config(config, name="screen_gaze_test")
    try:
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1

        logging.getLogger("screen_gaze_test.main").error("Replay failed: boom")
        for handler in logger.handlers:
            handler.flush()

        text = (tmp_path / "gaze.log").read_text(encoding="utf-8")
        assert "Replay failed: boom" in text
        assert "screen_gaze_test.main" in text
    finally:
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)


def test_console_only_by_default():
    logger = setup_logger_from_config({}, name="screen_gaze_console_test")
    try:
        assert logger.level == logging.INFO
        assert [type(h) for h in logger.handlers] == [logging.StreamHandler]
    finally:
        logger.handlers.clear()
