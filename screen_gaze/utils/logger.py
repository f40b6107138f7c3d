"""
Logging configuration for the screen gaze pipeline.
Provides centralized logging with file and console handlers
"""

import logging
import sys
from pathlib import Path
from datetime import datetime
from typing import Optional


def setup_logger(
    name: str = "screen_gaze",
    log_level: str = "INFO",
    log_dir: Optional[str] = None,
    log_file: Optional[str] = None,
    console_output: bool = True
) -> logging.Logger:
    """
    Setup logger with file and console handlers

    Args:
        name: Logger name (module loggers under this name inherit its handlers)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for log files (default: 'logs' when only log_file is given)
        log_file: Log file name (default: 'screen_gaze_YYYYMMDD.log')
        console_output: Whether to output to console

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    level = getattr(logging, str(log_level).upper(), logging.INFO)
    logger.setLevel(level)

    # Clear any existing handlers
    logger.handlers.clear()

    detailed_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    simple_formatter = logging.Formatter(
        '%(levelname)s: %(message)s'
    )

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(simple_formatter)
        logger.addHandler(console_handler)

    if log_dir or log_file:
        log_directory = Path(log_dir) if log_dir else Path("logs")
        log_directory.mkdir(parents=True, exist_ok=True)

        if not log_file:
            timestamp = datetime.now().strftime("%Y%m%d")
            log_file = f"screen_gaze_{timestamp}.log"

        log_path = log_directory / log_file

        file_handler = logging.FileHandler(log_path, mode='a', encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(detailed_formatter)
        logger.addHandler(file_handler)

        logger.info(f"Logging to file: {log_path}")

    return logger


def setup_logger_from_config(config: dict, name: str = "screen_gaze") -> logging.Logger:
    """
    Setup logger from the `logging` section of the YAML config

    Args:
        config: Full configuration dictionary
        name: Logger name

    Returns:
        Configured logger instance
    """
    logging_config = (config or {}).get('logging', {}) or {}
    return setup_logger(
        name=name,
        log_level=logging_config.get('level', 'INFO'),
        log_dir=logging_config.get('log_directory'),
        log_file=logging_config.get('log_file'),
        console_output=bool(logging_config.get('console', True)),
    )
