"""
Utility helpers: logging and configuration loading.
"""

from screen_gaze.utils.config_loader import load_config
from screen_gaze.utils.logger import setup_logger, setup_logger_from_config

__all__ = [
    'load_config',
    'setup_logger',
    'setup_logger_from_config',
]
