"""
Configuration loader utility
"""

import yaml
from typing import Dict, Any
from pathlib import Path

from screen_gaze.errors import InvalidConfigurationError


def load_config(config_path: str = 'config/config.yaml') -> Dict[str, Any]:
    """
    Load configuration from YAML file

    Args:
        config_path: Path to configuration file

    Returns:
        Dictionary with configuration values (empty for an empty file)

    Raises:
        FileNotFoundError: If the file does not exist
        InvalidConfigurationError: If the file is not a YAML mapping
    """
    config_file = Path(config_path)

    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_file, 'r') as f:
        try:
            config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise InvalidConfigurationError(f"Could not parse {config_path}: {e}") from e

    if config is None:
        return {}
    if not isinstance(config, dict):
        raise InvalidConfigurationError(f"Top level of {config_path} must be a mapping")

    return config
