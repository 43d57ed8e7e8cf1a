"""
Configuration loading for the copy service.
"""
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from .models import CopySettings

logger = logging.getLogger(__name__)


def load_config(config_file: Optional[Path] = None) -> dict:
    """Load configuration from a JSON file.

    Args:
        config_file: Path to config file

    Returns:
        Dictionary of configuration values, empty if the file is missing
        or unreadable
    """
    if not config_file:
        return {}

    try:
        with open(config_file, encoding="utf-8") as f:
            config = json.load(f)
    except (OSError, ValueError) as e:
        logger.error(f"Error loading config file: {e}")
        return {}

    if not isinstance(config, dict):
        logger.error(f"Config file {config_file} must contain a JSON object")
        return {}
    return config


def settings_from_config(config: Dict[str, Any],
                         overrides: Optional[Dict[str, Any]] = None) -> CopySettings:
    """Build copy settings from the config's ``settings`` section.

    Args:
        config: Loaded configuration
        overrides: Values that take precedence; None values are ignored

    Returns:
        CopySettings instance

    Raises:
        ValueError: If a setting is out of range or not a recognized choice
    """
    values = dict(config.get("settings") or {})
    for key, value in (overrides or {}).items():
        if value is not None:
            values[key] = value
    return CopySettings.from_dict(values)
