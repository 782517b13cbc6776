"""
Configuration management module.

This module provides utilities for loading the application configuration
from config.json, with environment variables (optionally read from a .env
file) taking precedence.

Author: Matthew Picone (mail@matthewpicone.com)
Date: 2025-12-17
"""

import json
import os
from typing import Dict, Any

from dotenv import load_dotenv

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
CONFIG_PATH = os.path.join(BASE_DIR, "config.json")

# Environment variable -> (config key, type)
ENV_OVERRIDES = {
    "QUEST_MAP_DATABASE_URL": ("database_url", str),
    "QUEST_MAP_COLLECTION": ("collection", str),
    "QUEST_MAP_NEAREST_PIXELS": ("nearest_radius_pixels", float),
    "QUEST_MAP_CLUSTER_PIXELS": ("cluster_radius_pixels", float),
    "QUEST_MAP_CLUSTER_ZOOM": ("cluster_zoom_threshold", float),
    "QUEST_MAP_LOG_LEVEL": ("log_level", str),
}


def load_config(path: str = CONFIG_PATH) -> Dict[str, Any]:
    """Load configuration from config.json and the environment.

    Args:
        path: Location of the JSON configuration file.

    Returns:
        Configuration dictionary with all required fields ensured.
    """
    load_dotenv()

    try:
        with open(path, "r", encoding="utf-8") as f:
            config = json.load(f)
    except FileNotFoundError:
        config = get_default_config()

    apply_env_overrides(config)

    # Ensure all required fields are present
    config = ensure_config_fields(config)
    return config


def get_default_config() -> Dict[str, Any]:
    """Get default configuration structure.

    Returns:
        Default configuration dictionary.
    """
    return {
        "database_url": "sqlite:///./quest_map.db",
        "collection": "quests",
        "nearest_radius_pixels": 20,
        "cluster_radius_pixels": 60,
        "cluster_zoom_threshold": 10,
        "log_level": "INFO",
    }


def apply_env_overrides(config: Dict[str, Any], environ=None) -> Dict[str, Any]:
    """Overwrite configuration values with any matching environment variables.

    Raises:
        ValueError: If a numeric variable cannot be parsed.
    """
    environ = os.environ if environ is None else environ

    for var, (key, cast) in ENV_OVERRIDES.items():
        raw = environ.get(var)
        if raw is None or raw == "":
            continue
        try:
            config[key] = cast(raw)
        except ValueError:
            raise ValueError(f"Invalid value for {var}: {raw!r}")

    return config


def ensure_config_fields(config: Dict[str, Any]) -> Dict[str, Any]:
    """Ensure all required fields are present in the configuration.

    Args:
        config: Configuration dictionary to update.

    Returns:
        Updated configuration dictionary.
    """
    for key, default in get_default_config().items():
        config.setdefault(key, default)

    config["log_level"] = str(config["log_level"]).upper()
    return config
