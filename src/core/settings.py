"""
Tournament settings: built-in defaults, optionally overridden by a YAML file.
"""
import logging
import os

import yaml

logger = logging.getLogger(__name__)


def get_default_settings():
    """Return default settings."""
    return {
        'game_time_seconds': 600,
        'playoff_game_time_seconds': 600,
        'attribution_timeout_seconds': 15,
        'history_limit': 200,
        'min_teams_for_groups': 6,
        'min_teams_per_group': 3,
    }


def load_settings(file_path=None):
    """Defaults merged with the keys found in ``file_path`` (if it exists)."""
    settings = get_default_settings()
    if not file_path or not os.path.exists(file_path):
        return settings
    try:
        with open(file_path, mode='r', encoding='utf-8') as file:
            data = yaml.safe_load(file) or {}
    except yaml.YAMLError as e:
        logger.warning(f'Failed to parse {file_path}: {e}')
        return settings
    for key, value in data.items():
        if key not in settings:
            logger.warning(f'Ignoring unknown setting {key!r} in {file_path}')
            continue
        settings[key] = value
    return settings
