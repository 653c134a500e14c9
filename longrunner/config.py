"""Configuration loading: JSON defaults with environment overrides."""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / 'config' / 'indexer.json'

DEFAULTS = {
    'max_iterations': 100,
    'page_size': 100,
    'record_types': ['discussion', 'comment'],
    'database_path': 'data/forum.db',
    'checkpoint_db': 'data/checkpoints.db',
    'log_dir': 'logs',
    'log_level': 'INFO',
}

# Environment variable -> (config key, converter)
ENV_OVERRIDES = {
    'DATABASE_PATH': ('database_path', str),
    'CHECKPOINT_DB_PATH': ('checkpoint_db', str),
    'LOG_DIR': ('log_dir', str),
    'LOG_LEVEL': ('log_level', str),
    'LONGRUNNER_MAX_ITERATIONS': ('max_iterations', int),
    'LONGRUNNER_PAGE_SIZE': ('page_size', int),
}


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load indexer configuration.

    Values come from the built-in defaults, then the JSON file (if present),
    then environment variables.

    Args:
        config_path: JSON file path (defaults to config/indexer.json)

    Returns:
        Configuration dictionary

    Raises:
        ValueError: if an environment override or a budget value is invalid
    """
    config = dict(DEFAULTS)

    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    if path.exists():
        with open(path, 'r', encoding='utf-8') as f:
            config.update(json.load(f))

    for env_var, (key, convert) in ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None and value != '':
            try:
                config[key] = convert(value)
            except ValueError as e:
                raise ValueError(f"Invalid value for {env_var}: {value!r}") from e

    if config['max_iterations'] < 0:
        raise ValueError(f"max_iterations must be >= 0, got {config['max_iterations']}")
    if config['page_size'] <= 0:
        raise ValueError(f"page_size must be positive, got {config['page_size']}")

    return config
