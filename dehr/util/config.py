"""
Configuration utilities for dehr.
Provides environment lookups and config file loading.
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


ENV_PREFIX = "DEHR_"


def get_config_value(key: str, default: Any = None,
                     cast_type: Optional[type] = None,
                     env_prefix: str = ENV_PREFIX) -> Any:
    """
    Get configuration value from environment or return default.
    Optionally cast to specified type.
    """
    env_key = f"{env_prefix}{key.upper()}"
    value = os.environ.get(env_key, default)

    if value is None or cast_type is None:
        return value

    try:
        if cast_type == bool:
            if isinstance(value, str):
                return value.lower() in ('true', '1', 'yes', 'on')
            return bool(value)
        elif cast_type == list:
            if isinstance(value, str):
                return [item.strip() for item in value.split(',') if item.strip()]
            return list(value) if value else []
        else:
            return cast_type(value)
    except (ValueError, TypeError):
        return default

def load_config_file(file_path: str) -> Dict[str, Any]:
    """Load configuration from a file (JSON or YAML)."""
    if not os.path.exists(file_path):
        raise FileNotFoundError(f"Configuration file not found: {file_path}")

    file_ext = Path(file_path).suffix.lower()

    with open(file_path, 'r', encoding='utf-8') as f:
        if file_ext == '.json':
            data = json.load(f)
        elif file_ext in ('.yaml', '.yml'):
            data = yaml.safe_load(f)
        else:
            raise ValueError(f"Unsupported configuration file format: {file_ext}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file must contain a mapping: {file_path}")
    return data
