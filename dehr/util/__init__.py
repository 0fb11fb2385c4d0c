"""
Utility helpers for dehr: environment lookups and config files.
"""

from .config import ENV_PREFIX, get_config_value, load_config_file

__all__ = [
    'ENV_PREFIX',
    'get_config_value',
    'load_config_file',
]
