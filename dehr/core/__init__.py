"""
Core module initialization
"""

from .config import Config, RedisConfig
from .types import *

__all__ = ["Config", "RedisConfig"]
