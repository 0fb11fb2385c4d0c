"""
Factory for creating entity store implementations.
Provides a centralized way to create and configure storage backends.
"""

from typing import Any, Callable, Dict, List, Optional

from ..core.config import Config, RedisConfig
from .types import EntityStore
from .memory import MemoryEntityStore
from .redis_store import RedisEntityStore


def _create_memory(config: Config) -> EntityStore:
    return MemoryEntityStore()


def _create_redis(config: Config) -> EntityStore:
    return RedisEntityStore(config.redis)


# Registry of available storage implementations
_STORAGE_IMPLEMENTATIONS: Dict[str, Callable[[Config], EntityStore]] = {
    'memory': _create_memory,
    'redis': _create_redis,
}


class StorageFactory:
    """Factory for creating storage implementations."""

    @staticmethod
    def create_store(config: Optional[Config] = None) -> EntityStore:
        """
        Create an entity store instance.

        Args:
            config: Configuration naming the store type and its settings

        Returns:
            EntityStore instance

        Raises:
            ValueError: If the store type is not supported
        """
        config = config or Config()
        builder = _STORAGE_IMPLEMENTATIONS.get(config.store_type.lower())
        if not builder:
            raise ValueError(f"Unsupported storage type: {config.store_type}")

        return builder(config)

    @staticmethod
    def register_implementation(name: str, builder: Callable[[Config], EntityStore]) -> None:
        """
        Register a new storage implementation.

        Args:
            name: Name to register the implementation under
            builder: Callable building the store from a Config
        """
        _STORAGE_IMPLEMENTATIONS[name.lower()] = builder

    @staticmethod
    def get_available_types() -> List[str]:
        """Get list of available storage types."""
        return list(_STORAGE_IMPLEMENTATIONS.keys())


def create_memory_store() -> MemoryEntityStore:
    """Create a memory-based entity store."""
    return MemoryEntityStore()


def create_redis_store(**kwargs: Any) -> RedisEntityStore:
    """Create a Redis-based entity store from RedisConfig keyword arguments."""
    return RedisEntityStore(RedisConfig(**kwargs))


def create_entity_store(config: Optional[Config] = None) -> EntityStore:
    """
    Create an entity store from configuration.

    Args:
        config: dehr configuration

    Returns:
        EntityStore instance
    """
    return StorageFactory.create_store(config)
