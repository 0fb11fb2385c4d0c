"""
Package store provides the keyed entity store the permission core runs against.

This package implements:
- The abstract EntityStore contract (get, update, add, add_all)
- Memory-based storage for development/testing
- Redis-based storage for shared deployments
- Storage factory driven by Config
"""

from .types import (
    EntityStore,
    StorageStatus,
    StorageStats,
)

from .memory import MemoryEntityStore

from .redis_store import RedisEntityStore

from .factory import (
    StorageFactory,
    create_entity_store,
    create_memory_store,
    create_redis_store,
)

__all__ = [
    # Core types
    'EntityStore',
    'StorageStatus',
    'StorageStats',

    # Implementations
    'MemoryEntityStore',
    'RedisEntityStore',

    # Factory
    'StorageFactory',
    'create_entity_store',
    'create_memory_store',
    'create_redis_store',
]
