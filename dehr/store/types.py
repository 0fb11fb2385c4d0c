"""
Storage types and interfaces for dehr.
Defines the keyed entity store contract the permission core runs against.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, Optional

from ..core.types import ENTITY_TYPES, Entity, EntityKind
from ..errors import EntityNotFoundError, ValidationError


class StorageStatus(Enum):
    """Status of a storage backend."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


@dataclass
class StorageStats:
    """Statistics about storage usage."""
    total_entities: int = 0
    entities_by_kind: Dict[str, int] = field(default_factory=dict)
    uptime_seconds: float = 0.0
    operations_count: int = 0
    conflict_count: int = 0
    error_count: int = 0
    collected_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            'total_entities': self.total_entities,
            'entities_by_kind': dict(self.entities_by_kind),
            'uptime_seconds': self.uptime_seconds,
            'operations_count': self.operations_count,
            'conflict_count': self.conflict_count,
            'error_count': self.error_count,
            'collected_at': self.collected_at.isoformat() if self.collected_at else None,
        }


def check_entity(kind: EntityKind, entity: Entity) -> None:
    """Reject entities whose type does not match the kind they are stored under."""
    expected = ENTITY_TYPES[kind]
    if not isinstance(entity, expected):
        raise ValidationError(
            f"Expected {expected.__name__} for kind {kind.value}, got {type(entity).__name__}")


def decode_entity(kind: EntityKind, document: Dict[str, Any]) -> Entity:
    """Build a typed entity from a stored document, validating it on the way."""
    return ENTITY_TYPES[kind].from_dict(document)


class EntityStore(ABC):
    """
    Abstract base class for entity storage backends.

    Every stored entity carries a ``version``. ``add`` stores version 1 and
    ``update`` only succeeds when the entity's version matches the stored
    one, after which both are incremented. Entities returned by ``get`` are
    independent copies.
    """

    @abstractmethod
    async def get(self, kind: EntityKind, entity_id: str) -> Entity:
        """
        Retrieve an entity by kind and id.

        Args:
            kind: The kind of entity to look up
            entity_id: The entity id

        Returns:
            Entity: A fresh copy of the stored entity

        Raises:
            EntityNotFoundError: If no such entity exists
            StorageError: If retrieval fails
        """
        pass

    @abstractmethod
    async def update(self, kind: EntityKind, entity: Entity) -> None:
        """
        Replace a stored entity, conditional on its version.

        Args:
            kind: The kind of entity
            entity: The modified entity, carrying the version it was loaded at

        Raises:
            EntityNotFoundError: If no such entity exists
            VersionConflictError: If the entity changed since it was loaded
            StorageError: If the update fails
        """
        pass

    @abstractmethod
    async def add(self, kind: EntityKind, entity: Entity) -> None:
        """
        Store a new entity.

        Raises:
            EntityAlreadyExistsError: If an entity with the same id exists
            StorageError: If the write fails
        """
        pass

    async def add_all(self, kind: EntityKind, entities: Iterable[Entity]) -> None:
        """
        Store multiple entities.
        Default implementation adds them one by one.

        Raises:
            EntityAlreadyExistsError: If any entity already exists
            StorageError: If the batch fails
        """
        for entity in entities:
            await self.add(kind, entity)

    async def exists(self, kind: EntityKind, entity_id: str) -> bool:
        """Check if an entity exists in storage."""
        try:
            await self.get(kind, entity_id)
            return True
        except EntityNotFoundError:
            return False

    @abstractmethod
    async def get_stats(self) -> StorageStats:
        """Get storage statistics."""
        pass

    @abstractmethod
    async def health_check(self) -> StorageStatus:
        """Check the health of the storage backend."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the storage connection and cleanup resources."""
        pass
