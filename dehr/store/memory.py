"""
In-memory entity store implementation for dehr.
Provides a simple memory-based storage backend for development and testing.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable
import logging
import threading
import time

from ..core.types import Entity, EntityKind
from ..errors import (
    DEHRError, EntityAlreadyExistsError, EntityNotFoundError, StorageError,
    VersionConflictError
)
from .types import EntityStore, StorageStats, StorageStatus, check_entity, decode_entity


logger = logging.getLogger(__name__)


class MemoryEntityStore(EntityStore):
    """
    In-memory entity store implementation.

    Entities are kept as serialized documents, so every ``get`` goes through
    ``from_dict`` and hands out an independent copy. All operations run
    under one re-entrant lock, which makes the versioned ``update`` atomic
    across threads and event loops.

    Note: All data is lost when the process terminates.
    """

    def __init__(self):
        # kind -> entity id -> document
        self._documents: Dict[EntityKind, Dict[str, Dict[str, Any]]] = {
            kind: {} for kind in EntityKind
        }

        # Thread lock for thread safety
        self._lock = threading.RLock()

        # Statistics
        self._start_time = time.time()
        self._operations_count = 0
        self._conflict_count = 0
        self._error_count = 0

    async def get(self, kind: EntityKind, entity_id: str) -> Entity:
        """Retrieve an entity by kind and id."""
        with self._lock:
            document = self._documents[kind].get(entity_id)
            self._operations_count += 1
            if document is None:
                raise EntityNotFoundError(kind.value, entity_id)

        try:
            return decode_entity(kind, document)
        except DEHRError:
            self._error_count += 1
            raise

    async def update(self, kind: EntityKind, entity: Entity) -> None:
        """Replace a stored entity if its version is unchanged."""
        check_entity(kind, entity)
        try:
            with self._lock:
                current = self._documents[kind].get(entity.id)
                if current is None:
                    raise EntityNotFoundError(kind.value, entity.id)

                stored_version = current.get('version', 0)
                if stored_version != entity.version:
                    self._conflict_count += 1
                    raise VersionConflictError(kind.value, entity.id, entity.version, stored_version)

                document = entity.to_dict()
                document['version'] = stored_version + 1
                self._documents[kind][entity.id] = document
                entity.version = stored_version + 1
                self._operations_count += 1

        except DEHRError:
            raise
        except Exception as e:
            self._error_count += 1
            raise StorageError("update", f"Failed to update {kind.value} '{entity.id}': {e}", cause=e)

    async def add(self, kind: EntityKind, entity: Entity) -> None:
        """Store a new entity."""
        await self.add_all(kind, [entity])

    async def add_all(self, kind: EntityKind, entities: Iterable[Entity]) -> None:
        """Store multiple entities; either all of them are added or none."""
        entities = list(entities)
        for entity in entities:
            check_entity(kind, entity)

        try:
            with self._lock:
                bucket = self._documents[kind]
                seen = set()
                for entity in entities:
                    if entity.id in bucket or entity.id in seen:
                        raise EntityAlreadyExistsError(kind.value, entity.id)
                    seen.add(entity.id)

                for entity in entities:
                    document = entity.to_dict()
                    document['version'] = 1
                    bucket[entity.id] = document
                    entity.version = 1

                self._operations_count += 1

        except DEHRError:
            raise
        except Exception as e:
            self._error_count += 1
            raise StorageError("add_all", f"Failed to add {kind.value} entities: {e}", cause=e)

        logger.debug(f"Added {len(entities)} {kind.value} entities")

    async def exists(self, kind: EntityKind, entity_id: str) -> bool:
        """Check if an entity exists in storage."""
        with self._lock:
            return entity_id in self._documents[kind]

    async def get_stats(self) -> StorageStats:
        """Get storage statistics."""
        with self._lock:
            by_kind = {kind.value: len(bucket) for kind, bucket in self._documents.items()}
            return StorageStats(
                total_entities=sum(by_kind.values()),
                entities_by_kind=by_kind,
                uptime_seconds=time.time() - self._start_time,
                operations_count=self._operations_count,
                conflict_count=self._conflict_count,
                error_count=self._error_count,
                collected_at=datetime.now(timezone.utc),
            )

    async def health_check(self) -> StorageStatus:
        """Check the health of the storage backend."""
        try:
            with self._lock:
                _ = sum(len(bucket) for bucket in self._documents.values())
                return StorageStatus.HEALTHY
        except Exception:
            return StorageStatus.UNHEALTHY

    async def close(self) -> None:
        """Close the storage connection and cleanup resources."""
        self.clear_all()

    # Memory-specific methods
    def clear_all(self) -> None:
        """Clear all stored entities. Useful for testing."""
        with self._lock:
            for bucket in self._documents.values():
                bucket.clear()

    def count(self, kind: EntityKind) -> int:
        """Get the current number of stored entities of a kind."""
        with self._lock:
            return len(self._documents[kind])
