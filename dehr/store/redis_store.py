"""
Redis-backed entity store for dehr.

Entities are stored as JSON documents under ``<prefix><kind>:<id>``.
Versioned updates use ``WATCH``/``MULTI`` so that two writers racing on the
same professional cannot both commit, even across processes.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Iterable, Optional
import time

import redis.asyncio as redis
from redis.exceptions import RedisError, WatchError

from ..core.config import RedisConfig
from ..core.types import Entity, EntityKind
from ..errors import (
    DEHRError, EntityAlreadyExistsError, EntityNotFoundError, ErrorCode, StorageError,
    VersionConflictError
)
from .types import EntityStore, StorageStats, StorageStatus, check_entity, decode_entity


logger = logging.getLogger(__name__)


class RedisEntityStore(EntityStore):
    """
    Redis-based entity store implementation.

    Suitable for deployments where several instances of the core share one
    set of professionals and permission requests.
    """

    def __init__(self, config: Optional[RedisConfig] = None,
                 client: Optional[redis.Redis] = None):
        """
        Initialize the Redis entity store.

        Args:
            config: Connection settings (defaults to a local Redis)
            client: An existing ``redis.asyncio.Redis`` client to use instead
        """
        self.config = config or RedisConfig()
        self._redis = client or redis.from_url(
            self.config.url,
            decode_responses=True,
            socket_timeout=self.config.socket_timeout,
        )
        self._start_time = time.time()
        self._operations_count = 0
        self._conflict_count = 0
        self._error_count = 0

    def _key(self, kind: EntityKind, entity_id: str) -> str:
        return f"{self.config.key_prefix}{kind.value}:{entity_id}"

    def _storage_error(self, operation: str, e: Exception) -> StorageError:
        self._error_count += 1
        logger.error(f"Redis {operation} failed: {e}")
        return StorageError(operation, str(e), code=ErrorCode.CONNECTION_FAILED, cause=e)

    async def get(self, kind: EntityKind, entity_id: str) -> Entity:
        """Retrieve an entity by kind and id."""
        try:
            raw = await self._redis.get(self._key(kind, entity_id))
        except RedisError as e:
            raise self._storage_error("get", e)

        self._operations_count += 1
        if raw is None:
            raise EntityNotFoundError(kind.value, entity_id)

        try:
            return decode_entity(kind, json.loads(raw))
        except json.JSONDecodeError as e:
            self._error_count += 1
            raise StorageError("get", f"Corrupt document for {kind.value} '{entity_id}'", cause=e)

    async def update(self, kind: EntityKind, entity: Entity) -> None:
        """Replace a stored entity if its version is unchanged."""
        check_entity(kind, entity)
        key = self._key(kind, entity.id)

        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                await pipe.watch(key)
                raw = await pipe.get(key)
                if raw is None:
                    await pipe.unwatch()
                    raise EntityNotFoundError(kind.value, entity.id)

                try:
                    stored_version = json.loads(raw).get('version', 0)
                except json.JSONDecodeError as e:
                    await pipe.unwatch()
                    self._error_count += 1
                    raise StorageError("update", f"Corrupt document for {kind.value} '{entity.id}'",
                                       cause=e)
                if stored_version != entity.version:
                    await pipe.unwatch()
                    self._conflict_count += 1
                    raise VersionConflictError(kind.value, entity.id, entity.version, stored_version)

                document = entity.to_dict()
                document['version'] = stored_version + 1
                pipe.multi()
                pipe.set(key, json.dumps(document))
                await pipe.execute()

        except WatchError:
            self._conflict_count += 1
            raise VersionConflictError(kind.value, entity.id, entity.version, entity.version + 1)
        except DEHRError:
            raise
        except RedisError as e:
            raise self._storage_error("update", e)

        entity.version = stored_version + 1
        self._operations_count += 1

    async def add(self, kind: EntityKind, entity: Entity) -> None:
        """Store a new entity."""
        check_entity(kind, entity)
        document = entity.to_dict()
        document['version'] = 1

        try:
            created = await self._redis.set(self._key(kind, entity.id), json.dumps(document), nx=True)
        except RedisError as e:
            raise self._storage_error("add", e)

        if not created:
            raise EntityAlreadyExistsError(kind.value, entity.id)
        entity.version = 1
        self._operations_count += 1

    async def add_all(self, kind: EntityKind, entities: Iterable[Entity]) -> None:
        """Store multiple entities atomically with ``MSETNX``."""
        entities = list(entities)
        if not entities:
            return

        mapping = {}
        for entity in entities:
            check_entity(kind, entity)
            key = self._key(kind, entity.id)
            if key in mapping:
                raise EntityAlreadyExistsError(kind.value, entity.id)
            document = entity.to_dict()
            document['version'] = 1
            mapping[key] = json.dumps(document)

        try:
            created = await self._redis.msetnx(mapping)
            if not created:
                for entity in entities:
                    if await self._redis.exists(self._key(kind, entity.id)):
                        raise EntityAlreadyExistsError(kind.value, entity.id)
                raise StorageError("add_all", f"MSETNX rejected the {kind.value} batch")
        except RedisError as e:
            raise self._storage_error("add_all", e)

        for entity in entities:
            entity.version = 1
        self._operations_count += 1
        logger.debug(f"Added {len(entities)} {kind.value} entities")

    async def exists(self, kind: EntityKind, entity_id: str) -> bool:
        """Check if an entity exists in storage."""
        try:
            return bool(await self._redis.exists(self._key(kind, entity_id)))
        except RedisError as e:
            raise self._storage_error("exists", e)

    async def get_stats(self) -> StorageStats:
        """Get storage statistics."""
        by_kind = {}
        try:
            for kind in EntityKind:
                count = 0
                async for _ in self._redis.scan_iter(match=f"{self.config.key_prefix}{kind.value}:*"):
                    count += 1
                by_kind[kind.value] = count
        except RedisError as e:
            raise self._storage_error("get_stats", e)

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
            await self._redis.ping()
            return StorageStatus.HEALTHY
        except RedisError as e:
            logger.warning(f"Redis health check failed: {e}")
            return StorageStatus.UNHEALTHY

    async def close(self) -> None:
        """Close the Redis connection."""
        await self._redis.aclose()
