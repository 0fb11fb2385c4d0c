"""
Shared fixtures for dehr tests.
"""

import asyncio
from datetime import datetime, timezone

import pytest

from dehr import DEHR, Config
from dehr.core.types import (
    EntityKind, GrantedPermission, HealthRecord, Permission, Professional, RecordType,
    Relationship
)
from dehr.errors import VersionConflictError
from dehr.permissions import GrantManager, PermissionRequestLedger
from dehr.store import MemoryEntityStore


NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_permission(patient_id="1", record_types=(RecordType.IDENTITY,), write_access=False,
                    expiry_date=None):
    return Permission(
        record_types=list(record_types),
        write_access=write_access,
        patient=Relationship(EntityKind.PATIENT, patient_id),
        expiry_date=expiry_date,
    )


def make_professional(*grants, professional_id="1"):
    return Professional(
        id=professional_id,
        name=f"Dr {professional_id}",
        organization=Relationship(EntityKind.ORGANIZATION, "1"),
        granted_permissions=[
            GrantedPermission(permission=permission, permission_request_id=str(n))
            for n, permission in enumerate(grants, start=1)
        ],
    )


def make_record(record_id="1", patient_id="1", record_type=RecordType.IDENTITY):
    return HealthRecord(
        id=record_id,
        record_type=record_type,
        patient=Relationship(EntityKind.PATIENT, patient_id),
    )


class YieldingStore(MemoryEntityStore):
    """Memory store that yields to the event loop after every read"""

    async def get(self, kind, entity_id):
        entity = await super().get(kind, entity_id)
        await asyncio.sleep(0)
        return entity


class ConflictingStore(MemoryEntityStore):
    """Memory store whose first ``failures`` updates of ``kinds`` lose to another writer"""

    def __init__(self, failures, kinds=tuple(EntityKind)):
        super().__init__()
        self.failures = failures
        self.kinds = kinds
        self.update_calls = 0

    async def update(self, kind, entity):
        if kind in self.kinds:
            self.update_calls += 1
            if self.update_calls <= self.failures:
                raise VersionConflictError(kind.value, entity.id, entity.version,
                                           entity.version + 1)
        await super().update(kind, entity)


@pytest.fixture
def store():
    """Empty in-memory entity store"""
    return MemoryEntityStore()


@pytest.fixture
def grant_manager(store):
    return GrantManager(store, max_update_attempts=5)


@pytest.fixture
def ledger(store, grant_manager):
    """Ledger with strict transitions"""
    return PermissionRequestLedger(store, grant_manager)


@pytest.fixture
def permissive_ledger(store, grant_manager):
    return PermissionRequestLedger(store, grant_manager, strict_transitions=False)


@pytest.fixture
def config():
    """Default test configuration"""
    return Config()


@pytest.fixture
def dehr(config):
    """DEHR instance on a fresh memory store"""
    return DEHR.new(config)
