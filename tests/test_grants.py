"""
Tests for the grant manager, including racing writers on one professional.
"""

import asyncio
import threading
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from dehr.core.types import (
    EntityKind, GrantOutcome, PermissionRequest, Relationship, RequestStatus
)
from dehr.demo import setup_demo
from dehr.errors import ConcurrencyError, NotFoundError
from dehr.permissions import GrantManager
from dehr.store import MemoryEntityStore

from conftest import NOW, ConflictingStore, YieldingStore, make_permission


def request_for(request_id, professional_id="1", **permission_kwargs):
    return PermissionRequest(
        id=request_id,
        permission=make_permission(**permission_kwargs),
        professional=Relationship(EntityKind.PROFESSIONAL, professional_id),
        status=RequestStatus.PENDING,
    )


async def granted_ids(store, professional_id="1"):
    professional = await store.get(EntityKind.PROFESSIONAL, professional_id)
    return [g.permission_request_id for g in professional.granted_permissions]


class TestGrant:
    """Test attaching grants"""

    @pytest.mark.asyncio
    async def test_grant_applies_once(self, store, grant_manager):
        await setup_demo(store, 1)
        request = request_for("r1")

        assert await grant_manager.grant(request) == GrantOutcome.APPLIED
        assert await grant_manager.grant(request) == GrantOutcome.ALREADY_GRANTED
        assert await granted_ids(store) == ["r1"]

    @pytest.mark.asyncio
    async def test_already_granted_does_not_write(self, store, grant_manager):
        await setup_demo(store, 1)
        request = request_for("r1")
        await grant_manager.grant(request)
        version = (await store.get(EntityKind.PROFESSIONAL, "1")).version

        await grant_manager.grant(request)
        assert (await store.get(EntityKind.PROFESSIONAL, "1")).version == version

    @pytest.mark.asyncio
    async def test_grant_copies_permission(self, store, grant_manager):
        await setup_demo(store, 1)
        request = request_for("r1", write_access=True)
        await grant_manager.grant(request)

        request.permission.write_access = False
        professional = await store.get(EntityKind.PROFESSIONAL, "1")
        assert professional.find_grant("r1").permission.write_access is True

    @pytest.mark.asyncio
    async def test_grant_unknown_professional(self, store, grant_manager):
        with pytest.raises(NotFoundError):
            await grant_manager.grant(request_for("r1", professional_id="404"))

    @pytest.mark.asyncio
    async def test_grant_retries_after_conflict(self):
        store = ConflictingStore(failures=2)
        await setup_demo(store, 1)
        metrics = MagicMock()
        manager = GrantManager(store, max_update_attempts=3, metrics=metrics)

        assert await manager.grant(request_for("r1")) == GrantOutcome.APPLIED
        assert store.update_calls == 3
        assert metrics.record_update_conflict.call_count == 2
        assert await granted_ids(store) == ["r1"]

    @pytest.mark.asyncio
    async def test_grant_gives_up(self):
        store = ConflictingStore(failures=10)
        await setup_demo(store, 1)
        manager = GrantManager(store, max_update_attempts=3)

        with pytest.raises(ConcurrencyError) as exc_info:
            await manager.grant(request_for("r1"))
        assert exc_info.value.context.professional_id == "1"
        assert await granted_ids(store) == []


class TestRevoke:
    """Test detaching grants"""

    @pytest.mark.asyncio
    async def test_revoke_removes_grant(self, store, grant_manager):
        await setup_demo(store, 1)
        await grant_manager.grant(request_for("r1"))
        await grant_manager.grant(request_for("r2"))

        assert await grant_manager.revoke(request_for("r1")) == GrantOutcome.APPLIED
        assert await granted_ids(store) == ["r2"]

    @pytest.mark.asyncio
    async def test_revoke_never_granted(self, store, grant_manager):
        await setup_demo(store, 1)
        before = await store.get(EntityKind.PROFESSIONAL, "1")

        assert await grant_manager.revoke(request_for("r1")) == GrantOutcome.APPLIED
        after = await store.get(EntityKind.PROFESSIONAL, "1")
        assert after.version == before.version
        assert after.granted_permissions == []

    @pytest.mark.asyncio
    async def test_revoke_unknown_professional(self, store, grant_manager):
        with pytest.raises(NotFoundError):
            await grant_manager.revoke(request_for("r1", professional_id="404"))


class TestActiveGrants:
    """Test listing unexpired grants"""

    @pytest.mark.asyncio
    async def test_expired_grants_filtered(self, store, grant_manager):
        await setup_demo(store, 1)
        await grant_manager.grant(request_for("old", expiry_date=NOW - timedelta(days=1)))
        await grant_manager.grant(request_for("new", expiry_date=NOW + timedelta(days=1)))

        active = await grant_manager.active_grants("1", at=NOW)
        assert [g.permission_request_id for g in active] == ["new"]
        assert len(await granted_ids(store)) == 2


class TestConcurrentGrants:
    """Test racing grants on the same professional"""

    @pytest.mark.asyncio
    async def test_interleaved_grants_of_same_request(self):
        store = YieldingStore()
        await setup_demo(store, 1)
        metrics = MagicMock()
        manager = GrantManager(store, metrics=metrics)
        request = request_for("r1")

        outcomes = await asyncio.gather(manager.grant(request), manager.grant(request))

        assert sorted(o.value for o in outcomes) == ["already_granted", "applied"]
        assert await granted_ids(store) == ["r1"]
        assert metrics.record_update_conflict.call_count == 1

    @pytest.mark.asyncio
    async def test_interleaved_grants_of_different_requests(self):
        store = YieldingStore()
        await setup_demo(store, 1)
        manager = GrantManager(store)

        await asyncio.gather(manager.grant(request_for("r1")), manager.grant(request_for("r2")))

        assert sorted(await granted_ids(store)) == ["r1", "r2"]

    def test_grants_from_separate_threads(self):
        store = MemoryEntityStore()
        asyncio.run(setup_demo(store, 1))
        manager = GrantManager(store, max_update_attempts=50)
        request = request_for("r1")
        barrier = threading.Barrier(4)
        outcomes = []

        def worker():
            barrier.wait()
            outcomes.append(asyncio.run(manager.grant(request)))

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert outcomes.count(GrantOutcome.APPLIED) == 1
        assert outcomes.count(GrantOutcome.ALREADY_GRANTED) == 3
        assert asyncio.run(granted_ids(store)) == ["r1"]
