"""
Tests for the permission request ledger and its transition rules.
"""

import asyncio
import itertools

import pytest

from dehr.core.types import EntityKind, GrantOutcome, Relationship, RequestStatus
from dehr.demo import setup_demo
from dehr.errors import (
    ConcurrencyError, ErrorCode, InvalidStatusError, InvalidTransitionError, NotFoundError,
    ValidationError
)
from dehr.permissions import (
    ALLOWED_TRANSITIONS, GrantManager, PermissionRequestLedger, coerce_decision_status
)

from conftest import ConflictingStore, YieldingStore, make_permission


async def holds(store, request_id, professional_id="1"):
    professional = await store.get(EntityKind.PROFESSIONAL, professional_id)
    return professional.has_grant(request_id)


class TestCoerceDecisionStatus:
    """Test decision status parsing"""

    @pytest.mark.parametrize("value,expected", [
        ("GRANTED", RequestStatus.GRANTED),
        ("granted", RequestStatus.GRANTED),
        (" Revoked ", RequestStatus.REVOKED),
        (RequestStatus.REVOKED, RequestStatus.REVOKED),
    ])
    def test_accepted(self, value, expected):
        assert coerce_decision_status(value) == expected

    @pytest.mark.parametrize("value", ["PENDING", RequestStatus.PENDING, "APPROVED", ""])
    def test_rejected(self, value):
        with pytest.raises(InvalidStatusError) as exc_info:
            coerce_decision_status(value, "r1")
        assert exc_info.value.code == ErrorCode.INVALID_STATUS
        assert exc_info.value.context.entity_id == "r1"


class TestSubmitRequest:
    """Test creating permission requests"""

    @pytest.mark.asyncio
    async def test_submit_creates_pending_request(self, store, ledger):
        request_id = await ledger.submit_request(
            make_permission(write_access=True), Relationship(EntityKind.PROFESSIONAL, "1"))

        request = await ledger.get_request(request_id)
        assert request.status == RequestStatus.PENDING
        assert request.professional.id == "1"
        assert request.permission.write_access is True

    @pytest.mark.asyncio
    async def test_submit_generates_fresh_ids(self, ledger):
        professional = Relationship(EntityKind.PROFESSIONAL, "1")
        first = await ledger.submit_request(make_permission(), professional)
        second = await ledger.submit_request(make_permission(), professional)
        assert first != second

    @pytest.mark.asyncio
    async def test_custom_id_factory(self, store, grant_manager):
        counter = itertools.count(100)
        ledger = PermissionRequestLedger(store, grant_manager,
                                         id_factory=lambda: f"req-{next(counter)}")
        request_id = await ledger.submit_request(
            make_permission(), Relationship(EntityKind.PROFESSIONAL, "1"))
        assert request_id == "req-100"

    @pytest.mark.asyncio
    async def test_submit_has_no_grant_side_effects(self, store, ledger):
        await setup_demo(store, 1)
        await ledger.submit_request(make_permission(), Relationship(EntityKind.PROFESSIONAL, "1"))

        professional = await store.get(EntityKind.PROFESSIONAL, "1")
        assert professional.granted_permissions == []

    @pytest.mark.asyncio
    async def test_submit_requires_professional(self, ledger):
        with pytest.raises(ValidationError):
            await ledger.submit_request(make_permission(), Relationship(EntityKind.PATIENT, "1"))


class TestSetStatus:
    """Test the raw status update"""

    @pytest.mark.asyncio
    async def test_set_status(self, store, ledger):
        await setup_demo(store, 1)

        request = await ledger.set_status("1", RequestStatus.GRANTED)
        assert request.status == RequestStatus.GRANTED
        assert request.updated_at is not None
        assert (await ledger.get_request("1")).status == RequestStatus.GRANTED

    @pytest.mark.asyncio
    async def test_set_same_status_is_noop(self, store, ledger):
        await setup_demo(store, 1)
        before = await ledger.get_request("1")

        await ledger.set_status("1", RequestStatus.PENDING)
        after = await ledger.get_request("1")
        assert after.version == before.version
        assert after.updated_at is None

    @pytest.mark.asyncio
    async def test_set_status_unknown(self, ledger):
        with pytest.raises(NotFoundError):
            await ledger.set_status("404", RequestStatus.GRANTED)


class TestApplyStatusChange:
    """Test grant and revoke decisions in strict mode"""

    @pytest.mark.asyncio
    async def test_grant_pending(self, store, ledger):
        await setup_demo(store, 2)

        result = await ledger.apply_status_change("1", RequestStatus.GRANTED)

        assert result.status == RequestStatus.GRANTED
        assert result.grant_outcome == GrantOutcome.APPLIED
        assert result.previous_status == RequestStatus.PENDING
        assert (await ledger.get_request("1")).status == RequestStatus.GRANTED
        assert await holds(store, "1")
        assert not await holds(store, "2", professional_id="2")

    @pytest.mark.asyncio
    async def test_revoke_granted(self, store, ledger):
        await setup_demo(store, 1)
        await ledger.apply_status_change("1", "GRANTED")

        result = await ledger.apply_status_change("1", "REVOKED")

        assert result.status == RequestStatus.REVOKED
        assert result.previous_status == RequestStatus.GRANTED
        assert (await ledger.get_request("1")).status == RequestStatus.REVOKED
        assert not await holds(store, "1")

    @pytest.mark.asyncio
    async def test_revoke_pending(self, store, ledger):
        await setup_demo(store, 1)

        result = await ledger.apply_status_change("1", RequestStatus.REVOKED)

        assert result.grant_outcome == GrantOutcome.APPLIED
        assert (await ledger.get_request("1")).status == RequestStatus.REVOKED
        assert not await holds(store, "1")

    @pytest.mark.asyncio
    async def test_regrant_rejected(self, store, ledger):
        await setup_demo(store, 1)
        await ledger.apply_status_change("1", RequestStatus.GRANTED)

        with pytest.raises(InvalidTransitionError) as exc_info:
            await ledger.apply_status_change("1", RequestStatus.GRANTED)
        assert exc_info.value.code == ErrorCode.INVALID_TRANSITION
        assert await holds(store, "1")

    @pytest.mark.asyncio
    async def test_revoked_is_final(self, store, ledger):
        await setup_demo(store, 1)
        await ledger.apply_status_change("1", RequestStatus.REVOKED)

        for target in (RequestStatus.GRANTED, RequestStatus.REVOKED):
            with pytest.raises(InvalidTransitionError):
                await ledger.apply_status_change("1", target)
        assert not await holds(store, "1")

    @pytest.mark.asyncio
    async def test_pending_target_rejected(self, store, ledger):
        await setup_demo(store, 1)
        with pytest.raises(InvalidStatusError):
            await ledger.apply_status_change("1", "PENDING")
        assert (await ledger.get_request("1")).status == RequestStatus.PENDING

    @pytest.mark.asyncio
    async def test_unknown_request(self, store, ledger):
        await setup_demo(store, 1)
        with pytest.raises(NotFoundError):
            await ledger.apply_status_change("404", RequestStatus.GRANTED)

    @pytest.mark.asyncio
    async def test_missing_professional(self, store, ledger):
        request_id = await ledger.submit_request(
            make_permission(), Relationship(EntityKind.PROFESSIONAL, "ghost"))

        with pytest.raises(NotFoundError):
            await ledger.apply_status_change(request_id, RequestStatus.GRANTED)
        assert (await ledger.get_request(request_id)).status == RequestStatus.PENDING

    def test_transition_table(self):
        assert ALLOWED_TRANSITIONS[RequestStatus.PENDING] == (
            RequestStatus.GRANTED, RequestStatus.REVOKED)
        assert ALLOWED_TRANSITIONS[RequestStatus.GRANTED] == (RequestStatus.REVOKED,)
        assert ALLOWED_TRANSITIONS[RequestStatus.REVOKED] == ()


class TestPermissiveTransitions:
    """Test decisions with strict transitions disabled"""

    @pytest.mark.asyncio
    async def test_regrant_reports_already_granted(self, store, permissive_ledger):
        await setup_demo(store, 1)
        await permissive_ledger.apply_status_change("1", RequestStatus.GRANTED)

        result = await permissive_ledger.apply_status_change("1", RequestStatus.GRANTED)

        assert result.grant_outcome == GrantOutcome.ALREADY_GRANTED
        assert result.previous_status == RequestStatus.GRANTED
        professional = await store.get(EntityKind.PROFESSIONAL, "1")
        assert len(professional.granted_permissions) == 1

    @pytest.mark.asyncio
    async def test_rerevoke_is_noop(self, store, permissive_ledger):
        await setup_demo(store, 1)
        await permissive_ledger.apply_status_change("1", RequestStatus.REVOKED)

        result = await permissive_ledger.apply_status_change("1", RequestStatus.REVOKED)
        assert result.grant_outcome == GrantOutcome.APPLIED
        assert not await holds(store, "1")

    @pytest.mark.asyncio
    async def test_grant_after_revoke(self, store, permissive_ledger):
        await setup_demo(store, 1)
        await permissive_ledger.apply_status_change("1", RequestStatus.GRANTED)
        await permissive_ledger.apply_status_change("1", RequestStatus.REVOKED)

        result = await permissive_ledger.apply_status_change("1", RequestStatus.GRANTED)

        assert result.grant_outcome == GrantOutcome.APPLIED
        assert (await permissive_ledger.get_request("1")).status == RequestStatus.GRANTED
        assert await holds(store, "1")

    @pytest.mark.asyncio
    async def test_pending_target_still_rejected(self, store, permissive_ledger):
        await setup_demo(store, 1)
        with pytest.raises(InvalidStatusError):
            await permissive_ledger.apply_status_change("1", RequestStatus.PENDING)


class InterruptedGrantManager(GrantManager):
    """Grant manager that runs another decision just before its first grant"""

    def __init__(self, store, interrupt):
        super().__init__(store)
        self.interrupt = interrupt

    async def grant(self, permission_request):
        interrupt, self.interrupt = self.interrupt, None
        if interrupt:
            await interrupt()
        return await super().grant(permission_request)


class TestConcurrentDecisions:
    """Test that racing or failing decisions keep status and grants in step"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("strict", [True, False])
    async def test_racing_grant_and_revoke(self, strict):
        store = YieldingStore()
        await setup_demo(store, 1)
        ledger = PermissionRequestLedger(store, GrantManager(store), strict_transitions=strict)

        results = await asyncio.gather(
            ledger.apply_status_change("1", RequestStatus.GRANTED),
            ledger.apply_status_change("1", RequestStatus.REVOKED),
        )

        request = await ledger.get_request("1")
        assert request.status == RequestStatus.REVOKED
        assert (request.status == RequestStatus.GRANTED) == await holds(store, "1")
        assert [r.previous_status for r in results] == [
            RequestStatus.PENDING, RequestStatus.GRANTED]

    @pytest.mark.asyncio
    async def test_revoke_during_grant_is_reconciled(self, store):
        await setup_demo(store, 1)
        other = PermissionRequestLedger(store, GrantManager(store))
        manager = InterruptedGrantManager(
            store, lambda: other.apply_status_change("1", RequestStatus.REVOKED))
        ledger = PermissionRequestLedger(store, manager)

        result = await ledger.apply_status_change("1", RequestStatus.GRANTED)

        assert result.grant_outcome == GrantOutcome.APPLIED
        assert (await ledger.get_request("1")).status == RequestStatus.REVOKED
        assert not await holds(store, "1")

    @pytest.mark.asyncio
    async def test_failed_grant_restores_status(self):
        store = ConflictingStore(failures=100, kinds=(EntityKind.PROFESSIONAL,))
        await setup_demo(store, 1)
        ledger = PermissionRequestLedger(store, GrantManager(store, max_update_attempts=3))

        with pytest.raises(ConcurrencyError):
            await ledger.apply_status_change("1", RequestStatus.GRANTED)

        assert (await ledger.get_request("1")).status == RequestStatus.PENDING
        assert not await holds(store, "1")

    @pytest.mark.asyncio
    async def test_unclaimable_request_leaves_grants_alone(self):
        store = ConflictingStore(failures=100, kinds=(EntityKind.PERMISSION_REQUEST,))
        await setup_demo(store, 1)
        ledger = PermissionRequestLedger(store, GrantManager(store), max_update_attempts=3)

        with pytest.raises(ConcurrencyError):
            await ledger.apply_status_change("1", RequestStatus.GRANTED)

        assert (await ledger.get_request("1")).status == RequestStatus.PENDING
        assert not await holds(store, "1")
