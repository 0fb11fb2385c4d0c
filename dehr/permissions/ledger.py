"""
Permission request ledger: creation and status tracking of permission requests.
"""

from typing import Callable, Optional, Tuple, Union
import logging
import uuid

from ..core.types import (
    EntityKind, GrantOutcome, Permission, PermissionRequest, Relationship, RequestStatus,
    StatusChangeResult, utc_now
)
from ..errors import (
    ConcurrencyError, DEHRError, InvalidStatusError, InvalidTransitionError, ValidationError,
    VersionConflictError
)
from ..store.types import EntityStore
from .grants import GrantManager


logger = logging.getLogger(__name__)

# Statuses a request can be moved to by a decision.
DECISION_STATUSES = (RequestStatus.GRANTED, RequestStatus.REVOKED)

# Transitions accepted in strict mode. REVOKED is terminal.
ALLOWED_TRANSITIONS = {
    RequestStatus.PENDING: (RequestStatus.GRANTED, RequestStatus.REVOKED),
    RequestStatus.GRANTED: (RequestStatus.REVOKED,),
    RequestStatus.REVOKED: (),
}


def coerce_decision_status(status: Union[RequestStatus, str],
                           permission_request_id: Optional[str] = None) -> RequestStatus:
    """
    Turn a caller-supplied status into GRANTED or REVOKED.

    Raises:
        InvalidStatusError: For PENDING or any unknown value
    """
    if isinstance(status, str):
        try:
            status = RequestStatus(status.strip().upper())
        except ValueError:
            raise InvalidStatusError(status, permission_request_id)
    if status not in DECISION_STATUSES:
        raise InvalidStatusError(status, permission_request_id)
    return status


class PermissionRequestLedger:
    """
    Creates permission requests and moves them through their lifecycle.

    With ``strict_transitions`` enabled (the default) a PENDING request can be
    granted or revoked, a GRANTED request can be revoked and a REVOKED request
    is final. Disabled, any decision is accepted from any status: re-granting
    reports ALREADY_GRANTED, re-revoking is a no-op and a revoked request can
    be granted again.
    """

    def __init__(self, store: EntityStore, grant_manager: GrantManager,
                 strict_transitions: bool = True, max_update_attempts: int = 5,
                 id_factory: Callable[[], str] = None):
        self.store = store
        self.grant_manager = grant_manager
        self.strict_transitions = strict_transitions
        self.max_update_attempts = max_update_attempts
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))

    async def submit_request(self, permission: Permission, professional: Relationship) -> str:
        """
        Record a new PENDING permission request.

        Args:
            permission: The requested access terms
            professional: Reference to the requesting professional

        Returns:
            The id of the new permission request
        """
        if professional.kind != EntityKind.PROFESSIONAL:
            raise ValidationError("Permission requests must reference a professional",
                                  field="professional")

        request = PermissionRequest(
            id=self._id_factory(),
            permission=permission,
            professional=professional,
            status=RequestStatus.PENDING,
        )
        await self.store.add(EntityKind.PERMISSION_REQUEST, request)

        logger.info(f"Permission request {request.id} submitted by professional {professional.id} "
                    f"for patient {permission.patient.id}")
        return request.id

    async def get_request(self, permission_request_id: str) -> PermissionRequest:
        """
        Load a permission request.

        Raises:
            NotFoundError: If the id is unknown
        """
        return await self.store.get(EntityKind.PERMISSION_REQUEST, permission_request_id)

    async def set_status(self, permission_request_id: str,
                         status: RequestStatus) -> PermissionRequest:
        """
        Set the status field of a permission request. Setting the current
        status again changes nothing.

        Raises:
            NotFoundError: If the id is unknown
        """
        for _ in range(self.max_update_attempts):
            request = await self.get_request(permission_request_id)
            if request.status == status:
                return request

            request.status = status
            request.updated_at = utc_now()
            try:
                await self.store.update(EntityKind.PERMISSION_REQUEST, request)
            except VersionConflictError as e:
                logger.warning(f"Conflict while setting status of {permission_request_id}: {e}")
                continue
            return request

        raise ConcurrencyError(
            f"Could not set status of permission request {permission_request_id} after "
            f"{self.max_update_attempts} attempts"
        )

    async def apply_status_change(self, permission_request_id: str,
                                  target_status: Union[RequestStatus, str]) -> StatusChangeResult:
        """
        Apply a grant or revoke decision to a permission request.

        The new status is claimed first with a versioned update of the
        request, so two racing decisions are checked against the transition
        table one after the other. The professional's grant set is then
        brought in line with the claimed status. If that fails the claim is
        undone. If another decision claimed the request in the meantime, the
        grant set is reconciled with whatever status the request ends up in.

        Raises:
            InvalidStatusError: If the target is not GRANTED or REVOKED
            InvalidTransitionError: In strict mode, if the transition is not allowed
            NotFoundError: If the request or its professional is unknown
            ConcurrencyError: If concurrent writers kept winning the updates
        """
        target = coerce_decision_status(target_status, permission_request_id)
        request, previous = await self._claim(permission_request_id, target)

        try:
            outcome = await self._sync_grants(request)
        except DEHRError as e:
            logger.error(f"Grant update for permission request {permission_request_id} "
                         f"failed, restoring {previous.value}: {e}")
            await self._release(request, previous)
            raise

        await self._reconcile(request)

        logger.info(f"Permission request {permission_request_id}: {previous.value} -> {target.value} "
                    f"({outcome.value})")
        return StatusChangeResult(
            permission_request_id=permission_request_id,
            status=target,
            grant_outcome=outcome,
            previous_status=previous,
        )

    async def _claim(self, permission_request_id: str,
                     target: RequestStatus) -> Tuple[PermissionRequest, RequestStatus]:
        for attempt in range(1, self.max_update_attempts + 1):
            request = await self.get_request(permission_request_id)
            previous = request.status

            if self.strict_transitions and target not in ALLOWED_TRANSITIONS[previous]:
                raise InvalidTransitionError(permission_request_id, previous, target)

            # Fail before writing anything if the professional is gone.
            await self.store.get(EntityKind.PROFESSIONAL, request.professional.id)

            if previous == target:
                return request, previous

            request.status = target
            request.updated_at = utc_now()
            try:
                await self.store.update(EntityKind.PERMISSION_REQUEST, request)
            except VersionConflictError as e:
                logger.warning(f"Conflict claiming {target.value} for {permission_request_id} "
                               f"(attempt {attempt}/{self.max_update_attempts}): {e}")
                continue
            return request, previous

        raise ConcurrencyError(
            f"Could not claim status {target.value} for permission request "
            f"{permission_request_id} after {self.max_update_attempts} attempts"
        )

    async def _sync_grants(self, request: PermissionRequest) -> GrantOutcome:
        if request.status == RequestStatus.GRANTED:
            return await self.grant_manager.grant(request)
        return await self.grant_manager.revoke(request)

    async def _release(self, claimed: PermissionRequest, previous: RequestStatus) -> None:
        if claimed.status == previous:
            return
        try:
            current = await self.get_request(claimed.id)
            if current.version != claimed.version:
                # Another decision took over and owns the grant set now.
                return
            current.status = previous
            current.updated_at = utc_now()
            await self.store.update(EntityKind.PERMISSION_REQUEST, current)
        except DEHRError as e:
            logger.error(f"Could not restore status {previous.value} of permission request "
                         f"{claimed.id}: {e}")

    async def _reconcile(self, acted_on: PermissionRequest) -> None:
        for _ in range(self.max_update_attempts):
            current = await self.get_request(acted_on.id)
            if current.version == acted_on.version:
                return
            logger.info(f"Permission request {current.id} moved to {current.status.value} "
                        f"while its grants were updated, reconciling")
            await self._sync_grants(current)
            acted_on = current

        raise ConcurrencyError(
            f"Grants of permission request {acted_on.id} kept changing after "
            f"{self.max_update_attempts} attempts"
        )
