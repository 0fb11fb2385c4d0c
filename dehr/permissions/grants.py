"""
Grant management: attaching and detaching granted permissions on professionals.

A professional's ``granted_permissions`` is changed with a
load-check-mutate-save cycle. The save is a versioned update, so when two
writers race on the same professional exactly one of them commits and the
other reloads and re-checks. That keeps at most one grant per permission
request id without any lock shared between processes.
"""

from datetime import datetime
from typing import Callable, List, Optional, Tuple
import copy
import logging

from ..core.types import (
    EntityKind, GrantedPermission, GrantOutcome, PermissionRequest, Professional, utc_now
)
from ..errors import ConcurrencyError, VersionConflictError
from ..metrics.collector import MetricsCollector
from ..store.types import EntityStore


logger = logging.getLogger(__name__)

# Mutation applied to a freshly loaded professional. Returns the outcome and
# whether the professional was changed and needs saving.
Mutation = Callable[[Professional], Tuple[GrantOutcome, bool]]


class GrantManager:
    """
    Maintains each professional's active grant set.
    """

    def __init__(self, store: EntityStore, max_update_attempts: int = 5,
                 metrics: Optional[MetricsCollector] = None):
        self.store = store
        self.max_update_attempts = max_update_attempts
        self.metrics = metrics

    async def grant(self, permission_request: PermissionRequest) -> GrantOutcome:
        """
        Attach a grant for the request to its professional.

        Args:
            permission_request: The request being granted

        Returns:
            GrantOutcome.APPLIED if a grant was added, GrantOutcome.ALREADY_GRANTED
            if the professional already holds one for this request

        Raises:
            NotFoundError: If the professional does not exist
            ConcurrencyError: If concurrent writers kept winning the update
        """
        request_id = permission_request.id

        def attach(professional: Professional) -> Tuple[GrantOutcome, bool]:
            if professional.has_grant(request_id):
                logger.info(f"Permission request {request_id} already granted to "
                            f"professional {professional.id}")
                return GrantOutcome.ALREADY_GRANTED, False
            professional.granted_permissions.append(GrantedPermission(
                permission=copy.deepcopy(permission_request.permission),
                permission_request_id=request_id,
            ))
            return GrantOutcome.APPLIED, True

        return await self._mutate(permission_request.professional.id, attach, "grant", request_id)

    async def revoke(self, permission_request: PermissionRequest) -> GrantOutcome:
        """
        Remove every grant originating from the request from its professional.
        Revoking a request that was never granted succeeds and changes nothing.

        Raises:
            NotFoundError: If the professional does not exist
            ConcurrencyError: If concurrent writers kept winning the update
        """
        request_id = permission_request.id

        def detach(professional: Professional) -> Tuple[GrantOutcome, bool]:
            remaining = [
                granted for granted in professional.granted_permissions
                if granted.permission_request_id != request_id
            ]
            changed = len(remaining) != len(professional.granted_permissions)
            professional.granted_permissions = remaining
            return GrantOutcome.APPLIED, changed

        return await self._mutate(permission_request.professional.id, detach, "revoke", request_id)

    async def active_grants(self, professional_id: str,
                            at: Optional[datetime] = None) -> List[GrantedPermission]:
        """Return the professional's grants that have not expired at ``at``."""
        now = at or utc_now()
        professional = await self.store.get(EntityKind.PROFESSIONAL, professional_id)
        return [
            granted for granted in professional.granted_permissions
            if not granted.permission.is_expired(now)
        ]

    async def _mutate(self, professional_id: str, mutation: Mutation,
                      operation: str, request_id: str) -> GrantOutcome:
        for attempt in range(1, self.max_update_attempts + 1):
            professional = await self.store.get(EntityKind.PROFESSIONAL, professional_id)
            outcome, changed = mutation(professional)
            if not changed:
                return outcome

            try:
                await self.store.update(EntityKind.PROFESSIONAL, professional)
            except VersionConflictError as e:
                if self.metrics:
                    self.metrics.record_update_conflict()
                logger.warning(f"Conflict on professional {professional_id} during {operation} "
                               f"of {request_id} (attempt {attempt}/{self.max_update_attempts}): {e}")
                continue

            logger.info(f"Applied {operation} of permission request {request_id} "
                        f"to professional {professional_id}")
            return outcome

        raise ConcurrencyError(
            f"Could not {operation} permission request {request_id}: professional "
            f"{professional_id} kept changing after {self.max_update_attempts} attempts",
            professional_id=professional_id,
        )
