"""
Authorization engine for health record access.

A professional may read a record when some grant they hold covers the
record's type, is for the record's patient and has not expired. Writing
additionally needs a grant with write access. Grants are evaluated fresh
on every call against the current wall-clock time; expired grants stay
attached but never match.
"""

from datetime import datetime
from typing import Callable, Optional
import logging

from ..core.types import (
    AccessDecision, AccessMode, GrantedPermission, HealthRecord, Professional, ensure_utc,
    utc_now
)


logger = logging.getLogger(__name__)


def grant_allows(granted: GrantedPermission, record: HealthRecord, mode: AccessMode,
                 now: datetime) -> bool:
    """Check if a single grant allows ``mode`` access to ``record`` at ``now``."""
    permission = granted.permission
    if mode == AccessMode.WRITE and permission.write_access is not True:
        return False
    return (
        permission.covers(record.record_type)
        and permission.patient.id == record.patient.id
        and not permission.is_expired(now)
    )


def find_matching_grant(professional: Professional, record: HealthRecord, mode: AccessMode,
                        now: datetime) -> Optional[GrantedPermission]:
    """Return the first grant allowing the access, or None."""
    for granted in professional.granted_permissions:
        if grant_allows(granted, record, mode, now):
            return granted
    return None


def can_read(professional: Professional, record: HealthRecord,
             now: Optional[datetime] = None) -> bool:
    """Check if the professional may read the record right now."""
    now = ensure_utc(now) if now else utc_now()
    return find_matching_grant(professional, record, AccessMode.READ, now) is not None


def can_write(professional: Professional, record: HealthRecord,
              now: Optional[datetime] = None) -> bool:
    """Check if the professional may write the record right now."""
    now = ensure_utc(now) if now else utc_now()
    return find_matching_grant(professional, record, AccessMode.WRITE, now) is not None


class AuthorizationEngine:
    """
    Stateless access decisions against a professional's current grant set.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        """
        Args:
            clock: Source of the current time, read once per decision
        """
        self.clock = clock

    def _now(self, now: Optional[datetime]) -> datetime:
        return ensure_utc(now) if now else ensure_utc(self.clock())

    def can_read(self, professional: Professional, record: HealthRecord,
                 now: Optional[datetime] = None) -> bool:
        return can_read(professional, record, self._now(now))

    def can_write(self, professional: Professional, record: HealthRecord,
                  now: Optional[datetime] = None) -> bool:
        return can_write(professional, record, self._now(now))

    def evaluate(self, professional: Professional, record: HealthRecord, mode: AccessMode,
                 now: Optional[datetime] = None) -> AccessDecision:
        """
        Decide an access and explain the decision.

        Returns:
            AccessDecision naming the matching permission request when allowed
        """
        now = self._now(now)
        granted = find_matching_grant(professional, record, mode, now)

        if granted is not None:
            decision = AccessDecision(
                allowed=True,
                reason=f"{mode.value} access granted by permission request "
                       f"{granted.permission_request_id}",
                professional_id=professional.id,
                record_id=record.id,
                mode=mode,
                permission_request_id=granted.permission_request_id,
                timestamp=now,
            )
        else:
            if not professional.granted_permissions:
                reason = "professional holds no granted permissions"
            else:
                reason = (f"no active grant allows {mode.value} access to "
                          f"{record.record_type.value} records of patient {record.patient.id}")
            decision = AccessDecision(
                allowed=False,
                reason=reason,
                professional_id=professional.id,
                record_id=record.id,
                mode=mode,
                timestamp=now,
            )

        logger.debug(f"Access decision for professional {professional.id} on record {record.id} "
                     f"({mode.value}): {decision.allowed} - {decision.reason}")
        return decision
