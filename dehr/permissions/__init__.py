"""
Package permissions implements the permission request lifecycle:
the ledger that tracks requests and the grant manager that keeps each
professional's active grant set in step with it.
"""

from .grants import GrantManager
from .ledger import (
    PermissionRequestLedger, coerce_decision_status, DECISION_STATUSES, ALLOWED_TRANSITIONS
)

__all__ = [
    'GrantManager',
    'PermissionRequestLedger',
    'coerce_decision_status',
    'DECISION_STATUSES',
    'ALLOWED_TRANSITIONS',
]
