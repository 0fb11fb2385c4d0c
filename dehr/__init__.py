"""
dehr Python Package

Permission lifecycle and access control for per-patient health records.
"""

__version__ = "0.1.0"

from .core.dehr import DEHR
from .core.config import Config, RedisConfig
from .core.types import (
    AccessDecision,
    AccessMode,
    EntityKind,
    GrantedPermission,
    GrantOutcome,
    HealthRecord,
    Organization,
    Patient,
    Permission,
    PermissionInput,
    PermissionRequest,
    Professional,
    RecordType,
    Relationship,
    RequestStatus,
    StatusChangeResult,
)

__all__ = [
    "DEHR",
    "Config",
    "RedisConfig",
    "AccessDecision",
    "AccessMode",
    "EntityKind",
    "GrantedPermission",
    "GrantOutcome",
    "HealthRecord",
    "Organization",
    "Patient",
    "Permission",
    "PermissionInput",
    "PermissionRequest",
    "Professional",
    "RecordType",
    "Relationship",
    "RequestStatus",
    "StatusChangeResult",
]
