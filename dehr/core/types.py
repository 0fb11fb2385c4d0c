"""
Core types and data structures for the dehr permission core.

Entities are plain dataclasses. ``from_dict`` is the store boundary: it
validates the payload and raises ``ValidationError`` instead of letting a
malformed document reach the ledger, the grant manager or the engine.
"""

from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, List, Optional, Type, Union
from dataclasses import dataclass, field
from enum import Enum
import uuid

from ..errors import ValidationError


class EntityKind(Enum):
    """Kinds of entities kept by an entity store."""
    ORGANIZATION = "organization"
    PATIENT = "patient"
    PROFESSIONAL = "professional"
    HEALTH_RECORD = "health_record"
    PERMISSION_REQUEST = "permission_request"


class RecordType(Enum):
    """Closed set of health record content categories."""
    IDENTITY = "IDENTITY"
    VITALS = "VITALS"
    ALLERGIES = "ALLERGIES"
    MEDICATIONS = "MEDICATIONS"
    DIAGNOSES = "DIAGNOSES"
    LAB_RESULTS = "LAB_RESULTS"
    IMAGING = "IMAGING"
    IMMUNIZATIONS = "IMMUNIZATIONS"
    PROCEDURES = "PROCEDURES"
    NOTES = "NOTES"


class RequestStatus(Enum):
    """Lifecycle status of a permission request."""
    PENDING = "PENDING"
    GRANTED = "GRANTED"
    REVOKED = "REVOKED"


class GrantOutcome(Enum):
    """Result of applying a grant or revoke to a professional."""
    APPLIED = "applied"
    ALREADY_GRANTED = "already_granted"


class AccessMode(Enum):
    """Kind of access being authorized."""
    READ = "read"
    WRITE = "write"


def utc_now() -> datetime:
    """Current wall-clock time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any, field_name: str = "timestamp") -> Optional[datetime]:
    """Parse an optional ISO 8601 string or datetime into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str):
        try:
            return ensure_utc(datetime.fromisoformat(value))
        except ValueError as e:
            raise ValidationError(f"Invalid timestamp for {field_name}: {value!r}",
                                  field=field_name, cause=e)
    raise ValidationError(f"Invalid timestamp for {field_name}: {value!r}", field=field_name)


def _require(data: Dict[str, Any], key: str, owner: str) -> Any:
    if not isinstance(data, dict):
        raise ValidationError(f"{owner} payload must be a mapping, got {type(data).__name__}")
    if key not in data or data[key] is None:
        raise ValidationError(f"{owner} is missing required field '{key}'", field=key)
    return data[key]


def _require_str(data: Dict[str, Any], key: str, owner: str) -> str:
    value = _require(data, key, owner)
    if not isinstance(value, str) or not value:
        raise ValidationError(f"{owner}.{key} must be a non-empty string", field=key)
    return value


def _enum_value(enum_cls: Type[Enum], value: Any, field_name: str) -> Enum:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError as e:
        raise ValidationError(f"Invalid {field_name}: {value!r}", field=field_name, cause=e)


@dataclass(frozen=True)
class Relationship:
    """Pointer to another entity. Carries only its kind and id."""
    kind: EntityKind
    id: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {'kind': self.kind.value, 'id': self.id}

    @classmethod
    def from_dict(cls, data: Dict[str, Any],
                  expected_kind: Optional[EntityKind] = None) -> 'Relationship':
        """Create from dictionary representation."""
        kind = _enum_value(EntityKind, _require(data, 'kind', 'Relationship'), 'kind')
        if expected_kind is not None and kind != expected_kind:
            raise ValidationError(
                f"Relationship must point to {expected_kind.value}, got {kind.value}",
                field='kind')
        return cls(kind=kind, id=_require_str(data, 'id', 'Relationship'))

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"


def _relationship(data: Dict[str, Any], key: str, owner: str,
                  expected_kind: EntityKind) -> Relationship:
    value = _require(data, key, owner)
    if isinstance(value, Relationship):
        if value.kind != expected_kind:
            raise ValidationError(f"{owner}.{key} must point to {expected_kind.value}", field=key)
        return value
    return Relationship.from_dict(value, expected_kind)


@dataclass
class Permission:
    """
    Access terms requested by a professional: which record types of which
    patient, whether writing is allowed, and until when.
    """
    record_types: List[RecordType]
    write_access: bool
    patient: Relationship
    expiry_date: Optional[datetime] = None

    def __post_init__(self):
        if isinstance(self.record_types, (str, RecordType)):
            self.record_types = [self.record_types]
        types: List[RecordType] = []
        for record_type in self.record_types or []:
            record_type = _enum_value(RecordType, record_type, 'record_types')
            if record_type not in types:
                types.append(record_type)
        if not types:
            raise ValidationError("Permission.record_types must not be empty", field='record_types')
        self.record_types = types

        if not isinstance(self.write_access, bool):
            raise ValidationError("Permission.write_access must be a boolean", field='write_access')
        if not isinstance(self.patient, Relationship) or self.patient.kind != EntityKind.PATIENT:
            raise ValidationError("Permission.patient must reference a patient", field='patient')
        self.expiry_date = parse_timestamp(self.expiry_date, 'expiry_date')

    def covers(self, record_type: RecordType) -> bool:
        """Check if the permission includes the given record type."""
        return record_type in self.record_types

    def is_expired(self, now: datetime) -> bool:
        """Check if the permission has expired at ``now``."""
        return self.expiry_date is not None and not ensure_utc(now) < self.expiry_date

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            'record_types': [t.value for t in self.record_types],
            'write_access': self.write_access,
            'patient': self.patient.to_dict(),
            'expiry_date': self.expiry_date.isoformat() if self.expiry_date else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Permission':
        """Create from dictionary representation."""
        record_types = _require(data, 'record_types', 'Permission')
        if not isinstance(record_types, (list, tuple, set, frozenset)):
            raise ValidationError("Permission.record_types must be a list", field='record_types')
        return cls(
            record_types=list(record_types),
            write_access=_require(data, 'write_access', 'Permission'),
            patient=_relationship(data, 'patient', 'Permission', EntityKind.PATIENT),
            expiry_date=data.get('expiry_date'),
        )


@dataclass
class PermissionInput:
    """Caller-facing shape of a permission: the patient is given by id."""
    record_types: List[Union[RecordType, str]]
    patient_id: str
    write_access: bool = False
    expiry_date: Optional[Union[datetime, str]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PermissionInput':
        """Create from dictionary representation."""
        return cls(
            record_types=_require(data, 'record_types', 'PermissionInput'),
            patient_id=_require_str(data, 'patient_id', 'PermissionInput'),
            write_access=data.get('write_access', False),
            expiry_date=data.get('expiry_date'),
        )

    def to_permission(self) -> Permission:
        """Build the validated permission value object."""
        if not isinstance(self.patient_id, str) or not self.patient_id:
            raise ValidationError("patient_id must be a non-empty string", field='patient_id')
        return Permission(
            record_types=self.record_types,
            write_access=self.write_access,
            patient=Relationship(EntityKind.PATIENT, self.patient_id),
            expiry_date=self.expiry_date,
        )


@dataclass
class GrantedPermission:
    """A permission copied into a professional's active set when granted."""
    permission: Permission
    permission_request_id: str
    granted_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            'permission': self.permission.to_dict(),
            'permission_request_id': self.permission_request_id,
            'granted_at': self.granted_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GrantedPermission':
        """Create from dictionary representation."""
        return cls(
            permission=Permission.from_dict(_require(data, 'permission', 'GrantedPermission')),
            permission_request_id=_require_str(data, 'permission_request_id', 'GrantedPermission'),
            granted_at=parse_timestamp(data.get('granted_at'), 'granted_at') or utc_now(),
        )


@dataclass
class Organization:
    """A healthcare organization."""
    KIND: ClassVar[EntityKind] = EntityKind.ORGANIZATION

    id: str
    name: str
    version: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'name': self.name, 'version': self.version}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Organization':
        return cls(
            id=_require_str(data, 'id', 'Organization'),
            name=_require_str(data, 'name', 'Organization'),
            version=int(data.get('version', 0)),
        )


@dataclass
class Patient:
    """A patient, attached to one organization at a time."""
    KIND: ClassVar[EntityKind] = EntityKind.PATIENT

    id: str
    name: str
    organization: Relationship
    version: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'organization': self.organization.to_dict(),
            'version': self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Patient':
        return cls(
            id=_require_str(data, 'id', 'Patient'),
            name=_require_str(data, 'name', 'Patient'),
            organization=_relationship(data, 'organization', 'Patient', EntityKind.ORGANIZATION),
            version=int(data.get('version', 0)),
        )


@dataclass
class Professional:
    """
    A healthcare professional and the grants currently attached to them.

    ``granted_permissions`` never holds two entries for the same
    permission request id.
    """
    KIND: ClassVar[EntityKind] = EntityKind.PROFESSIONAL

    id: str
    name: str
    organization: Relationship
    granted_permissions: List[GrantedPermission] = field(default_factory=list)
    version: int = 0

    def find_grant(self, permission_request_id: str) -> Optional[GrantedPermission]:
        """Return the grant originating from the given request, if any."""
        for granted in self.granted_permissions:
            if granted.permission_request_id == permission_request_id:
                return granted
        return None

    def has_grant(self, permission_request_id: str) -> bool:
        """Check if a grant from the given request is attached."""
        return self.find_grant(permission_request_id) is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'organization': self.organization.to_dict(),
            'granted_permissions': [g.to_dict() for g in self.granted_permissions],
            'version': self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Professional':
        entity_id = _require_str(data, 'id', 'Professional')
        grants = data.get('granted_permissions') or []
        if not isinstance(grants, list):
            raise ValidationError("Professional.granted_permissions must be a list",
                                  field='granted_permissions')
        granted_permissions = [GrantedPermission.from_dict(g) for g in grants]
        seen = set()
        for granted in granted_permissions:
            if granted.permission_request_id in seen:
                raise ValidationError(
                    f"Duplicate grant for permission request '{granted.permission_request_id}'",
                    field='granted_permissions')
            seen.add(granted.permission_request_id)
        return cls(
            id=entity_id,
            name=_require_str(data, 'name', 'Professional'),
            organization=_relationship(data, 'organization', 'Professional',
                                       EntityKind.ORGANIZATION),
            granted_permissions=granted_permissions,
            version=int(data.get('version', 0)),
        )


@dataclass
class HealthRecord:
    """A patient's health record. ``details`` is opaque to the core."""
    KIND: ClassVar[EntityKind] = EntityKind.HEALTH_RECORD

    id: str
    record_type: RecordType
    patient: Relationship
    details: List[str] = field(default_factory=list)
    version: int = 0

    def __post_init__(self):
        self.record_type = _enum_value(RecordType, self.record_type, 'record_type')

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'record_type': self.record_type.value,
            'patient': self.patient.to_dict(),
            'details': list(self.details),
            'version': self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HealthRecord':
        entity_id = _require_str(data, 'id', 'HealthRecord')
        details = data.get('details') or []
        if not isinstance(details, list):
            raise ValidationError("HealthRecord.details must be a list", field='details')
        return cls(
            id=entity_id,
            record_type=_require(data, 'record_type', 'HealthRecord'),
            patient=_relationship(data, 'patient', 'HealthRecord', EntityKind.PATIENT),
            details=details,
            version=int(data.get('version', 0)),
        )


@dataclass
class PermissionRequest:
    """A professional's request for access, tracked through its lifecycle."""
    KIND: ClassVar[EntityKind] = EntityKind.PERMISSION_REQUEST

    id: str
    permission: Permission
    professional: Relationship
    status: RequestStatus = RequestStatus.PENDING
    created_at: datetime = field(default_factory=utc_now)
    updated_at: Optional[datetime] = None
    version: int = 0

    def __post_init__(self):
        self.status = _enum_value(RequestStatus, self.status, 'status')

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'permission': self.permission.to_dict(),
            'professional': self.professional.to_dict(),
            'status': self.status.value,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
            'version': self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PermissionRequest':
        return cls(
            id=_require_str(data, 'id', 'PermissionRequest'),
            permission=Permission.from_dict(_require(data, 'permission', 'PermissionRequest')),
            professional=_relationship(data, 'professional', 'PermissionRequest',
                                       EntityKind.PROFESSIONAL),
            status=data.get('status', RequestStatus.PENDING.value),
            created_at=parse_timestamp(data.get('created_at'), 'created_at') or utc_now(),
            updated_at=parse_timestamp(data.get('updated_at'), 'updated_at'),
            version=int(data.get('version', 0)),
        )


Entity = Union[Organization, Patient, Professional, HealthRecord, PermissionRequest]

ENTITY_TYPES: Dict[EntityKind, Type] = {
    EntityKind.ORGANIZATION: Organization,
    EntityKind.PATIENT: Patient,
    EntityKind.PROFESSIONAL: Professional,
    EntityKind.HEALTH_RECORD: HealthRecord,
    EntityKind.PERMISSION_REQUEST: PermissionRequest,
}


@dataclass
class StatusChangeResult:
    """Outcome of a permission status change."""
    permission_request_id: str
    status: RequestStatus
    grant_outcome: Optional[GrantOutcome] = None
    previous_status: Optional[RequestStatus] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'permission_request_id': self.permission_request_id,
            'status': self.status.value,
            'grant_outcome': self.grant_outcome.value if self.grant_outcome else None,
            'previous_status': self.previous_status.value if self.previous_status else None,
        }


@dataclass
class AccessDecision:
    """Authorization decision with the reason and the matching grant."""
    allowed: bool
    reason: str
    professional_id: str
    record_id: str
    mode: AccessMode
    permission_request_id: Optional[str] = None
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'allowed': self.allowed,
            'reason': self.reason,
            'professional_id': self.professional_id,
            'record_id': self.record_id,
            'mode': self.mode.value,
            'permission_request_id': self.permission_request_id,
            'timestamp': self.timestamp.isoformat(),
        }


@dataclass
class AuditEvent:
    """Audit event for logging and compliance"""
    event_type: str  # e.g. "permission_requested", "access_decision"
    actor_id: str
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=utc_now)
    details: Dict[str, Any] = field(default_factory=dict)
    resource: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'event_id': self.event_id,
            'event_type': self.event_type,
            'actor_id': self.actor_id,
            'timestamp': self.timestamp.isoformat(),
            'details': self.details,
            'resource': self.resource,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        return cls(
            event_id=_require_str(data, 'event_id', 'AuditEvent'),
            event_type=_require_str(data, 'event_type', 'AuditEvent'),
            actor_id=_require(data, 'actor_id', 'AuditEvent'),
            timestamp=parse_timestamp(data.get('timestamp'), 'timestamp') or utc_now(),
            details=data.get('details') or {},
            resource=data.get('resource'),
        )
