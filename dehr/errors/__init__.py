"""
Structured error handling for the dehr permission core.

Every error raised by the core derives from ``DEHRError`` and carries a
machine-readable ``ErrorCode``, the component it originated from and an
optional ``ErrorContext`` with identifiers useful for audit trails.
"""

from enum import Enum
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from dataclasses import dataclass, field


class ErrorCode(Enum):
    """Structured error codes for the permission core."""

    # Lookup errors
    NOT_FOUND = "not_found"
    ALREADY_EXISTS = "already_exists"

    # Lifecycle errors
    INVALID_STATUS = "invalid_status"
    INVALID_TRANSITION = "invalid_transition"

    # Concurrency errors
    VERSION_CONFLICT = "version_conflict"
    CONCURRENT_MODIFICATION = "concurrent_modification"

    # Validation errors
    MISSING_PARAMETER = "missing_parameter"
    INVALID_PARAMETER = "invalid_parameter"
    VALIDATION_FAILED = "validation_failed"

    # Storage errors
    STORAGE_ERROR = "storage_error"
    CONNECTION_FAILED = "connection_failed"


class ErrorSource(Enum):
    """Components where errors can originate."""

    LEDGER = "ledger"
    GRANT_MANAGER = "grant_manager"
    AUTHORIZATION = "authorization"
    STORAGE = "storage"
    VALIDATION = "validation"
    AUDIT_LOGGER = "audit_logger"
    CORE = "core"


@dataclass
class ErrorContext:
    """Additional context for errors."""

    entity_kind: Optional[str] = None
    entity_id: Optional[str] = None
    professional_id: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: Dict[str, Any] = field(default_factory=dict)


class DEHRError(Exception):
    """
    Base exception class for all dehr errors.

    Provides structured error information with an error code, the source
    component, additional context and the underlying cause if any.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        source: ErrorSource = ErrorSource.CORE,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None
    ):
        self.code = code
        self.message = message
        self.source = source
        self.context = context or ErrorContext()
        self.cause = cause

        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary representation."""
        result = {
            "error": self.code.value,
            "error_description": self.message,
            "error_source": self.source.value,
            "timestamp": self.context.timestamp.isoformat(),
        }

        if self.context.entity_kind:
            result["entity_kind"] = self.context.entity_kind

        if self.context.entity_id:
            result["entity_id"] = self.context.entity_id

        if self.context.professional_id:
            result["professional_id"] = self.context.professional_id

        if self.context.metadata:
            result["metadata"] = self.context.metadata

        if self.cause:
            result["caused_by"] = str(self.cause)

        return result


class NotFoundError(DEHRError):
    """A referenced professional, patient, record or request is absent."""

    def __init__(self, kind: str, entity_id: str, message: str = "", **kwargs):
        self.kind = kind
        self.entity_id = entity_id
        context = kwargs.pop("context", None) or ErrorContext()
        context.entity_kind = kind
        context.entity_id = entity_id
        super().__init__(
            code=ErrorCode.NOT_FOUND,
            message=message or f"{kind} '{entity_id}' not found",
            source=kwargs.pop("source", ErrorSource.STORAGE),
            context=context,
            **kwargs
        )


class StorageError(DEHRError):
    """Errors raised by an entity store backend."""

    def __init__(self, operation: str, message: str, code: ErrorCode = ErrorCode.STORAGE_ERROR,
                 **kwargs):
        self.operation = operation
        super().__init__(
            code=code,
            message=f"Storage error in {operation}: {message}",
            source=ErrorSource.STORAGE,
            **kwargs
        )


class EntityNotFoundError(NotFoundError):
    """Raised by a store when ``get``/``update`` target an unknown key."""
    pass


class EntityAlreadyExistsError(StorageError):
    """Raised by a store when ``add`` targets an existing key."""

    def __init__(self, kind: str, entity_id: str, **kwargs):
        self.kind = kind
        self.entity_id = entity_id
        context = kwargs.pop("context", None) or ErrorContext(entity_kind=kind, entity_id=entity_id)
        super().__init__(
            "add",
            f"{kind} '{entity_id}' already exists",
            code=ErrorCode.ALREADY_EXISTS,
            context=context,
            **kwargs
        )


class VersionConflictError(StorageError):
    """Raised when a conditional update loses against a concurrent writer."""

    def __init__(self, kind: str, entity_id: str, expected: int, actual: int, **kwargs):
        self.kind = kind
        self.entity_id = entity_id
        self.expected = expected
        self.actual = actual
        context = kwargs.pop("context", None) or ErrorContext(entity_kind=kind, entity_id=entity_id)
        context.metadata.update({"expected_version": expected, "actual_version": actual})
        super().__init__(
            "update",
            f"{kind} '{entity_id}' is at version {actual}, expected {expected}",
            code=ErrorCode.VERSION_CONFLICT,
            context=context,
            **kwargs
        )


class ValidationError(DEHRError):
    """Errors related to malformed payloads and input validation."""

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        self.field = field
        context = kwargs.pop("context", None) or ErrorContext()
        if field:
            context.metadata["field"] = field

        super().__init__(
            code=kwargs.pop("code", ErrorCode.VALIDATION_FAILED),
            message=message,
            source=ErrorSource.VALIDATION,
            context=context,
            **kwargs
        )


class InvalidStatusError(DEHRError):
    """A status change targets something other than GRANTED or REVOKED."""

    def __init__(self, status: Any, permission_request_id: Optional[str] = None, **kwargs):
        self.status = status
        context = kwargs.pop("context", None) or ErrorContext(
            entity_kind="permission_request", entity_id=permission_request_id)
        super().__init__(
            code=ErrorCode.INVALID_STATUS,
            message=f"Invalid permission status: {status!r}",
            source=ErrorSource.LEDGER,
            context=context,
            **kwargs
        )


class InvalidTransitionError(DEHRError):
    """A status change is not an allowed transition in strict mode."""

    def __init__(self, permission_request_id: str, current: Any, target: Any, **kwargs):
        self.permission_request_id = permission_request_id
        self.current = current
        self.target = target
        context = kwargs.pop("context", None) or ErrorContext(
            entity_kind="permission_request", entity_id=permission_request_id)
        super().__init__(
            code=ErrorCode.INVALID_TRANSITION,
            message=f"Permission request '{permission_request_id}' cannot move from "
                    f"{getattr(current, 'value', current)} to {getattr(target, 'value', target)}",
            source=ErrorSource.LEDGER,
            context=context,
            **kwargs
        )


class ConcurrencyError(DEHRError):
    """Optimistic update of an aggregate kept conflicting with other writers."""

    def __init__(self, message: str, professional_id: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", None) or ErrorContext(
            entity_kind="professional", entity_id=professional_id, professional_id=professional_id)
        super().__init__(
            code=ErrorCode.CONCURRENT_MODIFICATION,
            message=message,
            source=ErrorSource.GRANT_MANAGER,
            context=context,
            **kwargs
        )


__all__ = [
    "ErrorCode",
    "ErrorSource",
    "ErrorContext",
    "DEHRError",
    "NotFoundError",
    "StorageError",
    "EntityNotFoundError",
    "EntityAlreadyExistsError",
    "VersionConflictError",
    "ValidationError",
    "InvalidStatusError",
    "InvalidTransitionError",
    "ConcurrencyError",
]
