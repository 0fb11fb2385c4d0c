"""
Main entry point of the dehr permission core.

``DEHR`` wires the entity store, the permission request ledger, the grant
manager and the authorization engine together and exposes the operations
callers use: submitting permission requests, deciding them, checking record
access and transferring patients. Every state change and access decision is
written to the audit log and counted in the metrics collector.
"""

from typing import Any, Dict, List, Optional, Union
import logging
import time

from .config import Config
from .types import (
    AccessDecision, AccessMode, AuditEvent, EntityKind, HealthRecord, PermissionInput,
    PermissionRequest, Professional, Relationship, RequestStatus, StatusChangeResult
)
from ..audit.logger import AuditLogger, create_audit_logger
from ..authz.engine import AuthorizationEngine
from ..demo.seed import setup_demo
from ..errors import ConcurrencyError, DEHRError, ValidationError, VersionConflictError
from ..metrics.collector import MetricConfig, MetricsCollector
from ..permissions.grants import GrantManager
from ..permissions.ledger import PermissionRequestLedger, coerce_decision_status
from ..store.factory import create_entity_store
from ..store.types import EntityStore, StorageStatus


class DEHR:
    """
    Permission lifecycle and access control for patient health records.
    Use DEHR.new() to construct an instance.
    """

    def __init__(
        self,
        config: Config,
        store: Optional[EntityStore] = None,
        audit_logger: Optional[AuditLogger] = None,
        metrics: Optional[MetricsCollector] = None,
        engine: Optional[AuthorizationEngine] = None,
    ):
        """
        Initialize a DEHR instance.

        Args:
            config: dehr configuration
            store: Entity store (defaults to the one named by config)
            audit_logger: Audit logger (defaults to the one named by config)
            metrics: Metrics collector (defaults to a private Prometheus registry)
            engine: Authorization engine (defaults to one reading the wall clock)
        """
        self.config = config
        self.store = store or create_entity_store(config)
        self.audit_logger = audit_logger or create_audit_logger(
            config.audit_logger_type,
            max_entries=config.audit_max_entries,
            file_path=config.audit_file_path,
        )
        self.metrics = metrics or MetricsCollector(MetricConfig(
            enabled=config.metrics_enabled,
            namespace=config.metrics_namespace,
        ))
        self.engine = engine or AuthorizationEngine()
        self.grants = GrantManager(
            self.store,
            max_update_attempts=config.max_update_attempts,
            metrics=self.metrics,
        )
        self.ledger = PermissionRequestLedger(
            self.store,
            self.grants,
            strict_transitions=config.strict_transitions,
            max_update_attempts=config.max_update_attempts,
        )
        self.logger = logging.getLogger(__name__)

    @classmethod
    def new(
        cls,
        config: Optional[Config] = None,
        store: Optional[EntityStore] = None,
        audit_logger: Optional[AuditLogger] = None,
        metrics: Optional[MetricsCollector] = None,
        engine: Optional[AuthorizationEngine] = None,
    ) -> "DEHR":
        """
        Create a new DEHR instance with the provided configuration and optional
        pluggable components.

        Raises:
            ValueError: If configuration is invalid

        Example:
            dehr = DEHR.new(Config(strict_transitions=True))
        """
        config = config or Config()
        config.validate()
        return cls(config, store, audit_logger, metrics, engine)

    async def submit_permission_request(
        self,
        permission: Union[PermissionInput, Dict[str, Any]],
        professional_id: str,
    ) -> str:
        """
        Submit a permission request on behalf of a professional.

        Args:
            permission: Requested access (record_types, write_access, patient_id,
                expiry_date), as a PermissionInput or an equivalent dict
            professional_id: The requesting professional

        Returns:
            The id of the new PENDING permission request

        Raises:
            ValidationError: If the permission is malformed
            NotFoundError: If the professional or the patient does not exist

        Example:
            request_id = await dehr.submit_permission_request(
                {"record_types": ["IDENTITY"], "write_access": True, "patient_id": "1"},
                professional_id="1",
            )
        """
        if isinstance(permission, dict):
            permission = PermissionInput.from_dict(permission)
        if not isinstance(permission, PermissionInput):
            raise ValidationError("permission must be a PermissionInput or a mapping",
                                  field="permission")
        value = permission.to_permission()

        # Both lookups raise NotFoundError for unknown ids.
        await self.store.get(EntityKind.PROFESSIONAL, professional_id)
        await self.store.get(EntityKind.PATIENT, value.patient.id)

        request_id = await self.ledger.submit_request(
            value, Relationship(EntityKind.PROFESSIONAL, professional_id))

        self.metrics.record_permission_request()
        await self.audit_logger.log(AuditEvent(
            event_type="permission_requested",
            actor_id=professional_id,
            resource=f"permission_request:{request_id}",
            details={"permission": value.to_dict()},
        ))
        return request_id

    async def change_permission_status(
        self,
        permission_request_id: str,
        new_status: Union[RequestStatus, str],
    ) -> StatusChangeResult:
        """
        Grant or revoke a permission request.

        Args:
            permission_request_id: The request to decide
            new_status: GRANTED or REVOKED

        Returns:
            StatusChangeResult with the grant outcome

        Raises:
            InvalidStatusError: If new_status is not GRANTED or REVOKED
            InvalidTransitionError: In strict mode, if the transition is not allowed
            NotFoundError: If the request or its professional does not exist
        """
        target = coerce_decision_status(new_status, permission_request_id)
        try:
            result = await self.ledger.apply_status_change(permission_request_id, target)
        except DEHRError as e:
            self.logger.error(f"Status change of {permission_request_id} to {target.value} failed: {e}")
            raise

        self.metrics.record_status_change(result.status.value, result.grant_outcome.value)
        await self.audit_logger.log(AuditEvent(
            event_type="permission_status_changed",
            actor_id="authority",
            resource=f"permission_request:{permission_request_id}",
            details=result.to_dict(),
        ))
        return result

    async def get_permission_request(self, permission_request_id: str) -> PermissionRequest:
        """Load a permission request by id."""
        return await self.ledger.get_request(permission_request_id)

    async def authorize(self, professional_id: str, record_id: str,
                        mode: AccessMode) -> AccessDecision:
        """
        Decide and audit an access by a professional to a health record.

        Raises:
            NotFoundError: If the professional or the record does not exist
        """
        started = time.perf_counter()
        professional: Professional = await self.store.get(EntityKind.PROFESSIONAL, professional_id)
        record: HealthRecord = await self.store.get(EntityKind.HEALTH_RECORD, record_id)
        decision = self.engine.evaluate(professional, record, mode)

        self.metrics.record_access_decision(mode.value, decision.allowed,
                                            time.perf_counter() - started)
        await self.audit_logger.log(AuditEvent(
            event_type="access_decision",
            actor_id=professional_id,
            resource=f"health_record:{record_id}",
            details=decision.to_dict(),
        ))
        return decision

    async def can_read(self, professional_id: str, record_id: str) -> bool:
        """Check if a professional may read a health record right now."""
        decision = await self.authorize(professional_id, record_id, AccessMode.READ)
        return decision.allowed

    async def can_write(self, professional_id: str, record_id: str) -> bool:
        """Check if a professional may write a health record right now."""
        decision = await self.authorize(professional_id, record_id, AccessMode.WRITE)
        return decision.allowed

    async def transfer_patient(self, patient_id: str, organization_id: str) -> None:
        """
        Move a patient to another organization.

        Raises:
            NotFoundError: If the patient or the organization does not exist
            ConcurrencyError: If concurrent writers kept winning the update
        """
        await self.store.get(EntityKind.ORGANIZATION, organization_id)

        for attempt in range(1, self.config.max_update_attempts + 1):
            patient = await self.store.get(EntityKind.PATIENT, patient_id)
            previous = patient.organization.id
            patient.organization = Relationship(EntityKind.ORGANIZATION, organization_id)
            try:
                await self.store.update(EntityKind.PATIENT, patient)
            except VersionConflictError as e:
                self.logger.warning(f"Conflict transferring patient {patient_id} "
                                    f"(attempt {attempt}/{self.config.max_update_attempts}): {e}")
                continue
            break
        else:
            raise ConcurrencyError(
                f"Could not transfer patient {patient_id} after "
                f"{self.config.max_update_attempts} attempts"
            )

        self.logger.info(f"Transferred patient {patient_id} from organization {previous} "
                         f"to {organization_id}")
        await self.audit_logger.log(AuditEvent(
            event_type="patient_transferred",
            actor_id="authority",
            resource=f"patient:{patient_id}",
            details={"from_organization": previous, "to_organization": organization_id},
        ))

    async def setup_demo(self, total: int = 10) -> Dict[EntityKind, List]:
        """Seed the store with numbered demo entities."""
        return await setup_demo(self.store, total)

    async def health_check(self) -> StorageStatus:
        """Check the health of the underlying store."""
        return await self.store.health_check()

    async def close(self) -> None:
        """Close the store and the audit logger."""
        await self.audit_logger.close()
        await self.store.close()
