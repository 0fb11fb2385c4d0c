"""
Demo data seeding.

Creates ``total`` organizations, patients, professionals and IDENTITY health
records, numbered 1..total, where patient N and professional N belong to
organization N and record N belongs to patient N. Each professional N also
gets a PENDING request for write access to patient N's IDENTITY records.
"""

from typing import Dict, List
import logging

from ..core.types import (
    EntityKind, HealthRecord, Organization, Patient, Permission, PermissionRequest,
    Professional, RecordType, Relationship, RequestStatus
)
from ..store.types import EntityStore


logger = logging.getLogger(__name__)


def build_demo_entities(total: int = 10) -> Dict[EntityKind, List]:
    """Build the demo entities without storing them."""
    if total < 1:
        raise ValueError("total must be at least 1")

    entities: Dict[EntityKind, List] = {kind: [] for kind in EntityKind}
    for n in range(1, total + 1):
        entity_id = str(n)
        organization = Relationship(EntityKind.ORGANIZATION, entity_id)
        patient = Relationship(EntityKind.PATIENT, entity_id)

        entities[EntityKind.ORGANIZATION].append(Organization(id=entity_id, name=f"Org {n}"))
        entities[EntityKind.PATIENT].append(
            Patient(id=entity_id, name=f"Patient {n}", organization=organization))
        entities[EntityKind.PROFESSIONAL].append(
            Professional(id=entity_id, name=f"Dr {n}", organization=organization))
        entities[EntityKind.HEALTH_RECORD].append(HealthRecord(
            id=entity_id,
            record_type=RecordType.IDENTITY,
            patient=patient,
            details=[f"{{sin: '{n}'}}"],
        ))
        entities[EntityKind.PERMISSION_REQUEST].append(PermissionRequest(
            id=entity_id,
            permission=Permission(
                record_types=[RecordType.IDENTITY],
                write_access=True,
                patient=patient,
            ),
            professional=Relationship(EntityKind.PROFESSIONAL, entity_id),
            status=RequestStatus.PENDING,
        ))
    return entities


async def setup_demo(store: EntityStore, total: int = 10) -> Dict[EntityKind, List]:
    """
    Seed the store with demo data.

    Raises:
        EntityAlreadyExistsError: If the demo ids are already taken
    """
    entities = build_demo_entities(total)
    for kind in (EntityKind.ORGANIZATION, EntityKind.PATIENT, EntityKind.PROFESSIONAL,
                 EntityKind.HEALTH_RECORD, EntityKind.PERMISSION_REQUEST):
        await store.add_all(kind, entities[kind])

    logger.info(f"Seeded demo data with {total} entities of each kind")
    return entities
