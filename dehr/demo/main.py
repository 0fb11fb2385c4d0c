"""
dehr demo application.

Walks through the permission lifecycle on seeded demo data:
- Seeding organizations, patients, professionals and records
- Granting a pending permission request
- Read and write checks against health records
- Expiring and revoking access
- Audit log retrieval
"""

from datetime import timedelta
import asyncio
import logging
import sys

from dehr.core.config import Config
from dehr.core.dehr import DEHR
from dehr.core.types import PermissionInput, RecordType, utc_now


async def run() -> int:
    """Run the demo and return a process exit code"""
    print("dehr Demo Application")
    print("=" * 50)
    print()

    dehr = DEHR.new(Config())
    print("✓ Created DEHR instance (memory store, strict transitions)")
    print()

    print("Step 1: Seed demo data")
    print("-" * 40)
    await dehr.setup_demo(total=3)
    print("✓ Seeded 3 organizations, patients, professionals, records and pending requests")
    print()

    print("Step 2: Grant a pending request")
    print("-" * 40)
    result = await dehr.change_permission_status("1", "GRANTED")
    print(f"✓ Request {result.permission_request_id}: "
          f"{result.previous_status.value} -> {result.status.value} ({result.grant_outcome.value})")
    print(f"  - Dr 1 can read record 1:  {await dehr.can_read('1', '1')}")
    print(f"  - Dr 1 can write record 1: {await dehr.can_write('1', '1')}")
    print(f"  - Dr 1 can read record 2:  {await dehr.can_read('1', '2')}")
    print()

    print("Step 3: Request with an expiry in the past")
    print("-" * 40)
    request_id = await dehr.submit_permission_request(PermissionInput(
        record_types=[RecordType.IDENTITY],
        patient_id="2",
        write_access=False,
        expiry_date=utc_now() - timedelta(minutes=5),
    ), professional_id="2")
    await dehr.change_permission_status(request_id, "GRANTED")
    print(f"✓ Granted expired request {request_id}")
    print(f"  - Dr 2 can read record 2: {await dehr.can_read('2', '2')}")
    print()

    print("Step 4: Revoke access")
    print("-" * 40)
    revoke_id = await dehr.submit_permission_request(
        {"record_types": ["IDENTITY"], "patient_id": "3", "write_access": True},
        professional_id="3",
    )
    await dehr.change_permission_status(revoke_id, "GRANTED")
    print(f"  - Dr 3 can read record 3 after grant:  {await dehr.can_read('3', '3')}")
    await dehr.change_permission_status(revoke_id, "REVOKED")
    print(f"  - Dr 3 can read record 3 after revoke:  {await dehr.can_read('3', '3')}")
    print()

    print("Step 5: Audit log")
    print("-" * 40)
    events = await dehr.audit_logger.get_events()
    print(f"✓ Retrieved {len(events)} audit events")
    for event in events:
        print(f"  - {event.timestamp.isoformat()} {event.event_type} by {event.actor_id} "
              f"on {event.resource}")
    print()

    await dehr.close()
    print("Demo completed successfully!")
    return 0


def main() -> int:
    """Console entry point"""
    logging.basicConfig(level=logging.WARNING)
    try:
        return asyncio.run(run())
    except KeyboardInterrupt:
        print("\nDemo interrupted by user")
        return 1


if __name__ == "__main__":
    sys.exit(main())
