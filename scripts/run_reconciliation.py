#!/usr/bin/env python3
"""
Run the nightly reconciliation once, outside the API process.

Usage:
    python scripts/run_reconciliation.py                        # Default batch caps
    python scripts/run_reconciliation.py --vehicle-batch-size 200 --lead-batch-size 100
    python scripts/run_reconciliation.py --json                 # Print the outcome as JSON
"""

import argparse
import json
import sys

from sqlmodel import Session

from app.core.config import settings
from app.core.errors import PersistenceFailure
from app.db import create_db_and_tables, engine
from app.services.events import default_event_sink
from app.services.reconciliation import ReconciliationPolicy, run_reconciliation


def main() -> int:
    parser = argparse.ArgumentParser(description="Re-score stale vehicles and re-label cooled-off leads")
    parser.add_argument("--vehicle-batch-size", type=int, default=settings.RECONCILE_VEHICLE_BATCH_SIZE)
    parser.add_argument("--lead-batch-size", type=int, default=settings.RECONCILE_LEAD_BATCH_SIZE)
    parser.add_argument("--json", action="store_true", help="Print the outcome as JSON")
    args = parser.parse_args()

    policy = ReconciliationPolicy(
        vehicle_stale_days=settings.RECONCILE_VEHICLE_STALE_DAYS,
        lead_stale_hours=settings.RECONCILE_LEAD_STALE_HOURS,
        vehicle_batch_size=args.vehicle_batch_size,
        lead_batch_size=args.lead_batch_size,
    )

    create_db_and_tables()
    with Session(engine) as session:
        try:
            outcome = run_reconciliation(session, default_event_sink(), policy)
        except PersistenceFailure as e:
            print(f"Reconciliation failed: {e.message}", file=sys.stderr)
            return 1

    if args.json:
        print(json.dumps(outcome.to_dict(), indent=2))
    else:
        print(f"Scanned:  {outcome.items_scanned}")
        print(f"Updated:  {outcome.items_updated} ({outcome.vehicles_scored} vehicles, {outcome.leads_analyzed} leads)")
        print(f"Failed:   {outcome.items_failed}")
        print(f"Duration: {outcome.duration_seconds:.2f}s")
    return 0


if __name__ == "__main__":
    sys.exit(main())
