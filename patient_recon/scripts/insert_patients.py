from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError

from patient_recon.core.logging_setup import configure_logging
from patient_recon.core.settings import load_settings, require_database_url
from patient_recon.db.session import session_scope
from patient_recon.services.reconcile.artifacts import load_pending_batch
from patient_recon.services.reconcile.errors import MissingCreatorError, ReconcileError
from patient_recon.services.reconcile.insertion_runner import InsertStats, run_insertion
from patient_recon.services.reconcile.repository import SqlPatientRepository


def _summary(stats: InsertStats, *, status: str, error: str | None = None) -> dict[str, object]:
    payload: dict[str, object] = {"stage": "insert", "status": status, **stats.as_dict()}
    if error:
        payload["error"] = error
    return payload


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Insert the pending patients written by the reconcile step."
    )
    parser.add_argument(
        "--batch",
        type=Path,
        default=None,
        help="Pending-insert JSON produced by reconcile (default: PENDING_BATCH).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Check creator and duplicates without inserting anything.",
    )
    args = parser.parse_args()

    stats = InsertStats()
    try:
        settings = load_settings()
        configure_logging(settings.log_level)
        database_url = require_database_url(settings)
        records = load_pending_batch(args.batch or settings.pending_batch)
        stats.total = len(records)
        with session_scope(database_url) as session:
            stats = run_insertion(SqlPatientRepository(session), records, dry_run=args.dry_run)
    except MissingCreatorError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        print("Please either:", file=sys.stderr)
        print("1. Create a user with this ID in the database, OR", file=sys.stderr)
        print("2. Update CREATED_BY_ID in your .env file and re-run reconcile.", file=sys.stderr)
        print(json.dumps(_summary(stats, status="failed", error=str(exc)), indent=2, sort_keys=True))
        return 1
    except (ReconcileError, SQLAlchemyError) as exc:
        print(f"Error inserting patients: {exc}", file=sys.stderr)
        print(json.dumps(_summary(stats, status="failed", error=str(exc)), indent=2, sort_keys=True))
        return 1

    print(json.dumps(_summary(stats, status="ok"), indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
