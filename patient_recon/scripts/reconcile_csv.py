from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError

from patient_recon.core.logging_setup import configure_logging
from patient_recon.core.settings import load_settings, require_database_url, require_run_identity
from patient_recon.db.session import session_scope
from patient_recon.services.reconcile.errors import ReconcileError
from patient_recon.services.reconcile.reconciler import ReconcileStats, run_reconciliation
from patient_recon.services.reconcile.repository import SqlPatientRepository


def _summary(stats: ReconcileStats, *, status: str, error: str | None = None) -> dict[str, object]:
    payload: dict[str, object] = {"stage": "reconcile", "status": status, **stats.as_dict()}
    if error:
        payload["error"] = error
    return payload


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Match a partner patient CSV against existing patients by email."
    )
    parser.add_argument("--source", type=Path, default=None, help="Source CSV (default: SOURCE_CSV).")
    parser.add_argument(
        "--annotated-out",
        type=Path,
        default=None,
        help="Annotated CSV output path (default: ANNOTATED_CSV).",
    )
    parser.add_argument(
        "--batch-out",
        type=Path,
        default=None,
        help="Pending-insert JSON output path (default: PENDING_BATCH).",
    )
    parser.add_argument(
        "--progress-every",
        type=int,
        default=None,
        help="Emit a checkpoint every N rows (default: PROGRESS_EVERY).",
    )
    args = parser.parse_args()

    if args.progress_every is not None and args.progress_every < 0:
        print("--progress-every must be zero or a positive integer.", file=sys.stderr)
        return 2

    stats = ReconcileStats()
    try:
        settings = load_settings()
        configure_logging(settings.log_level)
        database_url = require_database_url(settings)
        tenant_id, created_by_id = require_run_identity(settings)
        with session_scope(database_url) as session:
            stats = run_reconciliation(
                SqlPatientRepository(session),
                args.source or settings.source_csv,
                tenant_id=tenant_id,
                created_by_id=created_by_id,
                annotated_path=args.annotated_out or settings.annotated_csv,
                batch_path=args.batch_out or settings.pending_batch,
                progress_every=(
                    args.progress_every
                    if args.progress_every is not None
                    else settings.progress_every
                ),
                stats=stats,
            )
    except (ReconcileError, SQLAlchemyError) as exc:
        print(f"Error processing CSV: {exc}", file=sys.stderr)
        print(json.dumps(_summary(stats, status="failed", error=str(exc)), indent=2, sort_keys=True))
        return 1

    print(json.dumps(_summary(stats, status="ok"), indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
