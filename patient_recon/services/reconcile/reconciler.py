from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable
from uuid import UUID, uuid4

from pydantic import ValidationError

from patient_recon.services.reconcile.artifacts import write_artifacts
from patient_recon.services.reconcile.csv_rows import (
    collect_emails,
    parse_source_lines,
    read_source_lines,
)
from patient_recon.services.reconcile.errors import ConfigError
from patient_recon.services.reconcile.identity import resolve_identities
from patient_recon.services.reconcile.normalizers import (
    classify_gender,
    is_valid_uuid,
    normalize_phone,
    parse_dob,
)
from patient_recon.services.reconcile.repository import PatientRepository
from patient_recon.services.reconcile.types import (
    Matched,
    NewPatient,
    NewPatientRecord,
    ReconciliationOutcome,
    SourceRow,
)

logger = logging.getLogger(__name__)

DEFAULT_PROGRESS_EVERY = 100


@dataclass
class ReconcileStats:
    total_lines: int = 0
    processed: int = 0
    matched: int = 0
    new: int = 0
    corrections: int = 0
    failed: int = 0
    skipped: int = 0
    pending_inserts: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class ReconciliationResult:
    stats: ReconcileStats = field(default_factory=ReconcileStats)
    outcomes: list[ReconciliationOutcome] = field(default_factory=list)
    annotated_lines: list[str] = field(default_factory=list)
    records: list[NewPatientRecord] = field(default_factory=list)


def reconcile_rows(
    rows: Iterable[SourceRow],
    identities: dict[str, str],
    *,
    tenant_id: str | None,
    created_by_id: str | None,
    now: datetime | None = None,
    id_factory: Callable[[], UUID] = uuid4,
    progress_every: int | None = DEFAULT_PROGRESS_EVERY,
    total_lines: int | None = None,
    stats: ReconcileStats | None = None,
) -> ReconciliationResult:
    if not tenant_id or not created_by_id:
        raise ConfigError("Missing required environment variables: TENANT_ID or CREATED_BY_ID")

    run_at = now or datetime.now(timezone.utc)
    result = ReconciliationResult(stats=stats if stats is not None else ReconcileStats())
    stats = result.stats
    stats.total_lines = total_lines or 0
    assigned_ids: set[str] = set()

    for row in rows:
        existing_id = identities.get(row.email_key) if row.email_key else None
        if existing_id is not None:
            outcome: ReconciliationOutcome = Matched(
                existing_id=existing_id,
                correction="" if row.external_id == existing_id else existing_id,
            )
            stats.matched += 1
            if outcome.correction:
                stats.corrections += 1
        else:
            stats.new += 1
            record = _build_record(
                row,
                tenant_id=tenant_id,
                created_by_id=created_by_id,
                run_at=run_at,
                id_factory=id_factory,
                assigned_ids=assigned_ids,
            )
            if record is None:
                stats.failed += 1
            else:
                result.records.append(record)
            outcome = NewPatient(record=record)

        result.outcomes.append(outcome)
        result.annotated_lines.append(f"{row.raw_line},{outcome.correction}")
        stats.processed += 1
        _maybe_emit_checkpoint(stats, row.line_number, progress_every)

    stats.pending_inserts = len(result.records)
    return result


def _build_record(
    row: SourceRow,
    *,
    tenant_id: str,
    created_by_id: str,
    run_at: datetime,
    id_factory: Callable[[], UUID],
    assigned_ids: set[str],
) -> NewPatientRecord | None:
    try:
        record = NewPatientRecord(
            id=_assign_id(row.external_id, id_factory, assigned_ids),
            tenant_id=tenant_id,
            email=row.email_key,
            first_name=row.first_name,
            last_name=row.last_name,
            dob=parse_dob(row.dob),
            gender=classify_gender(row.gender),
            phone_number=normalize_phone(row.phone),
            created_by_id=created_by_id,
            ssn=None,
            metadata=None,
            created_at=run_at,
            updated_at=run_at,
        )
    except (ValueError, ValidationError) as exc:
        logger.error(
            "Error creating patient for email %s on line %s: %s",
            row.email_key,
            row.line_number,
            exc,
            extra={"line_number": row.line_number, "email": row.email_key},
        )
        return None
    assigned_ids.add(record.id)
    return record


def _assign_id(
    external_id: str,
    id_factory: Callable[[], UUID],
    assigned_ids: set[str],
) -> str:
    if is_valid_uuid(external_id):
        return external_id
    candidate = str(id_factory())
    while candidate in assigned_ids:
        candidate = str(id_factory())
    return candidate


def _maybe_emit_checkpoint(
    stats: ReconcileStats, line_number: int, progress_every: int | None
) -> None:
    if not progress_every or progress_every <= 0:
        return
    if stats.processed % progress_every != 0:
        return
    payload = {
        "event": "reconcile_checkpoint",
        "processed": stats.processed,
        "total_lines": stats.total_lines,
        "matched": stats.matched,
        "new": stats.new,
        "last_line_number": line_number,
        "timestamp": round(time.time(), 3),
    }
    print(json.dumps(payload, sort_keys=True))


def run_reconciliation(
    repository: PatientRepository,
    source_path: Path,
    *,
    tenant_id: str | None,
    created_by_id: str | None,
    annotated_path: Path,
    batch_path: Path,
    progress_every: int | None = DEFAULT_PROGRESS_EVERY,
    now: datetime | None = None,
    id_factory: Callable[[], UUID] = uuid4,
    stats: ReconcileStats | None = None,
) -> ReconcileStats:
    """Reconcile the source file and write both artifacts.

    Counters accumulate on ``stats`` as the run goes, so a caller that
    passes its own instance still sees the totals reached before a failure.
    """
    if stats is None:
        stats = ReconcileStats()
    if not tenant_id or not created_by_id:
        raise ConfigError("Missing required environment variables: TENANT_ID or CREATED_BY_ID")

    logger.info("Reading CSV file %s", source_path)
    header, lines = read_source_lines(source_path)
    logger.info("Total records to process: %s", len(lines))

    stats.total_lines = len(lines)
    rows, stats.skipped = parse_source_lines(lines)
    emails = collect_emails(rows)
    logger.info("Found %s unique email addresses", len(emails))

    identities = resolve_identities(repository, emails)

    result = reconcile_rows(
        rows,
        identities,
        tenant_id=tenant_id,
        created_by_id=created_by_id,
        now=now,
        id_factory=id_factory,
        progress_every=progress_every,
        total_lines=len(lines),
        stats=stats,
    )

    write_artifacts(
        header,
        result.annotated_lines,
        result.records,
        annotated_path=annotated_path,
        batch_path=batch_path,
    )
    logger.info(
        "Reconciliation complete: %s processed, %s matched, %s new",
        result.stats.processed,
        result.stats.matched,
        result.stats.new,
    )
    return result.stats
