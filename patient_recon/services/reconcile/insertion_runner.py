from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from sqlalchemy.exc import SQLAlchemyError

from patient_recon.services.reconcile.errors import MissingCreatorError
from patient_recon.services.reconcile.repository import PatientRepository
from patient_recon.services.reconcile.types import NewPatientRecord

logger = logging.getLogger(__name__)


@dataclass
class InsertStats:
    total: int = 0
    inserted: int = 0
    skipped_duplicates: int = 0
    failed: int = 0
    would_insert: int | None = None

    def as_dict(self) -> dict[str, int]:
        data = {
            "total": self.total,
            "inserted": self.inserted,
            "skipped_duplicates": self.skipped_duplicates,
            "failed": self.failed,
        }
        if self.would_insert is not None:
            data["would_insert"] = self.would_insert
        return data


def run_insertion(
    repository: PatientRepository,
    records: Sequence[NewPatientRecord],
    *,
    dry_run: bool = False,
) -> InsertStats:
    """Insert pending patients one at a time, skipping ids already stored.

    The duplicate check is a single read taken before the first insert.
    Nothing locks the batch, so two runners started together can both
    pass the check; the loser's inserts then fail on the primary key.
    """
    stats = InsertStats(total=len(records))
    logger.info("Found %s patients to insert", stats.total)

    _require_creators(repository, records)

    existing = repository.find_by_ids(record.id for record in records)
    existing_ids = {patient.id for patient in existing}
    if existing:
        logger.warning("Found %s duplicate(s)", len(existing))
        for patient in existing:
            logger.warning("Duplicate patient - %s", patient.describe())

    survivors: list[NewPatientRecord] = []
    for record in records:
        if record.id in existing_ids:
            stats.skipped_duplicates += 1
            continue
        survivors.append(record)

    if dry_run:
        stats.would_insert = len(survivors)
        logger.info("Dry run: %s patients would be inserted", len(survivors))
        return stats

    logger.info("Inserting %s patients into database", len(survivors))
    for record in survivors:
        try:
            repository.create_one(record)
        except (SQLAlchemyError, ValueError) as exc:
            stats.failed += 1
            logger.error(
                "Error inserting patient %s: %s",
                record.describe(),
                exc,
                extra={"patient_id": record.id, "email": record.email},
            )
            continue
        stats.inserted += 1
        logger.info("Patient inserted - %s", record.describe())

    if stats.skipped_duplicates:
        logger.info("Skipped %s duplicate(s)", stats.skipped_duplicates)
    return stats


def _require_creators(
    repository: PatientRepository, records: Sequence[NewPatientRecord]
) -> None:
    creator_ids = sorted({record.created_by_id for record in records})
    for created_by_id in creator_ids:
        logger.info("Checking if user %s exists", created_by_id)
        if repository.find_user_by_id(created_by_id) is None:
            raise MissingCreatorError(created_by_id)
