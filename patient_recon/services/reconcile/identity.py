from __future__ import annotations

import logging
from typing import Iterable

from patient_recon.services.reconcile.repository import PatientRepository

logger = logging.getLogger(__name__)


def resolve_identities(repository: PatientRepository, emails: Iterable[str]) -> dict[str, str]:
    """Map lower-cased email to existing patient id with a single bulk lookup.

    When the store holds more than one patient for the same email the
    lowest id is kept.
    """
    keys = {email.strip().lower() for email in emails if email and email.strip()}
    if not keys:
        return {}

    rows = repository.find_by_emails(sorted(keys), case_insensitive=True)
    logger.info("Found %s matching patients in database", len(rows))

    mapping: dict[str, str] = {}
    for row in sorted(rows, key=lambda item: item.id):
        if not row.email:
            continue
        key = row.email.lower()
        kept = mapping.get(key)
        if kept is None:
            mapping[key] = row.id
            continue
        if kept != row.id:
            logger.warning(
                "Duplicate patients share email %s; keeping %s over %s",
                key,
                kept,
                row.id,
                extra={"email": key, "kept_id": kept, "dropped_id": row.id},
            )
    return mapping
