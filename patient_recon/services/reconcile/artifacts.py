from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Sequence

from pydantic import ValidationError

from patient_recon.services.reconcile.errors import ArtifactError, PendingBatchError
from patient_recon.services.reconcile.types import CORRECTION_COLUMN, NewPatientRecord

logger = logging.getLogger(__name__)


def render_annotated_csv(header: str, annotated_lines: Sequence[str]) -> str:
    parts = [f"{header},{CORRECTION_COLUMN}\n"]
    parts.extend(f"{line}\n" for line in annotated_lines)
    return "".join(parts)


def render_pending_batch(records: Sequence[NewPatientRecord]) -> str:
    payload = [record.model_dump(mode="json", by_alias=True) for record in records]
    return json.dumps(payload, indent=2)


def write_artifacts(
    header: str,
    annotated_lines: Sequence[str],
    records: Sequence[NewPatientRecord],
    *,
    annotated_path: Path,
    batch_path: Path,
) -> None:
    """Write the annotated CSV and the pending batch as a matched pair.

    Both payloads land in temporary files beside their targets first; the
    targets are only replaced once both temporaries are complete.
    """
    staged: list[tuple[str, Path]] = []
    try:
        staged.append(
            (_stage(annotated_path, render_annotated_csv(header, annotated_lines)), annotated_path)
        )
        staged.append((_stage(batch_path, render_pending_batch(records)), batch_path))
    except ArtifactError:
        for tmp_path, _ in staged:
            _discard(tmp_path)
        raise

    try:
        for tmp_path, target in staged:
            os.replace(tmp_path, target)
    except OSError as exc:
        for tmp_path, _ in staged:
            _discard(tmp_path)
        raise ArtifactError(f"Unable to move artifacts into place: {exc}") from exc

    logger.info("Output file created: %s", annotated_path)
    logger.info("Pending insert batch created: %s (%s records)", batch_path, len(records))


def _stage(target: Path, data: str) -> str:
    parent = target.parent
    if parent and not parent.exists():
        raise ArtifactError(f"Output directory does not exist: {parent}")
    try:
        handle = tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            newline="\n",
            delete=False,
            dir=str(parent) if parent else None,
            prefix=f".{target.name}.",
            suffix=".tmp",
        )
    except OSError as exc:
        raise ArtifactError(f"Unable to write {target}: {exc}") from exc
    tmp_path = handle.name
    try:
        with handle:
            handle.write(data)
    except OSError as exc:
        _discard(tmp_path)
        raise ArtifactError(f"Unable to write {target}: {exc}") from exc
    return tmp_path


def _discard(tmp_path: str) -> None:
    try:
        os.unlink(tmp_path)
    except FileNotFoundError:
        pass


def load_pending_batch(path: Path) -> list[NewPatientRecord]:
    if not path.exists():
        raise PendingBatchError(
            f"{path} does not exist; run the reconcile step first to generate it."
        )
    try:
        raw = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise PendingBatchError(f"{path} is not valid UTF-8.") from exc
    except OSError as exc:
        raise PendingBatchError(f"Unable to read {path}: {exc}") from exc
    if not raw.strip():
        raise PendingBatchError(f"{path} is empty.")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise PendingBatchError(f"{path} is not valid JSON: {exc}") from exc
    if not isinstance(data, list):
        raise PendingBatchError(f"{path} must contain a JSON list.")
    if not data:
        raise PendingBatchError(f"No patients to insert. {path} contains an empty list.")

    records: list[NewPatientRecord] = []
    for index, item in enumerate(data):
        try:
            records.append(NewPatientRecord.model_validate(item))
        except ValidationError as exc:
            raise PendingBatchError(f"{path} entry {index} is invalid: {exc}") from exc
    return records
