"""Fixed-position parsing for the partner patient CSV export.

Lines are split on a bare comma. Quoted fields are not supported; a value
containing a comma shifts every later column.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

from patient_recon.services.reconcile.errors import SourceFileError
from patient_recon.services.reconcile.types import MIN_SOURCE_COLUMNS, SourceRow

logger = logging.getLogger(__name__)

COL_EXTERNAL_ID = 1
COL_FIRST_NAME = 2
COL_LAST_NAME = 3
COL_DOB = 4
COL_GENDER = 5
COL_EMAIL = 6
COL_PHONE = 7


def read_source_lines(path: Path) -> tuple[str, list[tuple[int, str]]]:
    try:
        raw = path.read_text(encoding="utf-8-sig")
    except FileNotFoundError as exc:
        raise SourceFileError(f"Source CSV does not exist: {path}") from exc
    except UnicodeDecodeError as exc:
        raise SourceFileError(f"Source CSV is not valid UTF-8: {path}") from exc
    except OSError as exc:
        raise SourceFileError(f"Unable to read source CSV: {path}") from exc

    lines = raw.split("\n")
    header = lines[0].strip()
    if not header:
        raise SourceFileError(f"Source CSV is empty: {path}")

    body: list[tuple[int, str]] = []
    for index, line in enumerate(lines[1:], start=2):
        cleaned = line.strip()
        if not cleaned:
            continue
        body.append((index, cleaned))
    return header, body


def parse_source_line(line: str, line_number: int) -> SourceRow | None:
    cleaned = line.strip()
    columns = cleaned.split(",")
    if len(columns) < MIN_SOURCE_COLUMNS:
        logger.warning(
            "Skipping line %s: insufficient columns (%s < %s)",
            line_number,
            len(columns),
            MIN_SOURCE_COLUMNS,
        )
        return None
    return SourceRow(
        line_number=line_number,
        raw_line=cleaned,
        external_id=columns[COL_EXTERNAL_ID].strip(),
        first_name=columns[COL_FIRST_NAME].strip(),
        last_name=columns[COL_LAST_NAME].strip(),
        dob=columns[COL_DOB].strip(),
        gender=columns[COL_GENDER].strip(),
        email=columns[COL_EMAIL].strip(),
        phone=columns[COL_PHONE].strip(),
    )


def parse_source_lines(lines: Iterable[tuple[int, str]]) -> tuple[list[SourceRow], int]:
    rows: list[SourceRow] = []
    skipped = 0
    for line_number, line in lines:
        row = parse_source_line(line, line_number)
        if row is None:
            skipped += 1
            continue
        rows.append(row)
    return rows, skipped


def collect_emails(rows: Iterable[SourceRow]) -> set[str]:
    return {row.email_key for row in rows if row.email_key}
