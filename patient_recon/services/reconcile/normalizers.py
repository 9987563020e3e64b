from __future__ import annotations

import re
from datetime import date, datetime

from patient_recon.models.patient import Gender

__all__ = ["classify_gender", "is_valid_uuid", "normalize_phone", "parse_dob"]

_UUID_RE = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}",
    re.IGNORECASE,
)
_DOB_FORMATS = ("%m/%d/%Y", "%Y/%m/%d")
_MALE = {"m", "male"}
_FEMALE = {"f", "female"}


def classify_gender(value: str | None) -> Gender:
    normalized = (value or "").strip().lower()
    if normalized in _MALE:
        return Gender.male
    if normalized in _FEMALE:
        return Gender.female
    return Gender.other


def normalize_phone(value: str | None) -> str:
    cleaned = (value or "").strip()
    if cleaned.startswith("+1"):
        return cleaned
    if cleaned.startswith("1"):
        return f"+{cleaned}"
    return f"+1{cleaned}"


def is_valid_uuid(value: str | None) -> bool:
    if not value:
        return False
    return _UUID_RE.fullmatch(value) is not None


def parse_dob(value: str | None) -> date:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValueError("date of birth is empty")
    try:
        return date.fromisoformat(cleaned)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(cleaned).date()
    except ValueError:
        pass
    for fmt in _DOB_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"unparsable date of birth: {cleaned!r}")
