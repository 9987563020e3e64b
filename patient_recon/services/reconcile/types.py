from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from patient_recon.models.patient import Gender

MIN_SOURCE_COLUMNS = 10
CORRECTION_COLUMN = "update_partner_external_id"


class SourceRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    line_number: int = Field(..., ge=1)
    raw_line: str
    external_id: str = ""
    first_name: str = ""
    last_name: str = ""
    dob: str = ""
    gender: str = ""
    email: str = ""
    phone: str = ""

    @property
    def email_key(self) -> str:
        return self.email.lower()


class NewPatientRecord(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    id: str
    tenant_id: str
    email: str
    first_name: str
    last_name: str
    dob: date
    gender: Gender
    phone_number: str
    created_by_id: str
    ssn: str | None = None
    metadata: dict | None = None
    created_at: datetime
    updated_at: datetime

    def describe(self) -> str:
        return f"{self.first_name} {self.last_name} ({self.email}) - ID: {self.id}"


class PatientEmailRow(BaseModel):
    id: str
    email: str | None = None


class PatientSummary(BaseModel):
    id: str
    first_name: str
    last_name: str
    email: str | None = None

    def describe(self) -> str:
        return f"{self.first_name} {self.last_name} ({self.email}) - ID: {self.id}"


@dataclass(frozen=True)
class Matched:
    existing_id: str
    correction: str = ""


@dataclass(frozen=True)
class NewPatient:
    record: NewPatientRecord | None

    @property
    def correction(self) -> str:
        return ""


ReconciliationOutcome = Matched | NewPatient
