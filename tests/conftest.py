from __future__ import annotations

from datetime import date, datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from patient_recon.models import Base, Gender, Patient, User
from patient_recon.services.reconcile.types import (
    NewPatientRecord,
    PatientEmailRow,
    PatientSummary,
)

TENANT_ID = "7d0c9a0e-3f4b-4a52-9c1e-0b6f0d2a9e11"
CREATOR_ID = "2b1f6c8e-9d3a-4e7b-8f10-5a4c3b2d1e0f"
RUN_AT = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)


class FakePatientRepository:
    def __init__(self, patients=None, user_ids=None, stale_ids: bool = False):
        self.patients: list[dict] = list(patients or [])
        self.user_ids = set(user_ids if user_ids is not None else [CREATOR_ID])
        self.stale_ids = stale_ids
        self.email_queries: list[list[str]] = []
        self.id_queries: list[list[str]] = []
        self.created: list[NewPatientRecord] = []

    def find_by_emails(self, emails, case_insensitive=True):
        values = list(emails)
        self.email_queries.append(values)
        wanted = {value.lower() for value in values}
        return [
            PatientEmailRow(id=patient["id"], email=patient.get("email"))
            for patient in self.patients
            if patient.get("email") and patient["email"].lower() in wanted
        ]

    def find_by_ids(self, ids):
        values = list(ids)
        self.id_queries.append(values)
        if self.stale_ids:
            return []
        wanted = set(values)
        return [
            PatientSummary(
                id=patient["id"],
                first_name=patient.get("first_name", ""),
                last_name=patient.get("last_name", ""),
                email=patient.get("email"),
            )
            for patient in self.patients
            if patient["id"] in wanted
        ]

    def find_user_by_id(self, user_id):
        if user_id in self.user_ids:
            return User(id=user_id, email=f"{user_id}@example.com", full_name="Importer")
        return None

    def create_one(self, record):
        if any(patient["id"] == record.id for patient in self.patients):
            raise IntegrityError(
                "INSERT INTO patients", {"id": record.id}, Exception("duplicate key value")
            )
        self.patients.append(
            {
                "id": record.id,
                "email": record.email,
                "first_name": record.first_name,
                "last_name": record.last_name,
            }
        )
        self.created.append(record)
        return record


@pytest.fixture
def engine():
    engine = create_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    session = sessionmaker(bind=engine, autoflush=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def creator(session):
    user = User(id=CREATOR_ID, email="importer@example.com", full_name="Import Robot")
    session.add(user)
    session.commit()
    return user


@pytest.fixture
def add_patient(session, creator):
    def _add(patient_id: str, email: str | None, first_name: str = "Existing", last_name: str = "Patient"):
        row = Patient(
            id=patient_id,
            tenant_id=TENANT_ID,
            email=email,
            first_name=first_name,
            last_name=last_name,
            dob=date(1980, 1, 1),
            gender=Gender.other,
            phone_number="+15550000000",
            created_by_id=creator.id,
        )
        session.add(row)
        session.commit()
        return row

    return _add


@pytest.fixture
def make_record():
    def _make(patient_id: str, email: str = "new@example.com", **overrides) -> NewPatientRecord:
        values = {
            "id": patient_id,
            "tenant_id": TENANT_ID,
            "email": email,
            "first_name": "New",
            "last_name": "Patient",
            "dob": date(1990, 2, 3),
            "gender": Gender.female,
            "phone_number": "+15551234567",
            "created_by_id": CREATOR_ID,
            "created_at": RUN_AT,
            "updated_at": RUN_AT,
        }
        values.update(overrides)
        return NewPatientRecord(**values)

    return _make


@pytest.fixture
def fake_repository():
    return FakePatientRepository
