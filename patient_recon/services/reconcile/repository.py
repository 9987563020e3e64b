from __future__ import annotations

from typing import Iterable, Protocol

from sqlalchemy import String, any_, bindparam, func, select
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from patient_recon.models.patient import Patient
from patient_recon.models.user import User
from patient_recon.services.reconcile.types import (
    NewPatientRecord,
    PatientEmailRow,
    PatientSummary,
)


def email_match_condition(lowered: list[str], dialect_name: str):
    # Postgres binds the whole list as one array parameter
    if dialect_name == "postgresql":
        return func.lower(Patient.email) == any_(
            bindparam("emails", lowered, type_=ARRAY(String))
        )
    return func.lower(Patient.email).in_(lowered)


class PatientRepository(Protocol):
    def find_by_emails(
        self, emails: Iterable[str], case_insensitive: bool = True
    ) -> list[PatientEmailRow]:
        raise NotImplementedError

    def find_by_ids(self, ids: Iterable[str]) -> list[PatientSummary]:
        raise NotImplementedError

    def find_user_by_id(self, user_id: str) -> User | None:
        raise NotImplementedError

    def create_one(self, record: NewPatientRecord) -> Patient:
        raise NotImplementedError


class SqlPatientRepository(PatientRepository):
    def __init__(self, session: Session) -> None:
        self.session = session

    def find_by_emails(
        self, emails: Iterable[str], case_insensitive: bool = True
    ) -> list[PatientEmailRow]:
        values = list(emails)
        if not values:
            return []
        if case_insensitive:
            lowered = sorted({value.lower() for value in values})
            condition = email_match_condition(lowered, self.session.get_bind().dialect.name)
        else:
            condition = Patient.email.in_(values)
        rows = self.session.execute(
            select(Patient.id, Patient.email).where(condition).order_by(Patient.id.asc())
        ).all()
        return [PatientEmailRow(id=row_id, email=email) for row_id, email in rows]

    def find_by_ids(self, ids: Iterable[str]) -> list[PatientSummary]:
        values = sorted(set(ids))
        if not values:
            return []
        rows = self.session.execute(
            select(Patient.id, Patient.first_name, Patient.last_name, Patient.email)
            .where(Patient.id.in_(values))
            .order_by(Patient.id.asc())
        ).all()
        return [
            PatientSummary(id=row_id, first_name=first, last_name=last, email=email)
            for row_id, first, last, email in rows
        ]

    def find_user_by_id(self, user_id: str) -> User | None:
        return self.session.get(User, user_id)

    def create_one(self, record: NewPatientRecord) -> Patient:
        row = Patient(
            id=record.id,
            tenant_id=record.tenant_id,
            email=record.email,
            first_name=record.first_name,
            last_name=record.last_name,
            dob=record.dob,
            gender=record.gender,
            phone_number=record.phone_number,
            created_by_id=record.created_by_id,
            ssn=record.ssn,
            metadata_json=record.metadata,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )
        self.session.add(row)
        try:
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        return row
