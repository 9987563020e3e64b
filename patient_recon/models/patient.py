from __future__ import annotations

import enum
from datetime import date

from sqlalchemy import JSON, Date, Enum, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from patient_recon.models.base import Base, TimestampMixin


class Gender(str, enum.Enum):
    male = "MALE"
    female = "FEMALE"
    other = "OTHER"


class Patient(Base, TimestampMixin):
    __tablename__ = "patients"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), index=True, nullable=True)
    first_name: Mapped[str] = mapped_column(String(120), nullable=False)
    last_name: Mapped[str] = mapped_column(String(120), nullable=False)
    dob: Mapped[date] = mapped_column(Date, nullable=False)
    gender: Mapped[Gender] = mapped_column(
        Enum(Gender, name="gender", values_callable=lambda members: [m.value for m in members]),
        default=Gender.other,
        nullable=False,
    )
    phone_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_by_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    ssn: Mapped[str | None] = mapped_column(String(32), nullable=True)
    # "metadata" is reserved on declarative classes
    metadata_json: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
