# app/models.py
from datetime import date, datetime, timezone
import uuid

from sqlalchemy import (
    Boolean,
    String,
    DateTime,
    Date,
    Float,
    ForeignKey,
    Integer,
    Text,
    CheckConstraint,
)
from sqlalchemy.orm import relationship, Mapped, mapped_column

from app.db import Base, JSONType


def generate_uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    # Naive UTC so values compare the same before and after a round trip
    # through databases without timezone support.
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Patient(Base):
    __tablename__ = "patients"

    id: Mapped[str] = mapped_column(
        String, primary_key=True, default=generate_uuid
    )
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    gender: Mapped[str | None] = mapped_column(String, nullable=True)
    # [{"condition": ..., "diagnosed_date": ..., "notes": ...}]
    medical_history: Mapped[list] = mapped_column(JSONType, default=list)
    allergies: Mapped[list] = mapped_column(JSONType, default=list)
    height_cm: Mapped[float | None] = mapped_column(Float, nullable=True)
    weight_kg: Mapped[float | None] = mapped_column(Float, nullable=True)
    blood_type: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    diagnoses: Mapped[list["Diagnosis"]] = relationship(
        "Diagnosis", back_populates="patient"
    )


class Doctor(Base):
    __tablename__ = "doctors"

    id: Mapped[str] = mapped_column(
        String, primary_key=True, default=generate_uuid
    )
    first_name: Mapped[str] = mapped_column(String, nullable=False)
    last_name: Mapped[str] = mapped_column(String, nullable=False)
    specialization: Mapped[str] = mapped_column(String, nullable=False)
    experience_years: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    @property
    def display_name(self) -> str:
        return f"Dr. {self.first_name} {self.last_name}"


class Diagnosis(Base):
    __tablename__ = "diagnoses"

    id: Mapped[str] = mapped_column(
        String, primary_key=True, default=generate_uuid
    )
    patient_id: Mapped[str] = mapped_column(
        String, ForeignKey("patients.id"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String, default="New Diagnosis")
    symptom_description: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String, nullable=False, default="ongoing")
    intake_status: Mapped[str] = mapped_column(
        String, nullable=False, default="ongoing"
    )

    ai_summary: Mapped[str | None] = mapped_column(Text, nullable=True)

    suggested_doctor_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("doctors.id"), nullable=True
    )
    suggested_doctor_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    suggested_doctor_confirmed: Mapped[bool] = mapped_column(Boolean, default=False)
    final_doctor_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("doctors.id"), nullable=True
    )

    associated_appointment_id: Mapped[str | None] = mapped_column(String, nullable=True)
    diagnosis_score: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Revision counter; SQLAlchemy checks and bumps it on every UPDATE.
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(
            "status IN ('ongoing', 'pending_doctor_review', 'pending_reports', 'completed')",
            name="ck_diagnoses_status_valid",
        ),
        CheckConstraint(
            "intake_status IN ('ongoing', 'completed')",
            name="ck_diagnoses_intake_status_valid",
        ),
    )

    patient: Mapped[Patient] = relationship("Patient", back_populates="diagnoses")
    turns: Mapped[list["Turn"]] = relationship(
        "Turn",
        back_populates="diagnosis",
        order_by="Turn.position",
        cascade="all, delete-orphan",
    )
    tests: Mapped[list["TestCandidate"]] = relationship(
        "TestCandidate",
        back_populates="diagnosis",
        order_by="TestCandidate.position",
        cascade="all, delete-orphan",
    )


class Turn(Base):
    __tablename__ = "diagnosis_turns"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    diagnosis_id: Mapped[str] = mapped_column(
        String, ForeignKey("diagnoses.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    role: Mapped[str] = mapped_column(String, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    ts: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    # [{"kind": "image"|"file", "url": ..., "original_name": ..., "mime_type": ...}]
    attachments: Mapped[list] = mapped_column(JSONType, default=list)

    __table_args__ = (
        CheckConstraint(
            "role IN ('patient', 'assistant', 'clinician')",
            name="ck_diagnosis_turns_role_valid",
        ),
    )

    diagnosis: Mapped[Diagnosis] = relationship("Diagnosis", back_populates="turns")


class TestCandidate(Base):
    __tablename__ = "diagnosis_tests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    diagnosis_id: Mapped[str] = mapped_column(
        String, ForeignKey("diagnoses.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[str] = mapped_column(String, nullable=False, default="medium")
    is_approved: Mapped[bool] = mapped_column(Boolean, default=False)
    approved_by: Mapped[str | None] = mapped_column(
        String, ForeignKey("doctors.id"), nullable=True
    )
    approved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "priority IN ('high', 'medium', 'low')",
            name="ck_diagnosis_tests_priority_valid",
        ),
    )

    diagnosis: Mapped[Diagnosis] = relationship("Diagnosis", back_populates="tests")


class Report(Base):
    __tablename__ = "reports"

    id: Mapped[str] = mapped_column(
        String, primary_key=True, default=generate_uuid
    )
    patient_id: Mapped[str] = mapped_column(
        String, ForeignKey("patients.id"), nullable=False
    )
    diagnosis_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("diagnoses.id"), nullable=True, index=True
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False)
    file_url: Mapped[str | None] = mapped_column(String, nullable=True)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
