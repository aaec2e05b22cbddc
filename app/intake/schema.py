# app/intake/schema.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.intake.state import (
    AttachmentKind,
    DiagnosisStatus,
    IntakeStatus,
    TestPriority,
    TurnRole,
)


class Attachment(BaseModel):
    kind: AttachmentKind
    url: str
    original_name: Optional[str] = None
    mime_type: Optional[str] = None

    model_config = ConfigDict(use_enum_values=True)


class IntakeReply(BaseModel):
    """
    The two-field result the assistant must return on every intake turn.
    """

    message: str
    status: IntakeStatus = IntakeStatus.ONGOING

    model_config = ConfigDict(extra="ignore")

    @field_validator("message")
    @classmethod
    def _message_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("message must not be empty")
        return value


class TestSuggestion(BaseModel):
    name: str
    reason: str = ""
    priority: TestPriority = TestPriority.MEDIUM


class DoctorRecommendation(BaseModel):
    doctor_id: Optional[str] = None
    reason: str = ""
    raw_response: str = ""


# ---------------------------------------------------------------------------
# Doctor approval input
# ---------------------------------------------------------------------------


class TestModification(BaseModel):
    test_id: int
    is_approved: bool = True
    reason: Optional[str] = None
    priority: Optional[TestPriority] = None


class AdditionalTest(BaseModel):
    name: str = Field(..., min_length=1)
    reason: str = "Added by doctor"
    priority: TestPriority = TestPriority.MEDIUM

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        # A blank name can never be matched by a report.
        value = value.strip()
        if not value:
            raise ValueError("name must not be empty")
        return value


class ApprovalModifications(BaseModel):
    tests: List[TestModification] = Field(default_factory=list)
    additional_tests: List[AdditionalTest] = Field(default_factory=list)
    doctor_notes: Optional[str] = None


# ---------------------------------------------------------------------------
# Read models returned by the service layer
# ---------------------------------------------------------------------------


class TurnRecord(BaseModel):
    role: TurnRole
    message: str
    timestamp: datetime = Field(validation_alias="ts")
    attachments: List[Attachment] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class TestCandidateRecord(BaseModel):
    id: int
    name: str
    reason: Optional[str] = None
    priority: TestPriority = TestPriority.MEDIUM
    is_approved: bool = False
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ReportRecord(BaseModel):
    id: str
    patient_id: str
    diagnosis_id: Optional[str] = None
    name: str
    type: str
    file_url: Optional[str] = None
    uploaded_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SuggestedDoctorRecord(BaseModel):
    doctor_id: str
    reason: Optional[str] = None
    is_confirmed: bool = False


class DiagnosisRecord(BaseModel):
    """
    Detached snapshot of a Diagnosis aggregate, safe to use after the
    database session is closed.
    """

    id: str
    patient_id: str
    title: str
    symptom_description: Optional[str] = None
    status: DiagnosisStatus
    intake_status: IntakeStatus
    conversation_history: List[TurnRecord] = Field(default_factory=list)
    ai_summary: Optional[str] = None
    suggested_tests: List[TestCandidateRecord] = Field(default_factory=list)
    suggested_doctor: Optional[SuggestedDoctorRecord] = None
    final_doctor_id: Optional[str] = None
    associated_appointment_id: Optional[str] = None
    diagnosis_score: Optional[float] = None
    version: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_orm_diagnosis(cls, diagnosis) -> "DiagnosisRecord":
        suggested = None
        if diagnosis.suggested_doctor_id:
            suggested = SuggestedDoctorRecord(
                doctor_id=diagnosis.suggested_doctor_id,
                reason=diagnosis.suggested_doctor_reason,
                is_confirmed=bool(diagnosis.suggested_doctor_confirmed),
            )

        return cls(
            id=diagnosis.id,
            patient_id=diagnosis.patient_id,
            title=diagnosis.title,
            symptom_description=diagnosis.symptom_description,
            status=diagnosis.status,
            intake_status=diagnosis.intake_status,
            conversation_history=[
                TurnRecord.model_validate(t) for t in diagnosis.turns
            ],
            ai_summary=diagnosis.ai_summary,
            suggested_tests=[
                TestCandidateRecord.model_validate(t) for t in diagnosis.tests
            ],
            suggested_doctor=suggested,
            final_doctor_id=diagnosis.final_doctor_id,
            associated_appointment_id=diagnosis.associated_appointment_id,
            diagnosis_score=diagnosis.diagnosis_score,
            version=diagnosis.version,
            created_at=diagnosis.created_at,
            updated_at=diagnosis.updated_at,
        )
