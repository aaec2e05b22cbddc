# app/api/schemas.py
from __future__ import annotations

from typing import Optional, List

from pydantic import BaseModel, Field

from app.intake.schema import (
    AdditionalTest,
    Attachment,
    DiagnosisRecord,
    TestModification,
)
from app.intake.state import TurnRole


class StartDiagnosisRequest(BaseModel):
    patient_id: str
    symptom_description: str


class AppendTurnRequest(BaseModel):
    message: str
    role: TurnRole = TurnRole.PATIENT
    attachments: List[Attachment] = Field(default_factory=list)
    expected_version: Optional[int] = None


class VersionedRequest(BaseModel):
    expected_version: Optional[int] = None


class SelectDoctorRequest(VersionedRequest):
    doctor_id: str


class ApproveDiagnosisRequest(VersionedRequest):
    doctor_id: str
    tests: List[TestModification] = Field(default_factory=list)
    additional_tests: List[AdditionalTest] = Field(default_factory=list)
    doctor_notes: Optional[str] = None


class SubmitReportRequest(BaseModel):
    patient_id: str
    name: str
    type: str
    file_url: Optional[str] = None


class DiagnosisResponse(DiagnosisRecord):
    pass


class ErrorResponse(BaseModel):
    error: str
    message: str
    details: dict = Field(default_factory=dict)
