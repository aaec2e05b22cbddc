# app/api/routes.py
from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from fastapi import APIRouter, Depends

from app.intake.schema import ApprovalModifications, ReportRecord, TestCandidateRecord
from app.intake.state import DiagnosisStatus
from app.llm import OpenAILLMClient
from app.services import DiagnosisService
from .schemas import (
    AppendTurnRequest,
    ApproveDiagnosisRequest,
    DiagnosisResponse,
    SelectDoctorRequest,
    StartDiagnosisRequest,
    SubmitReportRequest,
    VersionedRequest,
)

router = APIRouter()


@lru_cache(maxsize=1)
def get_diagnosis_service() -> DiagnosisService:
    return DiagnosisService(llm_client=OpenAILLMClient())


@router.post("/diagnoses", response_model=DiagnosisResponse, status_code=201)
def start_diagnosis(
    payload: StartDiagnosisRequest,
    service: DiagnosisService = Depends(get_diagnosis_service),
) -> DiagnosisResponse:
    """
    Patient reports symptoms; returns the diagnosis with the first AI question.
    """
    record = service.begin(payload.patient_id, payload.symptom_description)
    return DiagnosisResponse(**record.model_dump())


@router.get("/diagnoses/{diagnosis_id}", response_model=DiagnosisResponse)
def get_diagnosis(
    diagnosis_id: str,
    requester_id: Optional[str] = None,
    requester_role: Optional[str] = None,
    service: DiagnosisService = Depends(get_diagnosis_service),
) -> DiagnosisResponse:
    # requester_id/requester_role must be filled in by the upstream auth
    # layer; taken straight from the client the check is advisory only.
    record = service.get(diagnosis_id, requester_id=requester_id, requester_role=requester_role)
    return DiagnosisResponse(**record.model_dump())


@router.put("/diagnoses/{diagnosis_id}/message", response_model=DiagnosisResponse)
def append_message(
    diagnosis_id: str,
    payload: AppendTurnRequest,
    service: DiagnosisService = Depends(get_diagnosis_service),
) -> DiagnosisResponse:
    record = service.append_turn(
        diagnosis_id,
        role=payload.role,
        message=payload.message,
        attachments=payload.attachments,
        expected_version=payload.expected_version,
    )
    return DiagnosisResponse(**record.model_dump())


@router.put("/diagnoses/{diagnosis_id}/complete", response_model=DiagnosisResponse)
def complete_diagnosis(
    diagnosis_id: str,
    payload: Optional[VersionedRequest] = None,
    service: DiagnosisService = Depends(get_diagnosis_service),
) -> DiagnosisResponse:
    expected = payload.expected_version if payload else None
    record = service.complete(diagnosis_id, expected_version=expected)
    return DiagnosisResponse(**record.model_dump())


@router.put("/diagnoses/{diagnosis_id}/doctor", response_model=DiagnosisResponse)
def select_doctor(
    diagnosis_id: str,
    payload: SelectDoctorRequest,
    service: DiagnosisService = Depends(get_diagnosis_service),
) -> DiagnosisResponse:
    record = service.select_doctor(
        diagnosis_id, payload.doctor_id, expected_version=payload.expected_version
    )
    return DiagnosisResponse(**record.model_dump())


@router.put("/diagnoses/{diagnosis_id}/approve", response_model=DiagnosisResponse)
def approve_diagnosis(
    diagnosis_id: str,
    payload: ApproveDiagnosisRequest,
    service: DiagnosisService = Depends(get_diagnosis_service),
) -> DiagnosisResponse:
    modifications = ApprovalModifications(
        tests=payload.tests,
        additional_tests=payload.additional_tests,
        doctor_notes=payload.doctor_notes,
    )
    record = service.approve(
        diagnosis_id,
        payload.doctor_id,
        modifications,
        expected_version=payload.expected_version,
    )
    return DiagnosisResponse(**record.model_dump())


@router.get(
    "/diagnoses/{diagnosis_id}/pending-tests",
    response_model=List[TestCandidateRecord],
)
def pending_tests(
    diagnosis_id: str,
    service: DiagnosisService = Depends(get_diagnosis_service),
) -> List[TestCandidateRecord]:
    return service.pending_tests(diagnosis_id)


@router.post(
    "/diagnoses/{diagnosis_id}/reports",
    response_model=ReportRecord,
    status_code=201,
)
def submit_report(
    diagnosis_id: str,
    payload: SubmitReportRequest,
    service: DiagnosisService = Depends(get_diagnosis_service),
) -> ReportRecord:
    return service.record_report(
        patient_id=payload.patient_id,
        diagnosis_id=diagnosis_id,
        name=payload.name,
        report_type=payload.type,
        file_url=payload.file_url,
    )


@router.put("/diagnoses/{diagnosis_id}/finalize", response_model=DiagnosisResponse)
def finalize_diagnosis(
    diagnosis_id: str,
    service: DiagnosisService = Depends(get_diagnosis_service),
) -> DiagnosisResponse:
    record = service.finalize(diagnosis_id)
    return DiagnosisResponse(**record.model_dump())


@router.get("/patients/{patient_id}/diagnoses", response_model=List[DiagnosisResponse])
def list_patient_diagnoses(
    patient_id: str,
    status: Optional[DiagnosisStatus] = None,
    service: DiagnosisService = Depends(get_diagnosis_service),
) -> List[DiagnosisResponse]:
    return [
        DiagnosisResponse(**r.model_dump())
        for r in service.list_for_patient(patient_id, status=status)
    ]


@router.get("/doctors/{doctor_id}/pending-diagnoses", response_model=List[DiagnosisResponse])
def list_doctor_pending(
    doctor_id: str,
    service: DiagnosisService = Depends(get_diagnosis_service),
) -> List[DiagnosisResponse]:
    return [
        DiagnosisResponse(**r.model_dump())
        for r in service.list_pending_for_doctor(doctor_id)
    ]
