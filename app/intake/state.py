# app/intake/state.py
from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet

from app.errors import InvalidStateError


class DiagnosisStatus(str, Enum):
    ONGOING = "ongoing"
    PENDING_DOCTOR_REVIEW = "pending_doctor_review"
    PENDING_REPORTS = "pending_reports"
    COMPLETED = "completed"


class IntakeStatus(str, Enum):
    """
    Turn-level signal from the intake dialogue.

    Kept apart from DiagnosisStatus: reaching COMPLETED here only closes
    the dialogue, it does not move the diagnosis along by itself.
    """

    ONGOING = "ongoing"
    COMPLETED = "completed"


class TurnRole(str, Enum):
    PATIENT = "patient"
    ASSISTANT = "assistant"
    CLINICIAN = "clinician"


class TestPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class AttachmentKind(str, Enum):
    IMAGE = "image"
    FILE = "file"


# Self-loops on PENDING_DOCTOR_REVIEW and PENDING_REPORTS cover a re-run
# of completion and a second round of test approvals.
ALLOWED_TRANSITIONS: Dict[DiagnosisStatus, FrozenSet[DiagnosisStatus]] = {
    DiagnosisStatus.ONGOING: frozenset({DiagnosisStatus.PENDING_DOCTOR_REVIEW}),
    DiagnosisStatus.PENDING_DOCTOR_REVIEW: frozenset(
        {
            DiagnosisStatus.PENDING_DOCTOR_REVIEW,
            DiagnosisStatus.PENDING_REPORTS,
            DiagnosisStatus.COMPLETED,
        }
    ),
    DiagnosisStatus.PENDING_REPORTS: frozenset(
        {DiagnosisStatus.PENDING_REPORTS, DiagnosisStatus.COMPLETED}
    ),
    DiagnosisStatus.COMPLETED: frozenset(),
}


def can_transition(current: DiagnosisStatus, target: DiagnosisStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def ensure_transition(current: DiagnosisStatus | str, target: DiagnosisStatus | str) -> DiagnosisStatus:
    """
    Validate a status move and return the target as an enum.

    Raises InvalidStateError for anything outside ALLOWED_TRANSITIONS.
    """
    current = DiagnosisStatus(current)
    target = DiagnosisStatus(target)
    if not can_transition(current, target):
        raise InvalidStateError(
            f"Cannot move diagnosis from '{current.value}' to '{target.value}'",
            details={"from": current.value, "to": target.value},
        )
    return target
