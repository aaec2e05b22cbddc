# app/intake/__init__.py
from .schema import (
    AdditionalTest,
    ApprovalModifications,
    Attachment,
    DiagnosisRecord,
    IntakeReply,
    TestModification,
)
from .state import DiagnosisStatus, IntakeStatus, TurnRole

__all__ = [
    "AdditionalTest",
    "ApprovalModifications",
    "Attachment",
    "DiagnosisRecord",
    "IntakeReply",
    "TestModification",
    "DiagnosisStatus",
    "IntakeStatus",
    "TurnRole",
]
