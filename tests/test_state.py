import pytest

from app.errors import InvalidStateError
from app.intake.state import (
    ALLOWED_TRANSITIONS,
    DiagnosisStatus,
    can_transition,
    ensure_transition,
)


@pytest.mark.parametrize(
    "current, target",
    [
        ("ongoing", "pending_doctor_review"),
        ("pending_doctor_review", "pending_doctor_review"),
        ("pending_doctor_review", "pending_reports"),
        ("pending_doctor_review", "completed"),
        ("pending_reports", "pending_reports"),
        ("pending_reports", "completed"),
    ],
)
def test_allowed_transitions(current, target):
    assert ensure_transition(current, target) == DiagnosisStatus(target)


@pytest.mark.parametrize(
    "current, target",
    [
        ("ongoing", "completed"),
        ("ongoing", "pending_reports"),
        ("pending_reports", "pending_doctor_review"),
        ("pending_doctor_review", "ongoing"),
        ("completed", "ongoing"),
        ("completed", "completed"),
    ],
)
def test_rejected_transitions(current, target):
    assert not can_transition(DiagnosisStatus(current), DiagnosisStatus(target))
    with pytest.raises(InvalidStateError) as exc_info:
        ensure_transition(current, target)
    assert exc_info.value.details == {"from": current, "to": target}


def test_completed_is_terminal():
    assert ALLOWED_TRANSITIONS[DiagnosisStatus.COMPLETED] == frozenset()
    assert set(ALLOWED_TRANSITIONS) == set(DiagnosisStatus)
