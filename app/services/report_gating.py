# app/services/report_gating.py
"""
Report gating: which doctor-approved tests still have no report.

A report satisfies a test when the report's name OR type contains the
test name, compared case-insensitively. This is a substring heuristic,
not an identity match, because tests are named by the AI and reports by
the people uploading them. It can go wrong both ways:

  * over-satisfy: a test "CBC" is satisfied by a report named
    "CBC differential retest" even if that was for another episode;
    a short test name like "T3" matches any report containing "t3".
  * under-satisfy: a test "Complete Blood Count" is NOT satisfied by a
    report named "CBC".

Nothing here changes diagnosis status. An empty pending list is the
signal for the caller to finalize a pending_reports diagnosis.
"""
from __future__ import annotations

from typing import Callable, Iterable, List, Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.errors import NotFoundError
from app.intake.schema import TestCandidateRecord
from app.models import Diagnosis, Report, TestCandidate

logger = structlog.get_logger(__name__)


def find_reports_by_diagnosis(session: Session, diagnosis_id: str) -> List[Report]:
    stmt = (
        select(Report)
        .where(Report.diagnosis_id == diagnosis_id)
        .order_by(Report.uploaded_at.asc())
    )
    return list(session.scalars(stmt))


def is_test_satisfied(test_name: str, reports: Iterable[Report]) -> bool:
    needle = (test_name or "").strip().lower()
    if not needle:
        return False
    for report in reports:
        if needle in (report.name or "").lower() or needle in (report.type or "").lower():
            return True
    return False


def compute_pending_tests(
    tests: Sequence[TestCandidate],
    reports: Sequence[Report],
) -> List[TestCandidate]:
    """
    Approved tests minus the ones some report satisfies, in ledger order.
    """
    return [
        test
        for test in tests
        if test.is_approved and not is_test_satisfied(test.name, reports)
    ]


def pending_tests_in_session(session: Session, diagnosis_id: str) -> List[TestCandidate]:
    diagnosis = session.get(Diagnosis, diagnosis_id)
    if diagnosis is None:
        raise NotFoundError("diagnosis", diagnosis_id)
    reports = find_reports_by_diagnosis(session, diagnosis_id)
    return compute_pending_tests(diagnosis.tests, reports)


class ReportGate:
    """
    Read-only query over the test ledger and the report store.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def pending_tests(self, diagnosis_id: str) -> List[TestCandidateRecord]:
        session = self.session_factory()
        try:
            pending = pending_tests_in_session(session, diagnosis_id)
            logger.debug(
                "pending_tests_checked",
                diagnosis_id=diagnosis_id,
                pending=len(pending),
            )
            return [TestCandidateRecord.model_validate(t) for t in pending]
        finally:
            session.close()

    def all_reports_in(self, diagnosis_id: str) -> bool:
        return not self.pending_tests(diagnosis_id)
