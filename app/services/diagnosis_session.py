# app/services/diagnosis_session.py
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterator, List, Optional, Sequence

import structlog
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import or_, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from app.config import Settings, get_settings
from app.db import SessionLocal, engine, Base
from app.errors import (
    AIGatewayError,
    ConcurrentModificationError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from app.intake.agent import AgentReply, IntakeAgent
from app.intake.recommendations import recommend_doctor, suggest_medical_tests
from app.intake.schema import (
    ApprovalModifications,
    Attachment,
    DiagnosisRecord,
    ReportRecord,
    TestCandidateRecord,
)
from app.intake.state import DiagnosisStatus, IntakeStatus, TurnRole, ensure_transition
from app.intake.summarizer import format_patient_history, generate_diagnosis_summary
from app.intake.transcript import build_turn, image_urls
from app.llm import LLMClient
from app.models import Diagnosis, Doctor, Patient, Report, TestCandidate, Turn, utcnow
from app.services.notifications import (
    LoggingNotificationSink,
    NotificationEvent,
    NotificationSink,
    dispatch_notification,
)
from app.services.report_gating import (
    ReportGate,
    compute_pending_tests,
    find_reports_by_diagnosis,
)

logger = structlog.get_logger(__name__)

DOCTOR_NOTES_LABEL = "Doctor's Notes: "


@contextmanager
def db_session(session_factory: Callable[[], Session] = SessionLocal) -> Iterator[Session]:
    db = session_factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db() -> None:
    """
    Create all tables. Call this once at startup (e.g. from scripts).
    """
    Base.metadata.create_all(bind=engine)


def _require_text(value: Optional[str], field: str) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"{field} must not be empty", details={"field": field})
    return text


def _snapshot_turns(turns: Sequence[Turn]) -> List[Turn]:
    # Transient copies so prompts can be built after the session is gone.
    return [
        Turn(position=t.position, role=t.role, message=t.message, ts=t.ts)
        for t in turns
    ]


def _snapshot_doctors(doctors: Sequence[Doctor]) -> List[Doctor]:
    return [
        Doctor(
            id=d.id,
            first_name=d.first_name,
            last_name=d.last_name,
            specialization=d.specialization,
            experience_years=d.experience_years,
        )
        for d in doctors
    ]


class DiagnosisService:
    """
    Service that coordinates the diagnosis lifecycle:
      - creating a Diagnosis from the patient's first symptom report
      - driving the IntakeAgent turn by turn
      - generating summary, tests and doctor suggestion at intake completion
      - doctor selection and test approval
      - report collection and the final hand-off to completed

    Every write bumps Diagnosis.version; a write based on a stale read
    raises ConcurrentModificationError instead of overwriting.
    """

    def __init__(
        self,
        llm_client: LLMClient,
        session_factory: Callable[[], Session] = SessionLocal,
        notifier: Optional[NotificationSink] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self.llm_client = llm_client
        self.session_factory = session_factory
        self.notifier = notifier or LoggingNotificationSink()
        self.agent = IntakeAgent(llm_client, temperature=settings.intake_temperature)
        self.auto_complete_intake = settings.auto_complete_intake
        self.doctor_candidate_limit = settings.doctor_candidate_limit
        self.report_gate = ReportGate(session_factory)

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    def begin(self, patient_id: str, symptom_text: str) -> DiagnosisRecord:
        """
        Start a diagnosis from the patient's symptom report and ask the
        first intake question.

        The patient's turn is committed before the AI is called, so it
        survives an AIGatewayError.
        """
        text = _require_text(symptom_text, "symptom_text")

        with self._unit_of_work() as session:
            patient = self._get_patient(session, patient_id)
            now = utcnow()
            diagnosis = Diagnosis(
                patient_id=patient.id,
                title="New Diagnosis",
                symptom_description=text,
                status=DiagnosisStatus.ONGOING.value,
                intake_status=IntakeStatus.ONGOING.value,
                created_at=now,
                updated_at=now,
            )
            diagnosis.turns.append(build_turn([], TurnRole.PATIENT, text))
            session.add(diagnosis)
            session.flush()

            diagnosis_id = diagnosis.id
            version = diagnosis.version
            turns = _snapshot_turns(diagnosis.turns)
            patient_history = format_patient_history(patient)

        logger.info("diagnosis_started", diagnosis_id=diagnosis_id, patient_id=patient_id)
        dispatch_notification(
            self.notifier,
            NotificationEvent.DIAGNOSIS_STARTED,
            patient_id,
            {"diagnosis_id": diagnosis_id},
        )

        reply = self._ask_agent(diagnosis_id, lambda: self.agent.respond(turns, patient_history))
        return self._record_reply(diagnosis_id, version, reply, first_turn=True)

    def append_turn(
        self,
        diagnosis_id: str,
        role: TurnRole | str,
        message: str,
        attachments: Optional[List[Attachment | dict]] = None,
        expected_version: Optional[int] = None,
    ) -> DiagnosisRecord:
        """
        Add a turn to an ongoing intake. Patient turns get an AI reply.

        Turns with image attachments use the vision path, which returns no
        intake status; all other patient turns re-run the intake protocol.
        File-only attachments are stored on the turn but not sent to the
        vision model, which cannot read documents.
        """
        text = _require_text(message, "message")
        try:
            role = TurnRole(role)
        except ValueError as exc:
            raise ValidationError(
                f"Unknown turn role '{role}'", details={"field": "role"}
            ) from exc
        try:
            attachment_dicts = [
                Attachment.model_validate(a).model_dump() for a in attachments or []
            ]
        except PydanticValidationError as exc:
            raise ValidationError(
                "Invalid attachment",
                details={"errors": exc.errors(include_url=False, include_context=False)},
            ) from exc

        with self._unit_of_work(diagnosis_id) as session:
            diagnosis = self._load(session, diagnosis_id, expected_version)
            if diagnosis.status != DiagnosisStatus.ONGOING.value:
                raise InvalidStateError(
                    "This diagnosis session is no longer accepting messages",
                    details={"diagnosis_id": diagnosis_id, "status": diagnosis.status},
                )
            if diagnosis.intake_status == IntakeStatus.COMPLETED.value:
                raise InvalidStateError(
                    "The intake conversation has finished; complete the diagnosis instead",
                    details={"diagnosis_id": diagnosis_id, "intake_status": diagnosis.intake_status},
                )

            diagnosis.turns.append(build_turn(diagnosis.turns, role, text, attachment_dicts))
            self._touch(diagnosis)
            session.flush()

            version = diagnosis.version
            record = DiagnosisRecord.from_orm_diagnosis(diagnosis)
            turns = _snapshot_turns(diagnosis.turns)
            patient_history = format_patient_history(diagnosis.patient)

        logger.info(
            "turn_appended",
            diagnosis_id=diagnosis_id,
            role=role.value,
            attachments=len(attachment_dicts),
        )

        if role is not TurnRole.PATIENT:
            return record

        urls = image_urls(attachment_dicts)
        if urls:
            reply = self._ask_agent(
                diagnosis_id, lambda: self.agent.respond_to_images(text, urls)
            )
        else:
            reply = self._ask_agent(
                diagnosis_id, lambda: self.agent.respond(turns, patient_history)
            )
        return self._record_reply(diagnosis_id, version, reply, first_turn=False)

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def complete(self, diagnosis_id: str, expected_version: Optional[int] = None) -> DiagnosisRecord:
        """
        Generate summary, suggested tests and suggested doctor, then hand
        the diagnosis to doctor review.

        Not idempotent: calling it again while the diagnosis is still in
        pending_doctor_review regenerates and overwrites all three.
        Nothing is written unless every AI call succeeded.
        """
        with self._read_session() as session:
            diagnosis = self._load(session, diagnosis_id, expected_version)
            ensure_transition(diagnosis.status, DiagnosisStatus.PENDING_DOCTOR_REVIEW)

            version = diagnosis.version
            intake_status = diagnosis.intake_status
            turns = _snapshot_turns(diagnosis.turns)
            patient_history = format_patient_history(diagnosis.patient)
            doctors = _snapshot_doctors(
                session.scalars(
                    select(Doctor)
                    .where(Doctor.is_active.is_(True))
                    .order_by(Doctor.created_at.asc())
                    .limit(self.doctor_candidate_limit)
                ).all()
            )

        if intake_status != IntakeStatus.COMPLETED.value:
            logger.info("completing_before_intake_finished", diagnosis_id=diagnosis_id)

        try:
            summary = generate_diagnosis_summary(turns, patient_history, self.llm_client)
            _, tests = suggest_medical_tests(summary, patient_history, self.llm_client)
            recommendation = recommend_doctor(summary, doctors, self.llm_client)
        except AIGatewayError as exc:
            logger.warning(
                "diagnosis_completion_failed",
                diagnosis_id=diagnosis_id,
                error=exc.message,
            )
            raise

        with self._unit_of_work(diagnosis_id) as session:
            diagnosis = self._load(session, diagnosis_id, version)
            target = ensure_transition(diagnosis.status, DiagnosisStatus.PENDING_DOCTOR_REVIEW)

            diagnosis.ai_summary = summary
            diagnosis.tests = [
                TestCandidate(
                    position=i,
                    name=t.name,
                    reason=t.reason,
                    priority=t.priority.value,
                    is_approved=False,
                )
                for i, t in enumerate(tests)
            ]
            diagnosis.suggested_doctor_id = recommendation.doctor_id
            diagnosis.suggested_doctor_reason = (
                recommendation.reason if recommendation.doctor_id else None
            )
            diagnosis.suggested_doctor_confirmed = False
            diagnosis.status = target.value
            diagnosis.intake_status = IntakeStatus.COMPLETED.value
            self._touch(diagnosis)
            session.flush()

            record = DiagnosisRecord.from_orm_diagnosis(diagnosis)

        logger.info(
            "diagnosis_completed",
            diagnosis_id=diagnosis_id,
            suggested_tests=len(record.suggested_tests),
            suggested_doctor_id=recommendation.doctor_id,
        )
        dispatch_notification(
            self.notifier,
            NotificationEvent.DIAGNOSIS_COMPLETED,
            recommendation.doctor_id,
            {"diagnosis_id": diagnosis_id, "patient_id": record.patient_id},
        )
        return record

    # ------------------------------------------------------------------
    # Doctor actions
    # ------------------------------------------------------------------

    def select_doctor(
        self,
        diagnosis_id: str,
        doctor_id: str,
        expected_version: Optional[int] = None,
    ) -> DiagnosisRecord:
        with self._unit_of_work(diagnosis_id) as session:
            diagnosis = self._load(session, diagnosis_id, expected_version)
            self._get_doctor(session, doctor_id)

            diagnosis.final_doctor_id = doctor_id
            if diagnosis.suggested_doctor_id == doctor_id:
                diagnosis.suggested_doctor_confirmed = True
            self._touch(diagnosis)
            session.flush()
            record = DiagnosisRecord.from_orm_diagnosis(diagnosis)

        logger.info(
            "doctor_selected",
            diagnosis_id=diagnosis_id,
            doctor_id=doctor_id,
            confirmed_suggestion=record.suggested_doctor is not None
            and record.suggested_doctor.is_confirmed,
        )
        return record

    def approve(
        self,
        diagnosis_id: str,
        doctor_id: str,
        modifications: Optional[ApprovalModifications | dict] = None,
        expected_version: Optional[int] = None,
    ) -> DiagnosisRecord:
        """
        Apply a doctor's review: approve or edit suggested tests, add
        tests, leave notes.

        Ends in pending_reports when any test is approved (including
        earlier approvals), otherwise in completed.
        """
        try:
            mods = ApprovalModifications.model_validate(modifications or {})
        except PydanticValidationError as exc:
            raise ValidationError(
                "Invalid approval modifications",
                details={"errors": exc.errors(include_url=False, include_context=False)},
            ) from exc

        with self._unit_of_work(diagnosis_id) as session:
            diagnosis = self._load(session, diagnosis_id, expected_version)
            self._get_doctor(session, doctor_id)
            if diagnosis.status not in (
                DiagnosisStatus.PENDING_DOCTOR_REVIEW.value,
                DiagnosisStatus.PENDING_REPORTS.value,
            ):
                raise InvalidStateError(
                    f"Cannot approve a diagnosis in status '{diagnosis.status}'",
                    details={"diagnosis_id": diagnosis_id, "status": diagnosis.status},
                )

            now = utcnow()
            tests_by_id = {t.id: t for t in diagnosis.tests}
            for mod in mods.tests:
                test = tests_by_id.get(mod.test_id)
                if test is None:
                    logger.info(
                        "approval_for_unknown_test_ignored",
                        diagnosis_id=diagnosis_id,
                        test_id=mod.test_id,
                    )
                    continue
                if (
                    diagnosis.status == DiagnosisStatus.PENDING_REPORTS.value
                    and test.is_approved
                    and not mod.is_approved
                ):
                    # Withdrawing an ordered test would bypass report gating.
                    raise InvalidStateError(
                        "Approved tests cannot be withdrawn while reports are pending",
                        details={"diagnosis_id": diagnosis_id, "test_id": mod.test_id},
                    )
                test.is_approved = mod.is_approved
                test.approved_by = doctor_id if mod.is_approved else None
                test.approved_at = now if mod.is_approved else None
                if mod.reason:
                    test.reason = mod.reason
                if mod.priority:
                    test.priority = mod.priority.value

            for extra in mods.additional_tests:
                diagnosis.tests.append(
                    TestCandidate(
                        position=len(diagnosis.tests),
                        name=extra.name,
                        reason=extra.reason,
                        priority=extra.priority.value,
                        is_approved=True,
                        approved_by=doctor_id,
                        approved_at=now,
                    )
                )

            if mods.doctor_notes and mods.doctor_notes.strip():
                diagnosis.turns.append(
                    build_turn(
                        diagnosis.turns,
                        TurnRole.CLINICIAN,
                        f"{DOCTOR_NOTES_LABEL}{mods.doctor_notes.strip()}",
                    )
                )

            if diagnosis.final_doctor_id is None:
                diagnosis.final_doctor_id = doctor_id

            has_approved = any(t.is_approved for t in diagnosis.tests)
            target = (
                DiagnosisStatus.PENDING_REPORTS if has_approved else DiagnosisStatus.COMPLETED
            )
            diagnosis.status = ensure_transition(diagnosis.status, target).value
            self._touch(diagnosis)
            session.flush()
            record = DiagnosisRecord.from_orm_diagnosis(diagnosis)

        logger.info(
            "diagnosis_approved",
            diagnosis_id=diagnosis_id,
            doctor_id=doctor_id,
            status=record.status.value,
            approved_tests=sum(1 for t in record.suggested_tests if t.is_approved),
        )
        dispatch_notification(
            self.notifier,
            NotificationEvent.DIAGNOSIS_APPROVED,
            record.patient_id,
            {"diagnosis_id": diagnosis_id, "doctor_id": doctor_id, "status": record.status.value},
        )
        return record

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def pending_tests(self, diagnosis_id: str) -> List[TestCandidateRecord]:
        return self.report_gate.pending_tests(diagnosis_id)

    def record_report(
        self,
        patient_id: str,
        diagnosis_id: str,
        name: str,
        report_type: str,
        file_url: Optional[str] = None,
    ) -> ReportRecord:
        """
        Store a submitted report against a diagnosis.

        When it was the last missing one for a pending_reports diagnosis,
        the assigned doctor is notified. Status is left alone.
        """
        name = _require_text(name, "name")
        report_type = _require_text(report_type, "type")

        with self._unit_of_work(diagnosis_id) as session:
            self._get_patient(session, patient_id)
            diagnosis = self._load(session, diagnosis_id)
            if diagnosis.patient_id != patient_id:
                raise UnauthorizedError(
                    "Report does not belong to this diagnosis' patient",
                    details={"diagnosis_id": diagnosis_id, "patient_id": patient_id},
                )

            report = Report(
                patient_id=patient_id,
                diagnosis_id=diagnosis_id,
                name=name,
                type=report_type,
                file_url=file_url,
                uploaded_at=utcnow(),
            )
            session.add(report)
            session.flush()

            all_in = False
            if diagnosis.status == DiagnosisStatus.PENDING_REPORTS.value:
                reports = find_reports_by_diagnosis(session, diagnosis_id)
                all_in = not compute_pending_tests(diagnosis.tests, reports)
            final_doctor_id = diagnosis.final_doctor_id
            record = ReportRecord.model_validate(report)

        logger.info("report_recorded", diagnosis_id=diagnosis_id, report_id=record.id)
        if all_in:
            dispatch_notification(
                self.notifier,
                NotificationEvent.ALL_REPORTS_READY,
                final_doctor_id,
                {"diagnosis_id": diagnosis_id, "patient_id": patient_id},
            )
        return record

    def finalize(self, diagnosis_id: str, expected_version: Optional[int] = None) -> DiagnosisRecord:
        """
        Move a pending_reports diagnosis to completed once every approved
        test has a matching report.
        """
        with self._unit_of_work(diagnosis_id) as session:
            diagnosis = self._load(session, diagnosis_id, expected_version)
            if diagnosis.status != DiagnosisStatus.PENDING_REPORTS.value:
                raise InvalidStateError(
                    f"Cannot finalize a diagnosis in status '{diagnosis.status}'",
                    details={"diagnosis_id": diagnosis_id, "status": diagnosis.status},
                )

            pending = compute_pending_tests(
                diagnosis.tests, find_reports_by_diagnosis(session, diagnosis_id)
            )
            if pending:
                raise InvalidStateError(
                    "Reports are still missing for approved tests",
                    details={
                        "diagnosis_id": diagnosis_id,
                        "pending_tests": [t.name for t in pending],
                    },
                )

            diagnosis.status = ensure_transition(
                diagnosis.status, DiagnosisStatus.COMPLETED
            ).value
            self._touch(diagnosis)
            session.flush()
            record = DiagnosisRecord.from_orm_diagnosis(diagnosis)

        logger.info("diagnosis_finalized", diagnosis_id=diagnosis_id)
        return record

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(
        self,
        diagnosis_id: str,
        requester_id: Optional[str] = None,
        requester_role: Optional[str] = None,
    ) -> DiagnosisRecord:
        with self._read_session() as session:
            diagnosis = self._load(session, diagnosis_id)
            if requester_role == "patient" and diagnosis.patient_id != requester_id:
                raise UnauthorizedError(
                    "Not authorized to access this diagnosis",
                    details={"diagnosis_id": diagnosis_id},
                )
            return DiagnosisRecord.from_orm_diagnosis(diagnosis)

    def list_for_patient(
        self,
        patient_id: str,
        status: Optional[DiagnosisStatus | str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[DiagnosisRecord]:
        stmt = select(Diagnosis).where(Diagnosis.patient_id == patient_id)
        if status is not None:
            try:
                status = DiagnosisStatus(status)
            except ValueError as exc:
                raise ValidationError(
                    f"Unknown diagnosis status '{status}'", details={"field": "status"}
                ) from exc
            stmt = stmt.where(Diagnosis.status == status.value)
        if start is not None and end is not None:
            stmt = stmt.where(Diagnosis.created_at.between(start, end))
        stmt = stmt.order_by(Diagnosis.created_at.desc())

        with self._read_session() as session:
            return [DiagnosisRecord.from_orm_diagnosis(d) for d in session.scalars(stmt)]

    def list_pending_for_doctor(self, doctor_id: str) -> List[DiagnosisRecord]:
        stmt = (
            select(Diagnosis)
            .where(Diagnosis.status == DiagnosisStatus.PENDING_DOCTOR_REVIEW.value)
            .where(
                or_(
                    Diagnosis.final_doctor_id == doctor_id,
                    Diagnosis.suggested_doctor_id == doctor_id,
                )
            )
            .order_by(Diagnosis.created_at.desc())
        )
        with self._read_session() as session:
            return [DiagnosisRecord.from_orm_diagnosis(d) for d in session.scalars(stmt)]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _unit_of_work(self, diagnosis_id: Optional[str] = None) -> Iterator[Session]:
        try:
            with db_session(self.session_factory) as session:
                yield session
        except StaleDataError as exc:
            raise ConcurrentModificationError(diagnosis_id or "", None) from exc

    @contextmanager
    def _read_session(self) -> Iterator[Session]:
        session = self.session_factory()
        try:
            yield session
        finally:
            session.close()

    def _ask_agent(self, diagnosis_id: str, call: Callable[[], AgentReply]) -> AgentReply:
        try:
            return call()
        except AIGatewayError as exc:
            # The caller's turn is already committed; only the reply is lost.
            logger.warning(
                "intake_reply_failed",
                diagnosis_id=diagnosis_id,
                error=exc.message,
            )
            raise

    def _record_reply(
        self,
        diagnosis_id: str,
        expected_version: int,
        reply: AgentReply,
        first_turn: bool,
    ) -> DiagnosisRecord:
        run_completion = False

        with self._unit_of_work(diagnosis_id) as session:
            diagnosis = self._load(session, diagnosis_id, expected_version)
            diagnosis.turns.append(
                build_turn(diagnosis.turns, TurnRole.ASSISTANT, reply.message)
            )

            if reply.intake_status is IntakeStatus.COMPLETED:
                if first_turn and not self.auto_complete_intake:
                    logger.info("first_turn_completion_ignored", diagnosis_id=diagnosis_id)
                else:
                    diagnosis.intake_status = IntakeStatus.COMPLETED.value
                    run_completion = self.auto_complete_intake

            self._touch(diagnosis)
            session.flush()
            record = DiagnosisRecord.from_orm_diagnosis(diagnosis)

        if run_completion:
            logger.info("intake_auto_completing", diagnosis_id=diagnosis_id)
            return self.complete(diagnosis_id, expected_version=record.version)
        return record

    def _load(
        self,
        session: Session,
        diagnosis_id: str,
        expected_version: Optional[int] = None,
    ) -> Diagnosis:
        diagnosis = session.get(Diagnosis, diagnosis_id)
        if diagnosis is None:
            raise NotFoundError("diagnosis", diagnosis_id)
        if expected_version is not None and diagnosis.version != expected_version:
            raise ConcurrentModificationError(
                diagnosis_id, expected_version, diagnosis.version
            )
        return diagnosis

    def _get_patient(self, session: Session, patient_id: str) -> Patient:
        patient = session.get(Patient, patient_id)
        if patient is None:
            raise NotFoundError("patient", patient_id)
        return patient

    def _get_doctor(self, session: Session, doctor_id: str) -> Doctor:
        doctor = session.get(Doctor, doctor_id)
        if doctor is None:
            raise NotFoundError("doctor", doctor_id)
        return doctor

    def _touch(self, diagnosis: Diagnosis) -> None:
        # Child-row inserts alone do not UPDATE the parent row, and the
        # version counter only moves on an UPDATE.
        diagnosis.updated_at = utcnow()
        flag_modified(diagnosis, "updated_at")
