"""
Shared fixtures: in-memory SQLite, a scripted LLM client and a recording
notification sink.
"""

import json
import os
from datetime import date

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_JSON", "false")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.config import Settings
from app.db import Base
from app.llm import LLMClient
from app.models import Doctor, Patient
from app.services import DiagnosisService, NotificationSink


# ── Fakes ──


class ScriptedLLMClient(LLMClient):
    """
    Returns queued responses in order. A queued exception is raised; a
    queued callable is called with the messages and its result returned.
    """

    def __init__(self, responses=None, vision_responses=None):
        self.responses = list(responses or [])
        self.vision_responses = list(vision_responses or [])
        self.calls = []
        self.vision_calls = []

    def queue(self, *responses):
        self.responses.extend(responses)

    def chat(self, messages, temperature=0.2, model=None):
        self.calls.append(messages)
        return self._next(self.responses, messages)

    def chat_with_images(self, text, image_urls, temperature=0.2, model=None):
        self.vision_calls.append((text, list(image_urls)))
        return self._next(self.vision_responses, text)

    @staticmethod
    def _next(queue, arg):
        if not queue:
            raise AssertionError("Unexpected LLM call")
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        if callable(item):
            return item(arg)
        return item


class RecordingSink(NotificationSink):
    def __init__(self):
        self.events = []

    def notify(self, event, recipient_id, payload):
        self.events.append((event, recipient_id, payload))


def intake_json(message, status="ongoing"):
    return json.dumps({"message": message, "status": status})


SUMMARY_TEXT = (
    "Primary Symptoms: headache for 3 days.\n"
    "Possible Diagnosis: tension headache.\n"
    "Recommended Tests: CBC.\n"
    "Suggested Specialist: neurologist."
)

TESTS_TEXT = (
    "1. Complete Blood Count (CBC)\n"
    "   Reason: Rule out infection\n"
    "   Priority: High\n"
    "2. MRI Brain\n"
    "   Reason: Exclude structural causes\n"
    "   Priority: low\n"
)


def doctor_text(name="Dr. Maya Patel"):
    return f"I recommend {name}, a neurologist, because the symptoms are neurological."


# ── Fixtures ──


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def llm():
    return ScriptedLLMClient()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def make_service(llm, session_factory, sink):
    def _make(auto_complete_intake=False, notifier=None):
        settings = Settings(
            DATABASE_URL="sqlite://",
            AUTO_COMPLETE_INTAKE=auto_complete_intake,
        )
        return DiagnosisService(
            llm_client=llm,
            session_factory=session_factory,
            notifier=notifier or sink,
            settings=settings,
        )

    return _make


@pytest.fixture
def service(make_service):
    return make_service()


@pytest.fixture
def patient(session_factory):
    session = session_factory()
    p = Patient(
        id="patient-1",
        name="John",
        date_of_birth=date(1990, 1, 1),
        gender="male",
        medical_history=[{"condition": "asthma"}],
        allergies=["penicillin"],
    )
    session.add(p)
    session.commit()
    session.close()
    return p


@pytest.fixture
def other_patient(session_factory):
    session = session_factory()
    p = Patient(id="patient-2", name="Ana")
    session.add(p)
    session.commit()
    session.close()
    return p


@pytest.fixture
def doctors(session_factory):
    session = session_factory()
    docs = [
        Doctor(
            id="doc-1",
            first_name="Maya",
            last_name="Patel",
            specialization="Neurology",
            experience_years=12,
        ),
        Doctor(
            id="doc-2",
            first_name="Sam",
            last_name="Okafor",
            specialization="General Medicine",
            experience_years=5,
        ),
        Doctor(
            id="doc-3",
            first_name="Retired",
            last_name="Doc",
            specialization="Cardiology",
            is_active=False,
        ),
    ]
    session.add_all(docs)
    session.commit()
    session.close()
    return docs


@pytest.fixture
def ongoing_diagnosis(service, llm, patient):
    llm.queue(intake_json("Hello John. How old are you?"))
    return service.begin(patient.id, "John, 34, headache for 3 days")


@pytest.fixture
def reviewed_diagnosis(service, llm, ongoing_diagnosis, doctors):
    """A diagnosis in pending_doctor_review with two suggested tests."""
    llm.queue(SUMMARY_TEXT, TESTS_TEXT, doctor_text())
    return service.complete(ongoing_diagnosis.id)
