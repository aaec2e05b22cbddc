"""
Tests for the intake prompt, reply parsing and transcript helpers.
"""

from datetime import date, datetime, timedelta

import pytest

from app.errors import AIGatewayError
from app.intake.protocol import (
    build_intake_system_prompt,
    parse_intake_reply,
    strip_code_fences,
)
from app.intake.stages import TOPIC_SEQUENCE
from app.intake.state import IntakeStatus
from app.intake.summarizer import format_patient_history
from app.intake.transcript import (
    build_transcript_text,
    build_turn,
    image_urls,
    next_timestamp,
    to_chat_messages,
)
from app.models import Patient, Turn


class TestSystemPrompt:
    def test_lists_every_topic_in_order(self):
        prompt = build_intake_system_prompt()
        for i in range(1, len(TOPIC_SEQUENCE) + 2):
            assert f"\n{i}. " in prompt
        assert '"status": "completed"' in prompt
        assert "Patient medical history" not in prompt

    def test_appends_patient_history(self):
        prompt = build_intake_system_prompt("Age: 34 years.")
        assert prompt.endswith("Patient medical history: Age: 34 years.")


class TestParseIntakeReply:
    def test_plain_json(self):
        reply = parse_intake_reply('{"message": "How old are you?", "status": "ongoing"}')
        assert reply.message == "How old are you?"
        assert reply.status == IntakeStatus.ONGOING

    def test_fenced_json_and_extra_fields(self):
        raw = '```json\n{"message": " Thanks. ", "status": "completed", "confidence": 0.9}\n```'
        reply = parse_intake_reply(raw)
        assert reply.message == "Thanks."
        assert reply.status == IntakeStatus.COMPLETED

    def test_missing_status_defaults_to_ongoing(self):
        assert parse_intake_reply('{"message": "Where does it hurt?"}').status == IntakeStatus.ONGOING

    @pytest.mark.parametrize(
        "raw",
        [
            "What is your age?",
            '["message", "status"]',
            '{"status": "ongoing"}',
            '{"message": "   ", "status": "ongoing"}',
            '{"message": "Hi", "status": "finished"}',
        ],
    )
    def test_malformed_replies_raise_gateway_error(self, raw):
        with pytest.raises(AIGatewayError):
            parse_intake_reply(raw)

    def test_strip_code_fences_leaves_plain_text(self):
        assert strip_code_fences('  {"a": 1}  ') == '{"a": 1}'
        assert strip_code_fences('```\n{"a": 1}\n```') == '{"a": 1}'


class TestTranscript:
    def test_build_turn_positions_and_role(self):
        first = build_turn([], "patient", "headache")
        second = build_turn([first], "assistant", "Since when?")
        assert (first.position, second.position) == (0, 1)
        assert second.role == "assistant"
        assert second.attachments == []

    def test_next_timestamp_never_goes_backwards(self):
        future = datetime(2100, 1, 1)
        turns = [Turn(position=0, role="patient", message="x", ts=future)]
        assert next_timestamp(turns) == future

        now = datetime(2024, 1, 1)
        earlier = [Turn(position=0, role="patient", message="x", ts=now - timedelta(minutes=1))]
        assert next_timestamp(earlier, now=now) == now

    def test_chat_messages_label_clinician_notes(self):
        turns = [
            Turn(position=0, role="patient", message="headache"),
            Turn(position=1, role="assistant", message="How long?"),
            Turn(position=2, role="clinician", message="Ask about fever"),
        ]
        assert to_chat_messages(turns) == [
            {"role": "user", "content": "headache"},
            {"role": "assistant", "content": "How long?"},
            {"role": "user", "content": "[Clinician note] Ask about fever"},
        ]
        assert build_transcript_text(turns).splitlines() == [
            "Patient: headache",
            "AI Assistant: How long?",
            "Clinician: Ask about fever",
        ]

    def test_image_urls_only_keeps_images(self):
        attachments = [
            {"kind": "image", "url": "https://x/a.png"},
            {"kind": "file", "url": "https://x/b.pdf"},
            {"kind": "image", "url": ""},
        ]
        assert image_urls(attachments) == ["https://x/a.png"]
        assert image_urls(None) == []


class TestPatientHistory:
    def test_formats_known_fields(self):
        patient = Patient(
            id="p",
            name="John",
            date_of_birth=date(1990, 6, 15),
            gender="male",
            medical_history=[{"condition": "asthma"}, {"note": "no condition key"}],
            allergies=["penicillin", "latex"],
            height_cm=180.0,
            blood_type="O+",
        )
        history = format_patient_history(patient, today=date(2024, 6, 14))
        assert history == (
            "Age: 33 years. Gender: male. Medical conditions: asthma. "
            "Allergies: penicillin, latex. Height: 180 cm. Blood type: O+."
        )

    def test_missing_patient_is_empty(self):
        assert format_patient_history(None) == ""
