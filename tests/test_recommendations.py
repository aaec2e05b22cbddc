"""
Tests for test-suggestion parsing and doctor matching.
"""

import pytest

from app.intake.recommendations import (
    match_recommended_doctor,
    parse_test_suggestions,
    recommend_doctor,
    suggest_medical_tests,
)
from app.models import Doctor

from conftest import ScriptedLLMClient, TESTS_TEXT


def _as_tuples(tests):
    return [(t.name, t.reason, t.priority.value) for t in tests]


class TestParseTestSuggestions:
    def test_numbered_list_with_field_lines(self):
        assert _as_tuples(parse_test_suggestions(TESTS_TEXT)) == [
            ("Complete Blood Count (CBC)", "Rule out infection", "high"),
            ("MRI Brain", "Exclude structural causes", "low"),
        ]

    def test_bold_names_with_bulleted_fields(self):
        text = (
            "**Recommended Tests**\n"
            "**Thyroid Panel**\n"
            "- Reason: Fatigue and weight change\n"
            "- Priority: Medium\n"
            "**Chest X-ray**\n"
            "- Reason: Persistent cough\n"
            "- Priority: HIGH\n"
        )
        assert _as_tuples(parse_test_suggestions(text)) == [
            ("Thyroid Panel", "Fatigue and weight change", "medium"),
            ("Chest X-ray", "Persistent cough", "high"),
        ]

    def test_bullet_with_inline_reason_and_priority(self):
        text = (
            "- Urinalysis: check for infection (Priority: high)\n"
            "- Lipid panel: cardiovascular risk\n"
        )
        assert _as_tuples(parse_test_suggestions(text)) == [
            ("Urinalysis", "check for infection", "high"),
            ("Lipid panel", "cardiovascular risk", "medium"),
        ]

    def test_unrecognised_text_yields_nothing(self):
        assert parse_test_suggestions("I am unable to suggest tests without more data.") == []
        assert parse_test_suggestions("") == []

    def test_field_lines_before_any_test_are_ignored(self):
        text = "Reason: none\n1. ECG\n"
        assert _as_tuples(parse_test_suggestions(text)) == [("ECG", "", "medium")]


@pytest.fixture
def doctor_list():
    return [
        Doctor(id="d1", first_name="Maya", last_name="Patel", specialization="Neurology", experience_years=12),
        Doctor(id="d2", first_name="Sam", last_name="Okafor", specialization="General Medicine"),
    ]


class TestMatchRecommendedDoctor:
    def test_earliest_mention_wins(self, doctor_list):
        response = "Dr. Sam Okafor is the best fit. Dr. Maya Patel could be a second opinion."
        rec = match_recommended_doctor(response, doctor_list)
        assert rec.doctor_id == "d2"
        assert rec.reason == response

    def test_case_insensitive_and_reason_starts_at_title(self, doctor_list):
        response = "My recommendation: DR. MAYA PATEL, given the neurological symptoms."
        rec = match_recommended_doctor(response, doctor_list)
        assert rec.doctor_id == "d1"
        assert rec.reason == "DR. MAYA PATEL, given the neurological symptoms."

    def test_name_without_title(self, doctor_list):
        rec = match_recommended_doctor("Please see Maya Patel.", doctor_list)
        assert rec.reason == "Maya Patel."

    def test_no_match(self, doctor_list):
        rec = match_recommended_doctor("A neurologist would be appropriate.", doctor_list)
        assert rec.doctor_id is None
        assert rec.raw_response == "A neurologist would be appropriate."


def test_recommend_doctor_without_candidates_skips_gateway():
    llm = ScriptedLLMClient()
    rec = recommend_doctor("summary", [], llm)
    assert rec.doctor_id is None
    assert llm.calls == []


def test_recommend_doctor_lists_candidates(doctor_list):
    llm = ScriptedLLMClient(["I recommend Dr. Maya Patel."])
    rec = recommend_doctor("Migraine", doctor_list, llm)

    prompt = llm.calls[0][0]["content"]
    assert "- Dr. Maya Patel, Specialization: Neurology, Experience: 12 years" in prompt
    assert "- Dr. Sam Okafor, Specialization: General Medicine, Experience: unknown years" in prompt
    assert rec.doctor_id == "d1"


def test_suggest_medical_tests_returns_raw_and_parsed():
    llm = ScriptedLLMClient([TESTS_TEXT])
    raw, tests = suggest_medical_tests("Migraine", "Allergies: none.", llm)

    assert raw == TESTS_TEXT
    assert [t.name for t in tests] == ["Complete Blood Count (CBC)", "MRI Brain"]
    assert "Patient medical history: Allergies: none." in llm.calls[0][0]["content"]
