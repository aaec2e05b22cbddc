# app/intake/recommendations.py
"""
Test suggestions and doctor recommendations.

Both replies are free text, so the parsers here are best-effort: they
return whatever they can recognise and an empty result when they
recognise nothing. Only gateway failures raise.
"""
from __future__ import annotations

import re
from typing import List, Optional, Sequence

import structlog

from app.intake.schema import DoctorRecommendation, TestSuggestion
from app.intake.state import TestPriority
from app.llm import LLMClient
from app.models import Doctor

logger = structlog.get_logger(__name__)


_BOLD_RE = re.compile(r"\*\*([^*]+)\*\*(.*)")
_NUMBERED_RE = re.compile(r"^\s*\d+[.)]\s+(.+)")
_BULLET_RE = re.compile(r"^\s*[-*•]\s+([^:]+):(.*)")
_FIELD_RE = re.compile(r"^(reason|priority)\s*:\s*(.*)", re.IGNORECASE)
_INLINE_PRIORITY_RE = re.compile(r"priority\s*:\s*(\w+)", re.IGNORECASE)
_LIST_MARKER_RE = re.compile(r"^\s*(?:[-*•]\s+|\d+[.)]\s+)?")

# Section headings a model likes to put in bold above the list.
_HEADINGS = {"tests", "medical tests", "recommended tests", "suggested tests"}


def _parse_priority(text: str) -> Optional[TestPriority]:
    lowered = text.lower()
    for priority in (TestPriority.HIGH, TestPriority.MEDIUM, TestPriority.LOW):
        if priority.value in lowered:
            return priority
    return None


def _clean(text: str) -> str:
    return text.replace("**", "").strip().strip(":-").strip()


def _match_test_start(line: str) -> Optional[tuple[str, str]]:
    """
    Return (name, trailing text) if the line opens a new test entry.
    """
    bold = _BOLD_RE.search(line)
    if bold:
        return _clean(bold.group(1)), _clean(bold.group(2))

    numbered = _NUMBERED_RE.match(line)
    if numbered:
        name, _, rest = numbered.group(1).partition(":")
        return _clean(name), _clean(rest)

    bullet = _BULLET_RE.match(line)
    if bullet:
        return _clean(bullet.group(1)), _clean(bullet.group(2))

    return None


def parse_test_suggestions(text: str) -> List[TestSuggestion]:
    """
    Pull name/reason/priority triples out of a semi-structured list.

    Bullet, numbered and bold lines start a new test. Lines labelled
    "Reason:" or "Priority:" fill in the current one.
    """
    tests: List[TestSuggestion] = []
    current: Optional[dict] = None

    for line in (text or "").splitlines():
        if not line.strip():
            continue

        core = _clean(_LIST_MARKER_RE.sub("", line, count=1))
        field = _FIELD_RE.match(core)
        if field:
            if current is None:
                continue
            label, value = field.group(1).lower(), _clean(field.group(2))
            if label == "reason":
                current["reason"] = value
            else:
                current["priority"] = _parse_priority(value) or current["priority"]
            continue

        start = _match_test_start(line)
        if start is None:
            continue

        name, rest = start
        if not name or name.lower() in _HEADINGS:
            continue

        if current is not None:
            tests.append(TestSuggestion(**current))

        current = {"name": name, "reason": "", "priority": TestPriority.MEDIUM}
        if rest:
            inline_priority = _INLINE_PRIORITY_RE.search(rest)
            if inline_priority:
                current["priority"] = (
                    _parse_priority(inline_priority.group(1)) or TestPriority.MEDIUM
                )
                rest = _clean(rest[: inline_priority.start()].rstrip(" ,;("))
            current["reason"] = rest

    if current is not None:
        tests.append(TestSuggestion(**current))

    return tests


def suggest_medical_tests(
    diagnosis_summary: str,
    patient_history: Optional[str],
    llm_client: LLMClient,
) -> tuple[str, List[TestSuggestion]]:
    """
    Ask the gateway for tests and parse them.

    Returns:
      - raw model response
      - parsed suggestions (possibly empty)
    """
    prompt = (
        "Based on the following diagnosis summary, suggest appropriate medical tests "
        "that should be conducted. For each test, provide a brief explanation of why "
        "it is necessary.\n\n"
        f"Diagnosis summary: {diagnosis_summary}\n\n"
        + (f"Patient medical history: {patient_history}\n\n" if patient_history else "")
        + "Format your response as a numbered list. For each test give the test name "
        "on its own line, then a 'Reason:' line and a 'Priority:' line (high/medium/low)."
    )

    raw = llm_client.chat([{"role": "user", "content": prompt}], temperature=0.3)
    tests = parse_test_suggestions(raw)
    if not tests:
        logger.warning("test_suggestions_unparsed", response_length=len(raw))
    return raw, tests


def match_recommended_doctor(response: str, doctors: Sequence[Doctor]) -> DoctorRecommendation:
    """
    Find which candidate the model named.

    The doctor whose full name appears earliest in the response wins; the
    reason is the response text from that mention onwards.
    """
    lowered = (response or "").lower()
    best: Optional[tuple[int, Doctor]] = None

    for doctor in doctors:
        full_name = f"{doctor.first_name} {doctor.last_name}".lower()
        index = lowered.find(full_name)
        if index == -1:
            continue
        titled = lowered.rfind("dr.", 0, index)
        if titled != -1 and not lowered[titled + 3 : index].strip():
            index = titled
        if best is None or index < best[0]:
            best = (index, doctor)

    if best is None:
        return DoctorRecommendation(raw_response=response or "")

    index, doctor = best
    return DoctorRecommendation(
        doctor_id=doctor.id,
        reason=response[index:].strip(),
        raw_response=response,
    )


def recommend_doctor(
    diagnosis_summary: str,
    doctors: Sequence[Doctor],
    llm_client: LLMClient,
) -> DoctorRecommendation:
    if not doctors:
        return DoctorRecommendation()

    doctor_lines = "\n".join(
        f"- {d.display_name}, Specialization: {d.specialization}, "
        f"Experience: {d.experience_years if d.experience_years is not None else 'unknown'} years"
        for d in doctors
    )
    prompt = (
        "Based on the following diagnosis summary, recommend the most appropriate medical "
        "specialist from the provided list. Provide a brief explanation for your "
        "recommendation.\n\n"
        f"Diagnosis summary: {diagnosis_summary}\n\n"
        f"Available doctors:\n{doctor_lines}\n\n"
        "Recommend exactly one doctor, using their full name as listed, and explain why "
        "they are the best match for this case."
    )

    raw = llm_client.chat([{"role": "user", "content": prompt}], temperature=0.3)
    recommendation = match_recommended_doctor(raw, doctors)
    if recommendation.doctor_id is None:
        logger.info("doctor_recommendation_unmatched", candidates=len(doctors))
    return recommendation
