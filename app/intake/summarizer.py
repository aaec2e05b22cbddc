# app/intake/summarizer.py
from __future__ import annotations

from datetime import date
from typing import List, Optional, Sequence

from app.errors import AIGatewayError
from app.intake.transcript import build_transcript_text
from app.llm import LLMClient
from app.models import Patient, Turn


def _age_on(dob: date, today: date) -> int:
    age = today.year - dob.year
    if (today.month, today.day) < (dob.month, dob.day):
        age -= 1
    return age


def format_patient_history(patient: Optional[Patient], today: Optional[date] = None) -> str:
    """
    One-paragraph medical context for prompts, e.g.

      Age: 34 years. Gender: male. Medical conditions: asthma. Allergies: penicillin.
    """
    if patient is None:
        return ""

    today = today or date.today()
    parts: List[str] = []

    if patient.date_of_birth:
        parts.append(f"Age: {_age_on(patient.date_of_birth, today)} years.")
    if patient.gender:
        parts.append(f"Gender: {patient.gender}.")

    conditions = [
        entry.get("condition")
        for entry in (patient.medical_history or [])
        if isinstance(entry, dict) and entry.get("condition")
    ]
    if conditions:
        parts.append("Medical conditions: " + ", ".join(conditions) + ".")

    if patient.allergies:
        parts.append("Allergies: " + ", ".join(patient.allergies) + ".")

    if patient.height_cm:
        parts.append(f"Height: {patient.height_cm:g} cm.")
    if patient.weight_kg:
        parts.append(f"Weight: {patient.weight_kg:g} kg.")
    if patient.blood_type:
        parts.append(f"Blood type: {patient.blood_type}.")

    return " ".join(parts)


def generate_diagnosis_summary(
    turns: Sequence[Turn],
    patient_history: Optional[str],
    llm_client: LLMClient,
) -> str:
    """
    Summarise the intake transcript for the reviewing doctor.

    The summary is required for the rest of the completion step, so an
    empty answer is treated as a gateway failure.
    """
    transcript = build_transcript_text(turns)

    messages = [
        {
            "role": "system",
            "content": (
                "You are an AI clinical assistant preparing a case for doctor review. "
                "Do NOT invent details that are not clearly implied by the conversation."
            ),
        },
        {
            "role": "user",
            "content": (
                "Based on the following conversation, provide a detailed medical summary "
                "of the patient's condition, likely diagnosis, and recommended next steps.\n\n"
                f"Conversation:\n{transcript}\n\n"
                + (f"Patient medical history: {patient_history}\n\n" if patient_history else "")
                + "Please provide a structured summary with sections for: Primary Symptoms, "
                "Possible Diagnosis, Recommended Tests, and Suggested Specialist."
            ),
        },
    ]

    summary = llm_client.chat(messages, temperature=0.3).strip()
    if not summary:
        raise AIGatewayError("AI summary came back empty")
    return summary
