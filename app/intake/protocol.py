# app/intake/protocol.py
from __future__ import annotations

import json
import re
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from app.errors import AIGatewayError
from app.intake.schema import IntakeReply
from app.intake.stages import TOPIC_INSTRUCTIONS, TOPIC_SEQUENCE


_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")


def build_intake_system_prompt(patient_history: Optional[str] = None) -> str:
    """
    System prompt sent on every intake turn together with the full history.
    """
    steps = "\n".join(
        f"{i}. {TOPIC_INSTRUCTIONS[topic]}"
        for i, topic in enumerate(TOPIC_SEQUENCE, start=1)
    )

    prompt = (
        "You are a medical intake assistant. Your goal is to understand the "
        "patient's condition by asking relevant, detailed questions about their "
        "symptoms, one question at a time.\n\n"
        "You are given the chat history. Based on it, ask only the next "
        "suitable single question.\n\n"
        "Cover these steps in order, one question per response:\n"
        f"{steps}\n"
        f"{len(TOPIC_SEQUENCE) + 1}. When all necessary information is gathered, "
        "the intake is complete.\n\n"
        "Respond with a JSON object with exactly two fields:\n"
        '- "message": a short acknowledgement of the patient\'s last answer '
        "followed by your next single question, or a closing remark.\n"
        '- "status": "completed" if this message is the closing remark, '
        'otherwise "ongoing".\n\n'
        "Examples:\n"
        '{"message": "Thank you. How would you rate the pain on a scale of 1 to 10?", '
        '"status": "ongoing"}\n'
        '{"message": "Thank you for sharing all the details. A doctor will review them soon.", '
        '"status": "completed"}\n\n'
        "Return ONLY the JSON object, with no additional commentary."
    )

    if patient_history:
        prompt += f"\n\nPatient medical history: {patient_history}"

    return prompt


def strip_code_fences(raw: str) -> str:
    """
    Remove markdown fences such as ```json ... ``` around a model reply.
    """
    text = raw.strip()
    if text.startswith("```"):
        text = _FENCE_RE.sub("", text).strip()
    return text


def parse_intake_reply(raw: str) -> IntakeReply:
    """
    Parse the structured intake reply.

    No question can be recovered from a broken reply, so any failure is
    raised as AIGatewayError instead of falling back to a default.
    """
    text = strip_code_fences(raw)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise AIGatewayError(
            "Intake reply is not valid JSON",
            details={"raw": raw[:500]},
        ) from exc

    if not isinstance(data, dict):
        raise AIGatewayError(
            "Intake reply must be a JSON object",
            details={"raw": raw[:500]},
        )

    try:
        return IntakeReply.model_validate(data)
    except PydanticValidationError as exc:
        raise AIGatewayError(
            "Intake reply does not match the expected shape",
            details={"raw": raw[:500], "errors": exc.errors(include_url=False, include_context=False)},
        ) from exc
