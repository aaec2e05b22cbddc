# app/intake/transcript.py
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional, Sequence

from app.intake.state import AttachmentKind, TurnRole
from app.models import Turn, utcnow


_SPEAKER_LABELS = {
    TurnRole.PATIENT.value: "Patient",
    TurnRole.ASSISTANT.value: "AI Assistant",
    TurnRole.CLINICIAN.value: "Clinician",
}


def next_timestamp(turns: Sequence[Turn], now: Optional[datetime] = None) -> datetime:
    """
    Timestamp for a new turn, never earlier than the last one recorded.
    """
    now = now or utcnow()
    if turns and turns[-1].ts and turns[-1].ts > now:
        return turns[-1].ts
    return now


def build_turn(
    turns: Sequence[Turn],
    role: TurnRole | str,
    message: str,
    attachments: Optional[List[dict]] = None,
) -> Turn:
    """
    Create the next Turn for a transcript. The caller appends it.
    """
    return Turn(
        position=len(turns),
        role=TurnRole(role).value,
        message=message,
        ts=next_timestamp(turns),
        attachments=list(attachments or []),
    )


def build_transcript_text(turns: Sequence[Turn]) -> str:
    """
    Build a plain text transcript like:

      AI Assistant: ...
      Patient: ...

    for use in summary prompts.
    """
    lines: List[str] = []
    for turn in turns:
        label = _SPEAKER_LABELS.get(turn.role, "Patient")
        lines.append(f"{label}: {turn.message}")
    return "\n".join(lines)


def to_chat_messages(turns: Sequence[Turn]) -> List[Dict[str, str]]:
    """
    Map a transcript onto chat-completion roles.

    Clinician notes are not the model's own words, so they go in as user
    content with a label.
    """
    messages: List[Dict[str, str]] = []
    for turn in turns:
        if turn.role == TurnRole.ASSISTANT.value:
            messages.append({"role": "assistant", "content": turn.message})
        elif turn.role == TurnRole.CLINICIAN.value:
            messages.append({"role": "user", "content": f"[Clinician note] {turn.message}"})
        else:
            messages.append({"role": "user", "content": turn.message})
    return messages


def image_urls(attachments: Optional[List[dict]]) -> List[str]:
    return [
        a["url"]
        for a in attachments or []
        if a.get("kind") == AttachmentKind.IMAGE.value and a.get("url")
    ]
