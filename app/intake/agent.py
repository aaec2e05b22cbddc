# app/intake/agent.py
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

import structlog

from app.intake.protocol import build_intake_system_prompt, parse_intake_reply
from app.intake.state import IntakeStatus
from app.intake.transcript import to_chat_messages
from app.llm import LLMClient
from app.models import Turn

logger = structlog.get_logger(__name__)


@dataclass
class AgentReply:
    message: str
    # None when the reply came from the vision path, which carries no status.
    intake_status: Optional[IntakeStatus] = None


class IntakeAgent:
    """
    IntakeAgent produces the assistant side of the symptom intake dialogue.

    Text turns re-send the full intake protocol and transcript on every
    call and expect a structured {"message", "status"} reply. Turns that
    carry images go through the vision path, which returns free text only.
    """

    def __init__(self, llm_client: LLMClient, temperature: float = 0.0):
        self.llm_client = llm_client
        self.temperature = temperature

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def respond(
        self,
        turns: Sequence[Turn],
        patient_history: Optional[str] = None,
    ) -> AgentReply:
        """
        Ask the next intake question given the transcript so far.
        """
        messages = [
            {"role": "system", "content": build_intake_system_prompt(patient_history)},
            *to_chat_messages(turns),
        ]
        raw = self.llm_client.chat(messages, temperature=self.temperature)
        reply = parse_intake_reply(raw)
        logger.debug(
            "intake_reply_parsed",
            status=reply.status.value,
            turn_count=len(turns),
        )
        return AgentReply(message=reply.message, intake_status=reply.status)

    def respond_to_images(self, message: str, image_urls: List[str]) -> AgentReply:
        """
        Vision path: the patient's text plus their images, plain text back.
        """
        raw = self.llm_client.chat_with_images(
            message, image_urls, temperature=self.temperature
        )
        return AgentReply(message=raw.strip(), intake_status=None)
