# app/llm/client.py
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Dict, Optional, Any

import openai
import structlog
from openai import OpenAI

from app.config import get_settings
from app.errors import AIGatewayError

logger = structlog.get_logger(__name__)


class LLMClient(ABC):
    """
    Simple abstraction so we can swap providers if needed.

    Implementations raise AIGatewayError for any upstream failure and do
    not retry on their own.
    """

    @abstractmethod
    def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.2,
        model: Optional[str] = None,
    ) -> str:
        """
        messages: list of {"role": "system"|"user"|"assistant", "content": "..."}
        returns: assistant content as a string
        """
        ...

    @abstractmethod
    def chat_with_images(
        self,
        text: str,
        image_urls: List[str],
        temperature: float = 0.2,
        model: Optional[str] = None,
    ) -> str:
        """
        Single user message with images attached; returns plain text.
        """
        ...


class OpenAILLMClient(LLMClient):
    """
    OpenAI implementation using the official Python client.
    """

    def __init__(self, model: Optional[str] = None, vision_model: Optional[str] = None):
        settings = get_settings()
        if not settings.openai_api_key:
            raise RuntimeError(
                "OPENAI_API_KEY is not set in environment (.env)."
            )

        # Retries are left to the caller; every call is bounded by the timeout.
        self.client = OpenAI(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            timeout=settings.llm_timeout_seconds,
            max_retries=0,
        )
        self.default_model = model or settings.llm_model
        self.vision_model = vision_model or settings.vision_model

    def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.2,
        model: Optional[str] = None,
    ) -> str:
        return self._complete(model or self.default_model, messages, temperature)

    def chat_with_images(
        self,
        text: str,
        image_urls: List[str],
        temperature: float = 0.2,
        model: Optional[str] = None,
    ) -> str:
        content: List[Dict[str, Any]] = [{"type": "text", "text": text}]
        content.extend(
            {"type": "image_url", "image_url": {"url": url}} for url in image_urls
        )
        messages = [{"role": "user", "content": content}]
        return self._complete(model or self.vision_model, messages, temperature)

    def _complete(self, model: str, messages: List[Dict[str, Any]], temperature: float) -> str:
        try:
            completion = self.client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=temperature,
            )
        except openai.APITimeoutError as exc:
            logger.warning("llm_timeout", model=model)
            raise AIGatewayError(
                "AI completion timed out", details={"model": model}
            ) from exc
        except openai.OpenAIError as exc:
            logger.warning("llm_request_failed", model=model, error=str(exc))
            raise AIGatewayError(
                "AI completion failed", details={"model": model, "error": str(exc)}
            ) from exc

        content = completion.choices[0].message.content
        if not content or not content.strip():
            raise AIGatewayError("AI completion returned no content", details={"model": model})
        return content
