from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import openai
import pytest

from app.config import get_settings
from app.errors import AIGatewayError
from app.llm import OpenAILLMClient


def _completion(content):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))]
    )


@pytest.fixture
def configured(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("LLM_MODEL", "text-model")
    monkeypatch.setenv("VISION_MODEL", "vision-model")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def client(configured):
    llm = OpenAILLMClient()
    llm.client = MagicMock()
    return llm


def test_missing_api_key_fails_fast(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "")
    get_settings.cache_clear()
    try:
        with pytest.raises(RuntimeError):
            OpenAILLMClient()
    finally:
        get_settings.cache_clear()


def test_chat_returns_content(client):
    client.client.chat.completions.create.return_value = _completion("Hello")

    assert client.chat([{"role": "user", "content": "hi"}], temperature=0.0) == "Hello"
    kwargs = client.client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "text-model"
    assert kwargs["temperature"] == 0.0


def test_chat_with_images_builds_content_parts(client):
    client.client.chat.completions.create.return_value = _completion("Looks like a rash")

    client.chat_with_images("What is this?", ["https://x/a.jpg", "https://x/b.jpg"])

    kwargs = client.client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "vision-model"
    [message] = kwargs["messages"]
    assert message["content"] == [
        {"type": "text", "text": "What is this?"},
        {"type": "image_url", "image_url": {"url": "https://x/a.jpg"}},
        {"type": "image_url", "image_url": {"url": "https://x/b.jpg"}},
    ]


def test_timeout_becomes_gateway_error(client):
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    client.client.chat.completions.create.side_effect = openai.APITimeoutError(request=request)

    with pytest.raises(AIGatewayError) as exc_info:
        client.chat([{"role": "user", "content": "hi"}])
    assert exc_info.value.message == "AI completion timed out"
    assert exc_info.value.retryable is True


def test_upstream_error_becomes_gateway_error(client):
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    client.client.chat.completions.create.side_effect = openai.APIConnectionError(request=request)

    with pytest.raises(AIGatewayError, match="AI completion failed"):
        client.chat([{"role": "user", "content": "hi"}])


@pytest.mark.parametrize("content", [None, "", "   "])
def test_empty_content_is_gateway_error(client, content):
    client.client.chat.completions.create.return_value = _completion(content)

    with pytest.raises(AIGatewayError):
        client.chat([{"role": "user", "content": "hi"}])
