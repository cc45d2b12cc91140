"""
Tests for the OpenAI-compatible provider client.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from agentforge.services.llm_service import LLMService, UnknownProviderError, get_default_model


def completion(content="hello", model="llama-3.3-70b-versatile"):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        model=model,
        usage=SimpleNamespace(prompt_tokens=12, completion_tokens=3, total_tokens=15),
    )


def test_default_models():
    assert get_default_model("groq") == "llama-3.3-70b-versatile"
    assert get_default_model("openrouter").endswith(":free")
    with pytest.raises(UnknownProviderError):
        get_default_model("nope")


@pytest.mark.asyncio
async def test_chat_uses_provider_base_url():
    with patch("agentforge.services.llm_service.AsyncOpenAI") as client_cls:
        create = client_cls.return_value.chat.completions.create = AsyncMock(return_value=completion())
        service = LLMService()

        response = await service.chat("groq", "gsk-test", "llama-3.3-70b-versatile",
                                      [{"role": "user", "content": "hi"}])
        await service.chat("groq", "gsk-test", "llama-3.3-70b-versatile", [{"role": "user", "content": "again"}])

    assert response.content == "hello"
    assert response.provider == "groq"
    assert response.usage["total_tokens"] == 15
    # One client per (provider, key)
    client_cls.assert_called_once()
    assert client_cls.call_args.kwargs["base_url"] == "https://api.groq.com/openai/v1"
    assert client_cls.call_args.kwargs["max_retries"] == 0
    assert create.await_count == 2


@pytest.mark.asyncio
async def test_chat_empty_choices():
    with patch("agentforge.services.llm_service.AsyncOpenAI") as client_cls:
        client_cls.return_value.chat.completions.create = AsyncMock(
            return_value=SimpleNamespace(choices=[], model=None, usage=None)
        )
        response = await LLMService().chat("openai", "sk-test", "gpt-4o-mini", [])

    assert response.content == ""
    assert response.model == "gpt-4o-mini"
    assert response.usage == {}


@pytest.mark.asyncio
async def test_chat_unknown_provider():
    with pytest.raises(UnknownProviderError):
        await LLMService().chat("nope", "key", "model", [])
