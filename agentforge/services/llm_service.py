"""
LLM Service - Chat completions against OpenAI-compatible providers

Every supported provider exposes the OpenAI chat-completions API, so a single
AsyncOpenAI client per (provider, key) covers them all. Retries are disabled
on the client; the failover layer decides what to try next.

Provides:
- Provider registry (base URL + default model)
- One-shot chat completion with token usage
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from openai import AsyncOpenAI

from agentforge.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderInfo:
    name: str
    base_url: str
    default_model: str
    extra_headers: Dict[str, str] = field(default_factory=dict)


PROVIDERS: Dict[str, ProviderInfo] = {
    "openrouter": ProviderInfo(
        "openrouter",
        "https://openrouter.ai/api/v1",
        "meta-llama/llama-3.3-70b-instruct:free",
        {"HTTP-Referer": settings.public_app_url, "X-Title": "AgentForge"},
    ),
    "openai": ProviderInfo("openai", "https://api.openai.com/v1", "gpt-4o-mini"),
    "groq": ProviderInfo("groq", "https://api.groq.com/openai/v1", "llama-3.3-70b-versatile"),
    "grok": ProviderInfo("grok", "https://api.x.ai/v1", "grok-3-mini-fast"),
    "gemini": ProviderInfo("gemini", "https://generativelanguage.googleapis.com/v1beta/openai", "gemini-2.0-flash"),
    "deepseek": ProviderInfo("deepseek", "https://api.deepseek.com", "deepseek-chat"),
    "zai": ProviderInfo("zai", "https://open.bigmodel.cn/api/paas/v4", "glm-4-flash"),
}


class UnknownProviderError(ValueError):
    pass


def get_default_model(provider: str) -> str:
    info = PROVIDERS.get(provider)
    if info is None:
        raise UnknownProviderError(f"Unknown LLM provider: {provider}")
    return info.default_model


@dataclass
class ChatResponse:
    """Response from a chat completion"""
    content: str
    model: str
    provider: str
    usage: Dict[str, int] = field(default_factory=dict)


class LLMService:
    """Thin async wrapper around AsyncOpenAI for every provider."""

    def __init__(self):
        self._clients: Dict[Tuple[str, str], AsyncOpenAI] = {}

    def _client(self, provider: str, api_key: str) -> AsyncOpenAI:
        info = PROVIDERS.get(provider)
        if info is None:
            raise UnknownProviderError(f"Unknown LLM provider: {provider}")
        key = (provider, api_key)
        if key not in self._clients:
            self._clients[key] = AsyncOpenAI(
                api_key=api_key,
                base_url=info.base_url,
                timeout=settings.llm_timeout_seconds,
                max_retries=0,
                default_headers=info.extra_headers or None,
            )
        return self._clients[key]

    async def chat(
        self,
        provider: str,
        api_key: str,
        model: str,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs: Any,
    ) -> ChatResponse:
        """
        Generate a chat completion.

        Raises the openai SDK's exceptions unchanged (APIStatusError carries
        `status_code`; APITimeoutError / APIConnectionError for transport faults).
        """
        response = await self._client(provider, api_key).chat.completions.create(
            model=model,
            messages=messages,
            temperature=settings.llm_temperature if temperature is None else temperature,
            max_tokens=max_tokens or settings.llm_max_tokens,
            **kwargs,
        )

        choice = response.choices[0] if response.choices else None
        usage = {}
        if response.usage:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }
        return ChatResponse(
            content=(choice.message.content if choice else None) or "",
            model=response.model or model,
            provider=provider,
            usage=usage,
        )


# Singleton instance
_llm_service: Optional[LLMService] = None


def get_llm_service() -> LLMService:
    """Get the LLM service singleton."""
    global _llm_service
    if _llm_service is None:
        _llm_service = LLMService()
    return _llm_service
