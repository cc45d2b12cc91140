"""
Model Failover — Ordered fallback across models and providers.

Two layers:
1. Same provider, other models. For OpenRouter the requested model is tried
   first, then a fixed list of free models (deduplicated, order kept).
   Only retryable errors (429, 400, 502, 503, 504, timeouts) advance the chain.
2. Other provider. If the whole first layer ends in a gateway-class error
   (502/503/504/timeout), one attempt is made with the owner's first other
   configured provider and its default model.

Usage:
    from agentforge.agent.model_failover import chat_with_fallback

    result = await chat_with_fallback(messages, "openrouter", model, api_key,
                                      secondary=resolve_other_provider)
    result.content, result.used_model, result.attempt_count
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

from openai import APIConnectionError, APITimeoutError

from agentforge.config import settings
from agentforge.services.llm_service import ChatResponse, get_default_model, get_llm_service

logger = logging.getLogger(__name__)

T = TypeVar("T")

OPENROUTER_FREE_MODELS = [
    "meta-llama/llama-3.3-70b-instruct:free",
    "meta-llama/llama-3.2-3b-instruct:free",
    "mistralai/mistral-small-3.1-24b-instruct:free",
    "qwen/qwen3-4b:free",
    "deepseek/deepseek-r1-0528:free",
    "nousresearch/hermes-3-llama-3.1-405b:free",
]

RETRYABLE_STATUS = {400, 429, 502, 503, 504}
GATEWAY_STATUS = {502, 503, 504}


class ErrorClass(str, Enum):
    RETRYABLE = "retryable"
    TERMINAL = "terminal"


class ProviderError(Exception):
    """LLM call failure with an optional HTTP status."""

    def __init__(self, message: str, *, status_code: Optional[int] = None,
                 provider: Optional[str] = None, model: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.provider = provider
        self.model = model


class MissingApiKeyError(ProviderError):
    """The owner has no key for any usable provider."""


class AllCandidatesFailed(ProviderError):
    def __init__(self, last_error: Exception, attempts: List["AttemptRecord"]):
        super().__init__(
            f"All {len(attempts)} model attempts failed: {last_error}",
            status_code=status_of(last_error),
        )
        self.last_error = last_error
        self.attempts = attempts


def status_of(error: BaseException) -> Optional[int]:
    status = getattr(error, "status_code", None)
    return status if isinstance(status, int) else None


def is_timeout(error: BaseException) -> bool:
    return isinstance(error, (asyncio.TimeoutError, TimeoutError, APITimeoutError))


def classify(error: BaseException) -> ErrorClass:
    """Retryable vs terminal. Missing keys and auth failures are terminal."""
    if isinstance(error, MissingApiKeyError):
        return ErrorClass.TERMINAL
    if isinstance(error, AllCandidatesFailed):
        return classify(error.last_error)
    if is_timeout(error) or isinstance(error, APIConnectionError):
        return ErrorClass.RETRYABLE
    if status_of(error) in RETRYABLE_STATUS:
        return ErrorClass.RETRYABLE
    return ErrorClass.TERMINAL


def is_gateway_error(error: BaseException) -> bool:
    if isinstance(error, AllCandidatesFailed):
        return is_gateway_error(error.last_error)
    return is_timeout(error) or status_of(error) in GATEWAY_STATUS


@dataclass
class Candidate:
    provider: str
    model: str
    api_key: str = field(repr=False, default="")

    @property
    def key(self) -> str:
        return f"{self.provider}/{self.model}"


@dataclass
class AttemptRecord:
    provider: str
    model: str
    ok: bool
    latency_ms: float = 0.0
    error: Optional[str] = None
    status_code: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "model": self.model,
            "ok": self.ok,
            "latency_ms": round(self.latency_ms, 1),
            "error": self.error,
            "status_code": self.status_code,
        }


@dataclass
class AttemptOutcome:
    value: Any
    candidate: Any
    attempts: List[AttemptRecord]


async def attempt_in_order(
    candidates: Sequence[T],
    call: Callable[[T], Awaitable[Any]],
    describe: Callable[[T], Candidate],
    classify_error: Callable[[BaseException], ErrorClass] = classify,
) -> AttemptOutcome:
    """
    Try candidates in order until one succeeds.

    A terminal error stops immediately and is re-raised. When every candidate
    fails retryably, AllCandidatesFailed carries the last error.
    """
    attempts: List[AttemptRecord] = []
    last_error: Optional[Exception] = None

    for candidate in candidates:
        info = describe(candidate)
        start = time.monotonic()
        try:
            value = await call(candidate)
        except Exception as e:
            latency = (time.monotonic() - start) * 1000
            attempts.append(AttemptRecord(info.provider, info.model, False, latency,
                                          str(e)[:200], status_of(e)))
            last_error = e
            if classify_error(e) == ErrorClass.TERMINAL:
                logger.warning(f"[FAILOVER] {info.key} terminal error: {e}")
                raise
            logger.warning(f"[FAILOVER] {info.key} failed ({status_of(e) or type(e).__name__}), trying next")
            continue

        attempts.append(AttemptRecord(info.provider, info.model, True, (time.monotonic() - start) * 1000))
        return AttemptOutcome(value=value, candidate=candidate, attempts=attempts)

    if last_error is None:
        raise ProviderError("No candidates to try")
    raise AllCandidatesFailed(last_error, attempts)


def build_model_chain(provider: str, model: str) -> List[str]:
    """Requested model first; a free OpenRouter model adds the free fallbacks, deduplicated."""
    if provider != "openrouter" or not model.endswith(":free"):
        return [model]
    chain = [model]
    for m in OPENROUTER_FREE_MODELS:
        if m not in chain:
            chain.append(m)
    return chain


@dataclass
class FallbackResult:
    content: str
    used_model: str
    used_provider: str
    requested_model: str
    requested_provider: str
    attempts: List[AttemptRecord] = field(default_factory=list)
    usage: Dict[str, int] = field(default_factory=dict)

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    @property
    def fallback_used(self) -> bool:
        return self.used_model != self.requested_model or self.used_provider != self.requested_provider


ChatFn = Callable[[str, str, str, List[Dict[str, str]]], Awaitable[ChatResponse]]
SecondaryResolver = Callable[[str], Awaitable[Optional[Candidate]]]


async def chat_with_fallback(
    messages: List[Dict[str, str]],
    provider: str,
    model: str,
    api_key: str,
    *,
    secondary: Optional[SecondaryResolver] = None,
    chat_fn: Optional[ChatFn] = None,
    timeout: Optional[float] = None,
) -> FallbackResult:
    """
    Run one chat turn through the fallback chain.

    `secondary(exclude_provider)` is awaited only when a cross-provider retry
    is needed; it returns a Candidate (default model) or None.
    """
    chat_fn = chat_fn or get_llm_service().chat
    timeout = timeout or settings.llm_timeout_seconds

    async def call(c: Candidate) -> ChatResponse:
        return await asyncio.wait_for(chat_fn(c.provider, c.api_key, c.model, messages), timeout=timeout)

    primary = [Candidate(provider, m, api_key) for m in build_model_chain(provider, model)]
    try:
        outcome = await attempt_in_order(primary, call, describe=lambda c: c)
    except AllCandidatesFailed as chain_error:
        if secondary is None or not is_gateway_error(chain_error):
            raise
        other = await secondary(provider)
        if other is None:
            raise
        logger.warning(f"[FAILOVER] {provider} unavailable; falling back to {other.key}")
        try:
            outcome = await attempt_in_order([other], call, describe=lambda c: c)
        except AllCandidatesFailed as e:
            raise AllCandidatesFailed(e.last_error, chain_error.attempts + e.attempts) from e
        outcome.attempts = chain_error.attempts + outcome.attempts

    response: ChatResponse = outcome.value
    used: Candidate = outcome.candidate
    if used.key != f"{provider}/{model}":
        logger.info(f"[FAILOVER] Used {used.key} instead of {provider}/{model}")
    return FallbackResult(
        content=response.content,
        used_model=used.model,
        used_provider=used.provider,
        requested_model=model,
        requested_provider=provider,
        attempts=outcome.attempts,
        usage=response.usage,
    )


def default_candidate(provider: str, api_key: str) -> Candidate:
    return Candidate(provider=provider, model=get_default_model(provider), api_key=api_key)
