"""
API key lookup for agent owners.

Keys live on the owner's user row, one column per provider. In development
the process environment may supply a key when the owner has none.
"""

import logging
from typing import Iterable, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from agentforge.agent.model_failover import MissingApiKeyError
from agentforge.config import settings
from agentforge.db import User

logger = logging.getLogger(__name__)

# Cross-provider fallback order
FALLBACK_PROVIDER_ORDER = ("groq", "openrouter", "zai", "openai", "gemini", "deepseek", "grok")

PROVIDER_KEY_FIELDS = {
    "openrouter": "openrouter_api_key",
    "openai": "openai_api_key",
    "groq": "groq_api_key",
    "grok": "grok_api_key",
    "gemini": "gemini_api_key",
    "deepseek": "deepseek_api_key",
    "zai": "zai_api_key",
}


def _key_for(user: Optional[User], provider: str) -> Optional[str]:
    field_name = PROVIDER_KEY_FIELDS.get(provider)
    if field_name is None:
        return None
    key = getattr(user, field_name, None) if user is not None else None
    if not key and settings.allow_env_api_keys:
        key = getattr(settings, field_name, None)
    return key or None


async def get_user_api_key(db: AsyncSession, owner_id: str, provider: str) -> str:
    """The owner's key for a provider. Raises MissingApiKeyError."""
    user = await db.get(User, owner_id)
    key = _key_for(user, provider)
    if not key:
        raise MissingApiKeyError(f"No API key configured for {provider}", provider=provider)
    return key


async def get_first_available_provider_and_key(
    db: AsyncSession,
    owner_id: str,
    exclude: Iterable[str] = (),
) -> Optional[Tuple[str, str]]:
    """First (provider, key) in fallback order the owner can use, skipping `exclude`."""
    excluded = set(exclude)
    user = await db.get(User, owner_id)
    for provider in FALLBACK_PROVIDER_ORDER:
        if provider in excluded:
            continue
        key = _key_for(user, provider)
        if key:
            return provider, key
    return None
