"""
Pairing — Short-lived codes that let a shared-bot sender claim an agent.

The owner generates a code for their agent and gives it to whoever should
talk to it. A sender on a shared channel types the code; the router resolves
it back to the agent and binds the sender.

Code format: "AF" + 4 characters from an alphabet without I and O.
Only one live code per agent; it is stored on the agent row.

Usage:
    from agentforge.agent.pairing import get_pairing_resolver

    resolver = get_pairing_resolver()
    code = await resolver.get_or_create(agent_id)     # "AF9K3M"
    resolver.extract("hey, my code is af-9k3m")        # "AF9K3M"
    agent = await resolver.resolve("AF9K3M")           # ResolvedAgent | None
"""

import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from sqlalchemy import select

from agentforge.config import settings
from agentforge.db import Agent, AgentStatus, async_session_maker

logger = logging.getLogger(__name__)

CODE_PREFIX = "AF"
CODE_ALPHABET = "0123456789ABCDEFGHJKLMNPQRSTUVWXYZ"
CODE_SUFFIX_LENGTH = 4

# "AF9K3M", "af-9k3m", "AF 9K3M", "/pair AF9K3M"
PAIRING_CODE_RE = re.compile(r"\b(?:/pair\s+)?(?:AF[\s-]?)([0-9A-HJ-NP-Z]{4})\b", re.IGNORECASE)


class PairingError(Exception):
    """Base class for pairing failures."""


class AgentNotFound(PairingError):
    pass


class InvalidAgentState(PairingError):
    pass


class PairingCodeExhausted(PairingError):
    """No collision-free code found within the attempt budget."""


@dataclass
class ResolvedAgent:
    """The agent a pairing code points to."""
    agent_id: str
    agent_name: str
    owner_id: str
    template_type: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "agent_name": self.agent_name,
            "owner_id": self.owner_id,
            "template_type": self.template_type,
        }


@dataclass
class PairingCode:
    code: str
    expires_at: datetime
    is_new: bool = True

    @property
    def is_expired(self) -> bool:
        return datetime.utcnow() > self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "expires_at": self.expires_at.isoformat(),
            "is_new": self.is_new,
        }


def _random_suffix() -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_SUFFIX_LENGTH))


def normalize_code(raw: str) -> str:
    """Upper-case and strip separators: "af-9k3m" → "AF9K3M"."""
    cleaned = re.sub(r"[\s-]", "", raw).upper()
    if not cleaned.startswith(CODE_PREFIX):
        cleaned = CODE_PREFIX + cleaned
    return cleaned


class PairingResolver:
    """Generates, extracts and resolves agent pairing codes."""

    def __init__(
        self,
        session_maker=None,
        *,
        ttl_hours: Optional[int] = None,
        max_attempts: Optional[int] = None,
        suffix_factory: Callable[[], str] = _random_suffix,
    ):
        self._session_maker = session_maker or async_session_maker
        self._ttl = timedelta(hours=ttl_hours if ttl_hours is not None else settings.pairing_code_ttl_hours)
        self._max_attempts = max_attempts or settings.pairing_code_max_attempts
        self._suffix_factory = suffix_factory

    # ── Generation ──

    async def generate_code(self, agent_id: str) -> PairingCode:
        """
        Issue a fresh code for an agent, replacing any previous one.

        Raises AgentNotFound, InvalidAgentState (agent not active) or
        PairingCodeExhausted.
        """
        async with self._session_maker() as db:
            agent = await db.get(Agent, agent_id)
            if agent is None:
                raise AgentNotFound(f"Agent {agent_id} not found")
            if agent.status != AgentStatus.ACTIVE.value:
                raise InvalidAgentState(f"Agent must be active to generate a pairing code (status: {agent.status})")

            now = datetime.utcnow()
            for _ in range(self._max_attempts):
                candidate = CODE_PREFIX + self._suffix_factory()
                collision = await db.execute(
                    select(Agent.id).where(
                        Agent.pairing_code == candidate,
                        Agent.id != agent_id,
                        Agent.pairing_code_expires_at >= now,
                    )
                )
                if collision.first() is None:
                    break
            else:
                logger.error(f"[PAIRING] Could not find a free code for agent {agent_id} "
                             f"after {self._max_attempts} attempts")
                raise PairingCodeExhausted("Failed to generate a unique pairing code")

            agent.pairing_code = candidate
            agent.pairing_code_expires_at = now + self._ttl
            await db.commit()

            logger.info(f"[PAIRING] Generated code {candidate} for agent {agent_id}")
            return PairingCode(code=candidate, expires_at=agent.pairing_code_expires_at)

    async def get_or_create(self, agent_id: str) -> PairingCode:
        """Return the agent's live code, generating one if missing or expired."""
        async with self._session_maker() as db:
            agent = await db.get(Agent, agent_id)
            if agent is None:
                raise AgentNotFound(f"Agent {agent_id} not found")
            if agent.status != AgentStatus.ACTIVE.value:
                raise InvalidAgentState(f"Agent must be active to get a pairing code (status: {agent.status})")
            if (
                agent.pairing_code
                and agent.pairing_code_expires_at
                and agent.pairing_code_expires_at > datetime.utcnow()
            ):
                return PairingCode(code=agent.pairing_code, expires_at=agent.pairing_code_expires_at, is_new=False)

        return await self.generate_code(agent_id)

    async def revoke(self, agent_id: str) -> None:
        async with self._session_maker() as db:
            agent = await db.get(Agent, agent_id)
            if agent is None:
                raise AgentNotFound(f"Agent {agent_id} not found")
            agent.pairing_code = None
            agent.pairing_code_expires_at = None
            await db.commit()
        logger.info(f"[PAIRING] Revoked code for agent {agent_id}")

    # ── Extraction & resolution ──

    @staticmethod
    def extract(text: str) -> Optional[str]:
        """Find a pairing code anywhere in free text, normalized to "AFXXXX"."""
        if not text:
            return None
        match = PAIRING_CODE_RE.search(text)
        if not match:
            return None
        return CODE_PREFIX + match.group(1).upper()

    async def resolve(self, code: str) -> Optional[ResolvedAgent]:
        """
        Map a code to its agent.

        Returns None when the code is unknown, expired, or the agent is not active.
        """
        normalized = normalize_code(code)
        async with self._session_maker() as db:
            result = await db.execute(
                select(Agent).where(
                    Agent.pairing_code == normalized,
                    Agent.pairing_code_expires_at >= datetime.utcnow(),
                    Agent.status == AgentStatus.ACTIVE.value,
                )
            )
            agent = result.scalars().first()

        if agent is None:
            logger.info(f"[PAIRING] Code {normalized} did not resolve")
            return None

        return ResolvedAgent(
            agent_id=agent.id,
            agent_name=agent.name,
            owner_id=agent.owner_id,
            template_type=agent.template_type,
        )


# ── Singleton ──
_resolver: Optional[PairingResolver] = None


def get_pairing_resolver() -> PairingResolver:
    """Get the global pairing resolver."""
    global _resolver
    if _resolver is None:
        _resolver = PairingResolver()
    return _resolver
