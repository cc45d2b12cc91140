"""
Channel Router — Decide which agent an inbound channel message belongs to.

Resolution order for a (channel, sender):
1. Dedicated bot: the bot itself identifies the agent
2. Existing active binding (handles `/pair NEWCODE` and `/unpair` too)
3. Pairing code found in the message text → new binding
4. Unknown sender → welcome reply, nothing persisted

Sender ids are channel-prefixed ("tg:12345", "wa:12345") so the same raw id on
two networks never collides. At most one binding per (channel, sender) is
active; pairing to a new agent supersedes the old binding.

Usage:
    from agentforge.agent.channel_router import get_channel_router, SenderContext

    router = get_channel_router()
    result = await router.route(SenderContext("telegram", "12345", "AF9K3M"))
    if result.system_reply:
        ...  # reply directly, no LLM turn
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from agentforge.agent.pairing import PairingResolver, get_pairing_resolver
from agentforge.db import (
    Agent, AgentStatus, BindingType, ChannelBinding, SessionMessage, async_session_maker,
)
from agentforge.services.activity_service import record_activity

logger = logging.getLogger(__name__)

SENDER_PREFIXES = {
    "telegram": "tg",
    "whatsapp": "wa",
    "discord": "dc",
    "imessage": "im",
    "web": "web",
}

UNPAIR_COMMANDS = {"/unpair", "/disconnect"}
_RE_PAIR_RE = re.compile(r"^/pair\s+(.+)$", re.IGNORECASE)

WELCOME_REPLY = "\n".join([
    "👋 Welcome to **AgentForge**!",
    "",
    "To connect to an AI agent, send your **pairing code** (e.g. `AF7X2K`).",
    "",
    "You can get a pairing code from your agent's dashboard.",
    "",
    "Commands:",
    "• Send a code to pair → `AF7X2K`",
    "• Switch agent → `/pair NEWCODE`",
    "• Disconnect → `/unpair`",
])

INVALID_CODE_REPLY = (
    "❌ Invalid or expired pairing code: `{code}`\n\n"
    "Please check the code on your agent dashboard and try again. Codes expire after 24 hours."
)

PAIRED_REPLY = "\n".join([
    "✅ **Paired with {agent_name}!**",
    "",
    "You're now connected to your {template} agent.",
    "Send any message to start chatting.",
    "",
    "• Switch agent → `/pair NEWCODE`",
    "• Disconnect → `/unpair`",
])

UNPAIRED_REPLY = "🔓 Disconnected from **{agent_name}**. Send a new pairing code to connect to another agent."


class RouteType(str, Enum):
    DEDICATED = "dedicated"
    EXISTING = "existing"
    PAIRED_NEW = "paired_new"
    UNPAIRED = "unpaired"
    UNKNOWN_SENDER = "unknown_sender"


def normalize_sender_id(channel_type: str, raw_id: str) -> str:
    """Prefix a raw sender id with its channel: ("telegram", "500") → "tg:500"."""
    prefix = SENDER_PREFIXES.get(channel_type, channel_type)
    raw_id = str(raw_id).strip()
    if raw_id.startswith(f"{prefix}:"):
        return raw_id
    return f"{prefix}:{raw_id}"


@dataclass
class SenderContext:
    """Who sent what, on which channel."""
    channel_type: str
    sender_id: str
    message_text: str
    chat_id: Optional[str] = None
    sender_name: Optional[str] = None
    dedicated_bot_id: Optional[str] = None  # agent id when the bot is per-agent

    def __post_init__(self):
        self.sender_id = normalize_sender_id(self.channel_type, self.sender_id)
        if self.chat_id is None:
            self.chat_id = self.sender_id


@dataclass
class RouteResult:
    type: RouteType
    agent_id: Optional[str] = None
    agent_name: Optional[str] = None
    binding_id: Optional[str] = None
    system_reply: Optional[str] = None

    @property
    def should_process(self) -> bool:
        """True when the message should go through the LLM pipeline."""
        return self.agent_id is not None and self.system_reply is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "agent_id": self.agent_id,
            "agent_name": self.agent_name,
            "binding_id": self.binding_id,
            "system_reply": self.system_reply,
        }


def extract_re_pair_command(text: str, resolver: PairingResolver) -> Optional[str]:
    """`/pair AF7X2K` → "AF7X2K"."""
    match = _RE_PAIR_RE.match((text or "").strip())
    if not match:
        return None
    return resolver.extract(match.group(1))


def is_unpair_command(text: str) -> bool:
    return (text or "").strip().lower() in UNPAIR_COMMANDS


class ChannelRouter:
    """Routes inbound channel messages to agents via bindings and pairing codes."""

    def __init__(self, session_maker=None, pairing: Optional[PairingResolver] = None):
        self._session_maker = session_maker or async_session_maker
        self._pairing = pairing or get_pairing_resolver()

    async def route(self, ctx: SenderContext) -> RouteResult:
        # 1. Dedicated bot
        if ctx.dedicated_bot_id:
            result = await self._route_dedicated(ctx)
            if result is not None:
                return result

        # 2. Existing active binding
        async with self._session_maker() as db:
            row = (await db.execute(
                select(ChannelBinding, Agent)
                .join(Agent, Agent.id == ChannelBinding.agent_id)
                .where(
                    ChannelBinding.channel_type == ctx.channel_type,
                    ChannelBinding.sender_identifier == ctx.sender_id,
                    ChannelBinding.is_active.is_(True),
                )
            )).first()

            if row is not None and row.Agent.status == AgentStatus.ACTIVE.value:
                binding, agent = row.ChannelBinding, row.Agent
                binding.last_message_at = datetime.utcnow()

                re_pair_code = extract_re_pair_command(ctx.message_text, self._pairing)
                if re_pair_code is None and is_unpair_command(ctx.message_text):
                    binding.is_active = False
                    await db.commit()
                    logger.info(f"[ROUTER] {ctx.sender_id} disconnected from agent {agent.id}")
                    return RouteResult(
                        type=RouteType.UNPAIRED,
                        system_reply=UNPAIRED_REPLY.format(agent_name=agent.name),
                    )

                await db.commit()
                if re_pair_code:
                    return await self._handle_pairing(re_pair_code, ctx)

                return RouteResult(
                    type=RouteType.EXISTING,
                    agent_id=agent.id,
                    agent_name=agent.name,
                    binding_id=binding.id,
                )

        # 3. Pairing code in the message
        code = self._pairing.extract(ctx.message_text)
        if code:
            return await self._handle_pairing(code, ctx)

        # 4. Unknown sender
        logger.info(f"[ROUTER] Unknown sender {ctx.sender_id} on {ctx.channel_type}")
        return RouteResult(type=RouteType.UNKNOWN_SENDER, system_reply=WELCOME_REPLY)

    async def _route_dedicated(self, ctx: SenderContext) -> Optional[RouteResult]:
        async with self._session_maker() as db:
            agent = await db.get(Agent, ctx.dedicated_bot_id)
            if agent is None or agent.status != AgentStatus.ACTIVE.value:
                return None

            existing = (await db.execute(
                select(ChannelBinding).where(
                    ChannelBinding.agent_id == agent.id,
                    ChannelBinding.channel_type == ctx.channel_type,
                    ChannelBinding.sender_identifier == ctx.sender_id,
                    ChannelBinding.is_active.is_(True),
                )
            )).scalars().first()

            if existing is not None:
                existing.last_message_at = datetime.utcnow()
                binding_id = existing.id
            else:
                binding = await self._rebind(db, agent.id, ctx, BindingType.DEDICATED)
                binding_id = binding.id
            await db.commit()

        return RouteResult(
            type=RouteType.DEDICATED,
            agent_id=agent.id,
            agent_name=agent.name,
            binding_id=binding_id,
        )

    async def _handle_pairing(self, code: str, ctx: SenderContext) -> RouteResult:
        resolved = await self._pairing.resolve(code)
        if resolved is None:
            return RouteResult(
                type=RouteType.UNKNOWN_SENDER,
                system_reply=INVALID_CODE_REPLY.format(code=code),
            )

        binding_id = None
        for attempt in range(2):
            try:
                async with self._session_maker() as db:
                    binding = await self._rebind(db, resolved.agent_id, ctx, BindingType.PAIRING, pairing_code=code)
                    record_activity(
                        db,
                        resolved.agent_id,
                        f"🔗 Paired via {ctx.channel_type}: {ctx.sender_name or ctx.sender_id} (code: {code})",
                        metadata={
                            "channel": ctx.channel_type,
                            "sender_id": ctx.sender_id,
                            "sender_name": ctx.sender_name,
                            "binding_id": binding.id,
                        },
                    )
                    await db.commit()
                    binding_id = binding.id
                break
            except IntegrityError:
                # A concurrent pairing for the same sender won the unique index; retry once
                if attempt == 1:
                    raise
                logger.warning(f"[ROUTER] Concurrent pairing for {ctx.sender_id}, retrying")

        logger.info(f"[ROUTER] Paired {ctx.sender_id} → agent {resolved.agent_id} via {code}")
        return RouteResult(
            type=RouteType.PAIRED_NEW,
            agent_id=resolved.agent_id,
            agent_name=resolved.agent_name,
            binding_id=binding_id,
            system_reply=PAIRED_REPLY.format(agent_name=resolved.agent_name, template=resolved.template_type),
        )

    async def _rebind(
        self,
        db: AsyncSession,
        agent_id: str,
        ctx: SenderContext,
        binding_type: BindingType,
        pairing_code: Optional[str] = None,
    ) -> ChannelBinding:
        """Deactivate every active binding for this sender, then insert the new one."""
        await db.execute(
            update(ChannelBinding)
            .where(
                ChannelBinding.channel_type == ctx.channel_type,
                ChannelBinding.sender_identifier == ctx.sender_id,
                ChannelBinding.is_active.is_(True),
            )
            .values(is_active=False)
        )
        binding = ChannelBinding(
            agent_id=agent_id,
            channel_type=ctx.channel_type,
            sender_identifier=ctx.sender_id,
            sender_name=ctx.sender_name,
            chat_identifier=ctx.chat_id,
            pairing_code=pairing_code,
            binding_type=binding_type.value,
            is_active=True,
            last_message_at=datetime.utcnow(),
        )
        db.add(binding)
        await db.flush()
        return binding

    # ── Admin ──

    async def deactivate_binding(self, binding_id: str, agent_id: Optional[str] = None) -> bool:
        """Soft-disable a binding. Returns False if nothing matched."""
        async with self._session_maker() as db:
            stmt = update(ChannelBinding).where(
                ChannelBinding.id == binding_id,
                ChannelBinding.is_active.is_(True),
            )
            if agent_id:
                stmt = stmt.where(ChannelBinding.agent_id == agent_id)
            result = await db.execute(stmt.values(is_active=False))
            await db.commit()
        return (result.rowcount or 0) > 0

    async def list_agent_bindings(self, agent_id: str) -> List[Dict[str, Any]]:
        """Active bindings for an agent, most recently used first."""
        async with self._session_maker() as db:
            message_count = (
                select(func.count(SessionMessage.id))
                .where(SessionMessage.binding_id == ChannelBinding.id)
                .correlate(ChannelBinding)
                .scalar_subquery()
            )
            result = await db.execute(
                select(ChannelBinding, message_count.label("message_count"))
                .where(ChannelBinding.agent_id == agent_id, ChannelBinding.is_active.is_(True))
                .order_by(ChannelBinding.last_message_at.desc())
            )
            rows = result.all()

        return [
            {
                "id": binding.id,
                "channel_type": binding.channel_type,
                "sender_identifier": binding.sender_identifier,
                "sender_name": binding.sender_name,
                "binding_type": binding.binding_type,
                "paired_at": binding.paired_at,
                "last_message_at": binding.last_message_at,
                "message_count": count or 0,
            }
            for binding, count in rows
        ]


# ── Singleton ──
_router: Optional[ChannelRouter] = None


def get_channel_router() -> ChannelRouter:
    """Get the global channel router."""
    global _router
    if _router is None:
        _router = ChannelRouter()
    return _router
