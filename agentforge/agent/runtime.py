"""
Agent Runtime — The message pipeline for one agent turn.

    compose prompt → LLM (with fallback) → skill tags → transaction tags

Entry points:
- process_message(): web chat and cron; caller supplies history
- handle_channel_message(): channel webhooks; routes the sender, loads and
  saves binding history, and returns the text to send back
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from agentforge.agent.channel_router import ChannelRouter, RouteResult, SenderContext, get_channel_router
from agentforge.agent.model_failover import (
    Candidate, ChatFn, FallbackResult, MissingApiKeyError, chat_with_fallback, default_candidate,
)
from agentforge.agent.prompt_composer import AgentProfile, compose_messages
from agentforge.agent.session_store import SessionStore, get_session_store
from agentforge.agent.skills.base import SkillContext
from agentforge.agent.skills.registry import SkillRegistry, get_skill_registry
from agentforge.blockchain.constants import NO_WALLET_MESSAGE
from agentforge.agent.structured_logging import set_request_context
from agentforge.db import ActivityType, Agent, async_session_maker
from agentforge.services.activity_service import log_activity, record_activity
from agentforge.services.api_keys import get_first_available_provider_and_key, get_user_api_key
from agentforge.services.llm_service import get_default_model

logger = logging.getLogger(__name__)


class AgentNotFoundError(LookupError):
    pass


@dataclass
class PipelineResult:
    text: str
    provider: str
    model: str
    fallback: Optional[FallbackResult] = None
    skills_executed: int = 0
    transactions_executed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "model": self.model,
            "fallback_used": self.fallback.fallback_used if self.fallback else False,
            "attempts": self.fallback.attempt_count if self.fallback else 0,
            "skills_executed": self.skills_executed,
            "transactions_executed": self.transactions_executed,
        }


@dataclass
class ChannelReply:
    """What a channel webhook should send back."""
    reply: Optional[str]
    route: RouteResult
    result: Optional[PipelineResult] = None


class AgentRuntime:
    def __init__(
        self,
        session_maker=None,
        *,
        router: Optional[ChannelRouter] = None,
        sessions: Optional[SessionStore] = None,
        skills: Optional[SkillRegistry] = None,
        transactions=None,
        chat_fn: Optional[ChatFn] = None,
    ):
        self._session_maker = session_maker or async_session_maker
        self._router = router
        self._sessions = sessions
        self._skills = skills
        self._transactions = transactions
        self._chat_fn = chat_fn

    # Collaborators resolve lazily so tests can build a runtime without a chain RPC
    @property
    def router(self) -> ChannelRouter:
        return self._router or get_channel_router()

    @property
    def sessions(self) -> SessionStore:
        return self._sessions or get_session_store()

    @property
    def skills(self) -> SkillRegistry:
        return self._skills or get_skill_registry()

    @property
    def transactions(self):
        if self._transactions is None:
            from agentforge.blockchain.executor import get_transaction_executor
            self._transactions = get_transaction_executor()
        return self._transactions

    async def process_message(
        self,
        agent_id: str,
        user_message: str,
        history: Optional[List[Dict[str, str]]] = None,
        *,
        can_use_wallet: bool = True,
    ) -> PipelineResult:
        """
        Run one turn for an agent.

        Raises AgentNotFoundError, MissingApiKeyError, or the provider error that
        ended the fallback chain. Skill and transaction failures are rendered
        inline and never raise.
        """
        set_request_context(agent_id=agent_id)

        async with self._session_maker() as db:
            agent = await db.get(Agent, agent_id)
            if agent is None:
                raise AgentNotFoundError(f"Agent {agent_id} not found")
            profile = AgentProfile.from_model(agent)
            owner_id = agent.owner_id
            wallet_index = agent.wallet_derivation_index

            provider, model = agent.llm_provider, agent.llm_model
            try:
                api_key = await get_user_api_key(db, owner_id, provider)
            except MissingApiKeyError:
                fallback = await get_first_available_provider_and_key(db, owner_id)
                if fallback is None:
                    raise
                provider, api_key = fallback
                model = get_default_model(provider)
                logger.warning(f"[RUNTIME] No key for {agent.llm_provider}; using {provider}/{model}")

        messages = compose_messages(
            profile, history or [], user_message, can_use_wallet=can_use_wallet, skills=self.skills
        )

        async def secondary(exclude_provider: str) -> Optional[Candidate]:
            async with self._session_maker() as db:
                found = await get_first_available_provider_and_key(db, owner_id, exclude=[exclude_provider])
            return default_candidate(*found) if found else None

        llm = await chat_with_fallback(
            messages, provider, model, api_key, secondary=secondary, chat_fn=self._chat_fn
        )

        async with self._session_maker() as db:
            record_activity(
                db,
                agent_id,
                f"Processed message via {llm.used_provider}/{llm.used_model}",
                type=ActivityType.ACTION,
                metadata={
                    "provider": llm.used_provider,
                    "model": llm.used_model,
                    "fallback_used": llm.fallback_used,
                    "attempts": llm.attempt_count,
                    "usage": llm.usage,
                },
            )
            await db.commit()

        text = llm.content
        skill_ctx = SkillContext(
            agent_id=agent_id,
            agent_name=profile.name,
            agent_wallet_address=profile.agent_wallet_address if can_use_wallet else None,
            wallet_derivation_index=wallet_index if can_use_wallet else None,
        )
        skill_run = await self.skills.execute(text, skill_ctx)
        text = skill_run.text
        if skill_run.executed_count:
            await log_activity(agent_id, f"Executed {skill_run.executed_count} skill(s)",
                               session_maker=self._session_maker)

        if not can_use_wallet:
            tx_run = await self.transactions.execute(text, agent_id, None)
        elif wallet_index is None:
            tx_run = await self.transactions.execute(text, agent_id, None, NO_WALLET_MESSAGE)
        else:
            tx_run = await self.transactions.execute(text, agent_id, wallet_index)

        return PipelineResult(
            text=tx_run.text,
            provider=llm.used_provider,
            model=llm.used_model,
            fallback=llm,
            skills_executed=skill_run.executed_count,
            transactions_executed=tx_run.executed_count,
        )

    async def handle_channel_message(self, ctx: SenderContext, *, can_use_wallet: bool = True) -> ChannelReply:
        """Route an inbound channel message and, when bound, run the pipeline."""
        route = await self.router.route(ctx)
        if not route.should_process:
            return ChannelReply(reply=route.system_reply, route=route)

        set_request_context(agent_id=route.agent_id, binding_id=route.binding_id or "")
        history = await self.sessions.load_history(route.binding_id) if route.binding_id else []
        result = await self.process_message(
            route.agent_id, ctx.message_text, history, can_use_wallet=can_use_wallet
        )

        if route.binding_id:
            await self.sessions.append_exchange(route.binding_id, ctx.message_text, result.text, result.to_dict())

        return ChannelReply(reply=result.text, route=route, result=result)


# ── Singleton ──
_runtime: Optional[AgentRuntime] = None


def get_agent_runtime() -> AgentRuntime:
    global _runtime
    if _runtime is None:
        _runtime = AgentRuntime()
    return _runtime
