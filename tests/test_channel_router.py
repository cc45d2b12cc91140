"""
Tests for inbound channel routing: dedicated bots, bindings, pairing and unpairing.
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select

from agentforge.agent.channel_router import (
    ChannelRouter,
    RouteType,
    SenderContext,
    WELCOME_REPLY,
    normalize_sender_id,
)
from agentforge.agent.pairing import PairingResolver
from agentforge.db import ActivityLog, AgentStatus, BindingType, ChannelBinding, async_session_maker


def live_code(code: str) -> dict:
    return {"pairing_code": code, "pairing_code_expires_at": datetime.utcnow() + timedelta(hours=1)}


@pytest.fixture
def router() -> ChannelRouter:
    return ChannelRouter(pairing=PairingResolver())


async def active_bindings(sender_id: str):
    async with async_session_maker() as db:
        result = await db.execute(
            select(ChannelBinding).where(
                ChannelBinding.sender_identifier == sender_id,
                ChannelBinding.is_active.is_(True),
            )
        )
        return result.scalars().all()


# ============ Sender Normalization Tests ============

def test_normalize_sender_id():
    assert normalize_sender_id("telegram", "500") == "tg:500"
    assert normalize_sender_id("telegram", "tg:500") == "tg:500"
    assert normalize_sender_id("whatsapp", " 123 ") == "wa:123"
    assert normalize_sender_id("matrix", "x") == "matrix:x"


def test_sender_context_defaults_chat_to_sender():
    ctx = SenderContext("telegram", "500", "hi")
    assert ctx.sender_id == "tg:500"
    assert ctx.chat_id == "tg:500"


# ============ Routing Tests ============

class TestRoute:

    @pytest.mark.asyncio
    async def test_unknown_sender_gets_welcome(self, router):
        result = await router.route(SenderContext("telegram", "500", "hello"))

        assert result.type == RouteType.UNKNOWN_SENDER
        assert result.system_reply == WELCOME_REPLY
        assert result.agent_id is None
        assert not result.should_process
        assert await active_bindings("tg:500") == []

    @pytest.mark.asyncio
    async def test_pairing_code_creates_binding(self, router, make_agent):
        """tg:500 sending AF9K3M binds to the agent and replies without an LLM turn"""
        agent = await make_agent(**live_code("AF9K3M"))

        result = await router.route(SenderContext("telegram", "500", "AF9K3M", sender_name="Ana"))

        assert result.type == RouteType.PAIRED_NEW
        assert result.agent_id == agent.id
        assert "Paired with Forex Bot" in result.system_reply
        assert not result.should_process

        bindings = await active_bindings("tg:500")
        assert len(bindings) == 1
        assert bindings[0].agent_id == agent.id
        assert bindings[0].binding_type == BindingType.PAIRING.value
        assert bindings[0].pairing_code == "AF9K3M"

        async with async_session_maker() as db:
            logs = (await db.execute(select(ActivityLog).where(ActivityLog.agent_id == agent.id))).scalars().all()
        assert any("Paired via telegram" in log.message for log in logs)

    @pytest.mark.asyncio
    async def test_invalid_code_reply(self, router):
        result = await router.route(SenderContext("telegram", "500", "af-zzzz"))

        assert result.type == RouteType.UNKNOWN_SENDER
        assert "AFZZZZ" in result.system_reply
        assert await active_bindings("tg:500") == []

    @pytest.mark.asyncio
    async def test_existing_binding_routes_to_agent(self, router, make_agent):
        agent = await make_agent(**live_code("AF9K3M"))
        await router.route(SenderContext("telegram", "500", "AF9K3M"))

        result = await router.route(SenderContext("telegram", "500", "What is the EUR rate?"))

        assert result.type == RouteType.EXISTING
        assert result.agent_id == agent.id
        assert result.binding_id is not None
        assert result.should_process

    @pytest.mark.asyncio
    async def test_same_id_on_other_channel_is_separate(self, router, make_agent):
        await make_agent(**live_code("AF9K3M"))
        await router.route(SenderContext("telegram", "500", "AF9K3M"))

        result = await router.route(SenderContext("whatsapp", "500", "hello"))

        assert result.type == RouteType.UNKNOWN_SENDER

    @pytest.mark.asyncio
    async def test_re_pair_keeps_single_active_binding(self, router, make_agent):
        """Re-pairing to another agent supersedes the old binding"""
        first = await make_agent(name="First", **live_code("AFAAAA"))
        second = await make_agent(name="Second", **live_code("AFBBBB"))

        await router.route(SenderContext("telegram", "500", "AFAAAA"))
        result = await router.route(SenderContext("telegram", "500", "/pair AFBBBB"))
        await router.route(SenderContext("telegram", "500", "AFAAAA"))
        await router.route(SenderContext("telegram", "500", "/pair af-bbbb"))

        assert result.type == RouteType.PAIRED_NEW
        assert result.agent_id == second.id

        bindings = await active_bindings("tg:500")
        assert len(bindings) == 1
        assert bindings[0].agent_id == second.id

        async with async_session_maker() as db:
            total = await db.scalar(
                select(func.count(ChannelBinding.id)).where(ChannelBinding.sender_identifier == "tg:500")
            )
        assert total == 2
        assert first.id != second.id

    @pytest.mark.asyncio
    async def test_unpair(self, router, make_agent):
        await make_agent(**live_code("AF9K3M"))
        await router.route(SenderContext("telegram", "500", "AF9K3M"))

        result = await router.route(SenderContext("telegram", "500", "/unpair"))

        assert result.type == RouteType.UNPAIRED
        assert "Disconnected from **Forex Bot**" in result.system_reply
        assert await active_bindings("tg:500") == []

        after = await router.route(SenderContext("telegram", "500", "hello"))
        assert after.type == RouteType.UNKNOWN_SENDER

    @pytest.mark.asyncio
    async def test_binding_to_inactive_agent_is_ignored(self, router, make_agent):
        agent = await make_agent(**live_code("AF9K3M"))
        await router.route(SenderContext("telegram", "500", "AF9K3M"))

        async with async_session_maker() as db:
            from agentforge.db import Agent
            row = await db.get(Agent, agent.id)
            row.status = AgentStatus.PAUSED.value
            await db.commit()

        result = await router.route(SenderContext("telegram", "500", "hello"))
        assert result.type == RouteType.UNKNOWN_SENDER


# ============ Dedicated Bot Tests ============

class TestDedicated:

    @pytest.mark.asyncio
    async def test_dedicated_bot_binds_sender(self, router, make_agent):
        agent = await make_agent()
        ctx = SenderContext("telegram", "42", "hi", dedicated_bot_id=agent.id)

        first = await router.route(ctx)
        second = await router.route(SenderContext("telegram", "42", "again", dedicated_bot_id=agent.id))

        assert first.type == RouteType.DEDICATED
        assert first.agent_id == agent.id
        assert first.should_process
        assert second.binding_id == first.binding_id

        bindings = await active_bindings("tg:42")
        assert len(bindings) == 1
        assert bindings[0].binding_type == BindingType.DEDICATED.value

    @pytest.mark.asyncio
    async def test_unknown_dedicated_bot_falls_through(self, router):
        result = await router.route(SenderContext("telegram", "42", "hi", dedicated_bot_id="missing"))
        assert result.type == RouteType.UNKNOWN_SENDER


# ============ Admin Tests ============

class TestAdmin:

    @pytest.mark.asyncio
    async def test_list_and_deactivate(self, router, make_agent):
        agent = await make_agent(**live_code("AF9K3M"))
        paired = await router.route(SenderContext("telegram", "500", "AF9K3M", sender_name="Ana"))

        listed = await router.list_agent_bindings(agent.id)
        assert len(listed) == 1
        assert listed[0]["sender_identifier"] == "tg:500"
        assert listed[0]["message_count"] == 0

        assert await router.deactivate_binding(paired.binding_id, agent_id=agent.id) is True
        assert await router.deactivate_binding(paired.binding_id, agent_id=agent.id) is False
        assert await router.list_agent_bindings(agent.id) == []
