"""
Tests for pairing code generation, extraction and resolution.
"""

from datetime import datetime, timedelta

import pytest

from agentforge.agent.pairing import (
    AgentNotFound,
    InvalidAgentState,
    PairingCodeExhausted,
    PairingResolver,
    normalize_code,
)
from agentforge.db import Agent, AgentStatus, async_session_maker


def fixed_suffixes(*suffixes):
    it = iter(suffixes)
    return lambda: next(it)


# ============ Extraction Tests ============

class TestExtract:

    @pytest.mark.parametrize("text", [
        "AF9K3M",
        "af9k3m",
        "af-9k3m",
        "AF 9K3M",
        "/pair AF9K3M",
        "hey, my code is Af-9K3m thanks",
    ])
    def test_case_and_separator_insensitive(self, text):
        """All spellings normalize to the canonical code"""
        assert PairingResolver.extract(text) == "AF9K3M"

    @pytest.mark.parametrize("text", ["", "hello there", "AF9K", "AFIOIO", "code 9K3M"])
    def test_no_code(self, text):
        assert PairingResolver.extract(text) is None

    def test_normalize_code(self):
        assert normalize_code("af-9k3m") == "AF9K3M"
        assert normalize_code("9k3m") == "AF9K3M"


# ============ Generation Tests ============

class TestGenerate:

    @pytest.mark.asyncio
    async def test_generate_code_format_and_expiry(self, make_agent):
        agent = await make_agent()
        resolver = PairingResolver(ttl_hours=24)

        before = datetime.utcnow()
        code = await resolver.generate_code(agent.id)

        assert code.code.startswith("AF")
        assert len(code.code) == 6
        assert "I" not in code.code[2:] and "O" not in code.code[2:]
        assert timedelta(hours=23) < code.expires_at - before <= timedelta(hours=24, seconds=5)

        async with async_session_maker() as db:
            stored = await db.get(Agent, agent.id)
        assert stored.pairing_code == code.code

    @pytest.mark.asyncio
    async def test_inactive_agent_rejected(self, make_agent):
        agent = await make_agent(status=AgentStatus.PAUSED.value)
        with pytest.raises(InvalidAgentState):
            await PairingResolver().generate_code(agent.id)

    @pytest.mark.asyncio
    async def test_unknown_agent(self):
        with pytest.raises(AgentNotFound):
            await PairingResolver().generate_code("missing")

    @pytest.mark.asyncio
    async def test_collision_retries_next_candidate(self, make_agent):
        first = await make_agent(name="First")
        second = await make_agent(name="Second")

        await PairingResolver(suffix_factory=fixed_suffixes("AAAA")).generate_code(first.id)
        code = await PairingResolver(suffix_factory=fixed_suffixes("AAAA", "BBBB")).generate_code(second.id)

        assert code.code == "AFBBBB"

    @pytest.mark.asyncio
    async def test_exhausted_attempts(self, make_agent):
        first = await make_agent(name="First")
        second = await make_agent(name="Second")
        await PairingResolver(suffix_factory=fixed_suffixes("AAAA")).generate_code(first.id)

        resolver = PairingResolver(max_attempts=3, suffix_factory=lambda: "AAAA")
        with pytest.raises(PairingCodeExhausted):
            await resolver.generate_code(second.id)

    @pytest.mark.asyncio
    async def test_get_or_create_reuses_live_code(self, make_agent):
        agent = await make_agent()
        resolver = PairingResolver()

        first = await resolver.get_or_create(agent.id)
        second = await resolver.get_or_create(agent.id)

        assert first.code == second.code
        assert first.is_new is True
        assert second.is_new is False

    @pytest.mark.parametrize("status", [AgentStatus.PAUSED, AgentStatus.DEPLOYING])
    @pytest.mark.asyncio
    async def test_get_or_create_rejects_inactive_agent_with_live_code(self, make_agent, status):
        """A code issued while active is not handed out once the agent stops"""
        agent = await make_agent()
        resolver = PairingResolver()
        await resolver.get_or_create(agent.id)

        async with async_session_maker() as db:
            row = await db.get(Agent, agent.id)
            row.status = status.value
            await db.commit()

        with pytest.raises(InvalidAgentState):
            await resolver.get_or_create(agent.id)

    @pytest.mark.asyncio
    async def test_regenerate_replaces_previous_code(self, make_agent):
        agent = await make_agent()
        resolver = PairingResolver(suffix_factory=fixed_suffixes("AAAA", "BBBB"))

        await resolver.generate_code(agent.id)
        await resolver.generate_code(agent.id)

        assert await resolver.resolve("AFAAAA") is None
        assert (await resolver.resolve("AFBBBB")).agent_id == agent.id


# ============ Resolution Tests ============

class TestResolve:

    @pytest.mark.asyncio
    async def test_resolve_any_spelling(self, make_agent):
        agent = await make_agent(pairing_code="AF9K3M",
                                 pairing_code_expires_at=datetime.utcnow() + timedelta(hours=1))
        resolver = PairingResolver()

        for spelling in ("AF9K3M", "af9k3m", "af-9k3m", "AF 9K3M"):
            resolved = await resolver.resolve(spelling)
            assert resolved is not None
            assert resolved.agent_id == agent.id
            assert resolved.agent_name == "Forex Bot"

    @pytest.mark.asyncio
    async def test_expired_code_resolves_to_none(self, make_agent):
        await make_agent(pairing_code="AF9K3M",
                         pairing_code_expires_at=datetime.utcnow() - timedelta(minutes=1))
        assert await PairingResolver().resolve("AF9K3M") is None

    @pytest.mark.asyncio
    async def test_inactive_agent_resolves_to_none(self, make_agent):
        await make_agent(status=AgentStatus.PAUSED.value, pairing_code="AF9K3M",
                         pairing_code_expires_at=datetime.utcnow() + timedelta(hours=1))
        assert await PairingResolver().resolve("AF9K3M") is None

    @pytest.mark.asyncio
    async def test_revoke(self, make_agent):
        agent = await make_agent(pairing_code="AF9K3M",
                                 pairing_code_expires_at=datetime.utcnow() + timedelta(hours=1))
        resolver = PairingResolver()

        await resolver.revoke(agent.id)

        assert await resolver.resolve("AF9K3M") is None
