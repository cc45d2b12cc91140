"""
Tests for the AgentForge HTTP API
"""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import select

from agentforge.agent.channel_router import ChannelRouter
from agentforge.agent.cron_service import CronService, get_cron_service
from agentforge.agent.model_failover import ProviderError
from agentforge.agent.pairing import PairingResolver
from agentforge.agent.runtime import AgentRuntime, get_agent_runtime
from agentforge.agent.session_store import SessionStore
from agentforge.agent.skills import SkillServices, build_default_registry
from agentforge.blockchain.executor import TransactionExecutor
from agentforge.blockchain.price_tracker import PriceTracker
from agentforge.config import settings
from agentforge.db import ActivityLog, ActivityType, AgentStatus, ChannelBinding, User, async_session_maker
from agentforge.main import app
from agentforge.services import create_access_token

from conftest import RECIPIENT, TX_HASH, ScriptedLLM


@pytest_asyncio.fixture
async def client():
    """Create an async test client"""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(owner):
    return {"Authorization": f"Bearer {create_access_token(owner.id)}"}


@pytest.fixture
def use_llm(fake_wallet):
    """Install a runtime whose LLM replies are scripted."""

    def _install(*outcomes) -> ScriptedLLM:
        llm = ScriptedLLM(*outcomes)
        runtime = AgentRuntime(
            router=ChannelRouter(pairing=PairingResolver()),
            sessions=SessionStore(),
            skills=build_default_registry(SkillServices(wallet=fake_wallet, prices=PriceTracker())),
            transactions=TransactionExecutor(wallet=fake_wallet),
            chat_fn=llm,
        )
        app.dependency_overrides[get_agent_runtime] = lambda: runtime
        app.dependency_overrides[get_cron_service] = lambda: CronService(runtime=runtime)
        return llm

    return _install


# ============ Health Tests ============

@pytest.mark.asyncio
async def test_root(client: AsyncClient):
    response = await client.get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["database"] == "connected"
    assert data["scheduler"] == "disabled"


# ============ Web Chat Tests ============

@pytest.mark.asyncio
async def test_chat_owner_can_transfer(client: AsyncClient, make_agent, auth_headers, use_llm):
    """The owner's bearer token grants wallet authority"""
    agent = await make_agent()
    use_llm(f"Sending. [[SEND_CELO|{RECIPIENT}|1]]")

    response = await client.post(
        f"/api/agents/{agent.id}/chat",
        headers=auth_headers,
        json={"message": "send 1 CELO", "conversationHistory": [{"role": "user", "content": "hi"}]},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["can_use_wallet"] is True
    assert data["transactions_executed"] == 1
    assert TX_HASH in data["response"]
    assert data["provider"] == "groq"
    assert data["attempts"] == 1


@pytest.mark.asyncio
async def test_chat_anonymous_is_read_only(client: AsyncClient, make_agent, use_llm, fake_wallet):
    agent = await make_agent()
    llm = use_llm(f"Sending. [[SEND_CELO|{RECIPIENT}|1]]")

    response = await client.post(f"/api/agents/{agent.id}/chat", json={"message": "send 1 CELO"})

    assert response.status_code == 200
    data = response.json()
    assert data["can_use_wallet"] is False
    assert data["transactions_executed"] == 0
    assert fake_wallet.sent == []
    assert "[[SEND_" not in llm.calls[0]["messages"][0]["content"]


@pytest.mark.asyncio
async def test_chat_other_users_token_is_read_only(client: AsyncClient, make_agent, use_llm):
    agent = await make_agent()
    use_llm("hello")
    async with async_session_maker() as db:
        stranger = User(email="stranger@example.com")
        db.add(stranger)
        await db.commit()
        await db.refresh(stranger)

    response = await client.post(
        f"/api/agents/{agent.id}/chat",
        headers={"Authorization": f"Bearer {create_access_token(stranger.id)}"},
        json={"message": "hi"},
    )

    assert response.status_code == 200
    assert response.json()["can_use_wallet"] is False


@pytest.mark.asyncio
async def test_chat_validation(client: AsyncClient, make_agent, use_llm):
    use_llm()
    paused = await make_agent(status=AgentStatus.PAUSED.value)

    missing = await client.post(f"/api/agents/{paused.id}/chat", json={})
    unknown = await client.post("/api/agents/nope/chat", json={"message": "hi"})
    inactive = await client.post(f"/api/agents/{paused.id}/chat", json={"message": "hi"})

    assert missing.status_code == 400
    assert unknown.status_code == 404
    assert inactive.status_code == 400


@pytest.mark.asyncio
async def test_chat_missing_api_key(client: AsyncClient, make_agent, use_llm):
    use_llm()
    async with async_session_maker() as db:
        keyless = User(email="keyless@example.com")
        db.add(keyless)
        await db.commit()
        await db.refresh(keyless)
    agent = await make_agent(owner_id=keyless.id)

    response = await client.post(f"/api/agents/{agent.id}/chat", json={"message": "hi"})

    assert response.status_code == 422
    assert response.json()["action"] == "Go to Settings to add your API key"


@pytest.mark.asyncio
async def test_chat_provider_failure(client: AsyncClient, make_agent, use_llm):
    agent = await make_agent()
    use_llm(ProviderError("invalid api key", status_code=401))

    response = await client.post(f"/api/agents/{agent.id}/chat", json={"message": "hi"})

    assert response.status_code == 502
    assert "invalid api key" in response.json()["error"]


# ============ Gateway Webhook Tests ============

@pytest.mark.asyncio
async def test_gateway_pair_then_chat(client: AsyncClient, make_agent, use_llm):
    agent = await make_agent(pairing_code="AF9K3M", pairing_code_expires_at=datetime.utcnow() + timedelta(hours=1))
    llm = use_llm("The rate is 0.5")

    paired = await client.post("/api/openclaw/webhook", json={
        "channel": "telegram", "senderId": "500", "senderName": "Ana", "message": "af-9k3m",
    })
    chat = await client.post("/api/openclaw/webhook", json={
        "channel": "telegram", "senderId": "500", "message": "rate?",
    })

    assert paired.status_code == 200
    assert paired.json()["action"] == "paired"
    assert paired.json()["agent_id"] == agent.id
    assert chat.json() == {"reply": "The rate is 0.5", "agent_id": agent.id,
                           "agent_name": "Forex Bot", "action": "chat"}
    assert len(llm.calls) == 1


@pytest.mark.asyncio
async def test_gateway_unknown_sender(client: AsyncClient, use_llm):
    use_llm()
    response = await client.post("/api/openclaw/webhook", json={
        "channel": "whatsapp", "senderId": "123", "message": "hello",
    })

    assert response.status_code == 200
    assert response.json()["action"] == "unknown_sender"
    assert "pairing code" in response.json()["reply"]


@pytest.mark.asyncio
async def test_gateway_internal_error_still_200(client: AsyncClient, make_agent, use_llm):
    await make_agent(pairing_code="AF9K3M", pairing_code_expires_at=datetime.utcnow() + timedelta(hours=1))
    use_llm(ProviderError("boom", status_code=401))

    await client.post("/api/openclaw/webhook", json={"channel": "telegram", "senderId": "500", "message": "AF9K3M"})
    response = await client.post("/api/openclaw/webhook", json={
        "channel": "telegram", "senderId": "500", "message": "hi",
    })

    assert response.status_code == 200
    assert response.json()["action"] == "error"


@pytest.mark.asyncio
async def test_gateway_requires_token_when_configured(client: AsyncClient, use_llm):
    use_llm()
    body = {"channel": "telegram", "senderId": "500", "message": "hello"}
    with patch.object(settings, "gateway_webhook_token", "tok"):
        denied = await client.post("/api/openclaw/webhook", json=body)
        allowed = await client.post("/api/openclaw/webhook", json=body, headers={"Authorization": "Bearer tok"})

    assert denied.status_code == 401
    assert allowed.status_code == 200


@pytest.mark.asyncio
async def test_gateway_validation(client: AsyncClient, use_llm):
    use_llm()
    no_message = await client.post("/api/openclaw/webhook", json={"senderId": "500"})
    no_sender = await client.post("/api/openclaw/webhook", json={"message": "hi"})

    assert no_message.status_code == 400
    assert no_sender.status_code == 400


# ============ Telegram Webhook Tests ============

def telegram_update(text: str, chat_id: int = 777) -> dict:
    return {
        "update_id": 1,
        "message": {
            "message_id": 42,
            "date": 1767225600,
            "chat": {"id": chat_id, "type": "private"},
            "from": {"id": 500, "is_bot": False, "first_name": "Ana"},
            "text": text,
        },
    }


@pytest.mark.asyncio
async def test_telegram_webhook_replies(client: AsyncClient, make_agent, use_llm):
    agent = await make_agent(telegram_bot_token="123:abc", webhook_secret="s3cret")
    use_llm("hi from the bot")

    with patch("agentforge.api.channels.send_typing", new=AsyncMock()), \
            patch("agentforge.api.channels.send_message", new=AsyncMock()) as send:
        response = await client.post(
            f"/api/channels/telegram/{agent.id}",
            json=telegram_update("hello"),
            headers={"X-Telegram-Bot-Api-Secret-Token": "s3cret"},
        )

    assert response.json() == {"ok": True}
    send.assert_awaited_once_with("123:abc", "777", "hi from the bot", 42)

    async with async_session_maker() as db:
        binding = (await db.execute(select(ChannelBinding))).scalars().one()
    assert binding.binding_type == "dedicated"
    assert binding.sender_identifier == "tg:500"


@pytest.mark.asyncio
async def test_telegram_webhook_ignores_bad_secret_and_allowlist(client: AsyncClient, make_agent, use_llm):
    agent = await make_agent(telegram_bot_token="123:abc", webhook_secret="s3cret", telegram_chat_ids='["1"]')
    llm = use_llm()

    with patch("agentforge.api.channels.send_typing", new=AsyncMock()), \
            patch("agentforge.api.channels.send_message", new=AsyncMock()) as send:
        wrong_secret = await client.post(
            f"/api/channels/telegram/{agent.id}",
            json=telegram_update("hello"),
            headers={"X-Telegram-Bot-Api-Secret-Token": "nope"},
        )
        not_allowed = await client.post(
            f"/api/channels/telegram/{agent.id}",
            json=telegram_update("hello", chat_id=777),
            headers={"X-Telegram-Bot-Api-Secret-Token": "s3cret"},
        )
        unknown_agent = await client.post("/api/channels/telegram/missing", json=telegram_update("hello"))

    for response in (wrong_secret, not_allowed, unknown_agent):
        assert response.status_code == 200
        assert response.json() == {"ok": True}
    send.assert_not_awaited()
    assert llm.calls == []


@pytest.mark.asyncio
async def test_telegram_webhook_failure_logged(client: AsyncClient, make_agent, use_llm):
    agent = await make_agent(telegram_bot_token="123:abc")
    use_llm(ProviderError("boom", status_code=401))

    with patch("agentforge.api.channels.send_typing", new=AsyncMock()), \
            patch("agentforge.api.channels.send_message", new=AsyncMock()):
        response = await client.post(f"/api/channels/telegram/{agent.id}", json=telegram_update("hello"))

    assert response.json() == {"ok": True}
    async with async_session_maker() as db:
        errors = (await db.execute(
            select(ActivityLog).where(ActivityLog.type == ActivityType.ERROR.value)
        )).scalars().all()
    assert "Telegram webhook error: boom" in errors[0].message


# ============ Cron Tick Tests ============

@pytest.mark.asyncio
async def test_cron_tick(client: AsyncClient, make_agent, use_llm):
    agent = await make_agent()
    use_llm("scheduled reply")
    await CronService().add_job(agent.id, "Every minute", "1m", "ping")

    response = await client.post("/api/cron/tick")

    assert response.status_code == 200
    data = response.json()
    assert data["ok"] is True
    assert data["checked"] == 1
    assert data["executed"] == 1
    assert data["session_messages_pruned"] == 0


@pytest.mark.asyncio
async def test_cron_tick_secret(client: AsyncClient, use_llm):
    use_llm()
    with patch.object(settings, "cron_secret", "tick-secret"):
        denied = await client.get("/api/cron/tick")
        by_header = await client.get("/api/cron/tick", headers={"Authorization": "Bearer tick-secret"})
        by_body = await client.post("/api/cron/tick", json={"secret": "tick-secret"})

    assert denied.status_code == 401
    assert by_header.status_code == 200
    assert by_body.status_code == 200


# ============ Management Tests ============

@pytest.mark.asyncio
async def test_management_requires_owner(client: AsyncClient, make_agent):
    agent = await make_agent()
    async with async_session_maker() as db:
        stranger = User(email="stranger@example.com")
        db.add(stranger)
        await db.commit()
        await db.refresh(stranger)

    anonymous = await client.get(f"/api/agents/{agent.id}/pairing-code")
    forbidden = await client.get(
        f"/api/agents/{agent.id}/pairing-code",
        headers={"Authorization": f"Bearer {create_access_token(stranger.id)}"},
    )

    assert anonymous.status_code == 401
    assert forbidden.status_code == 403


@pytest.mark.asyncio
async def test_pairing_code_lifecycle(client: AsyncClient, make_agent, auth_headers):
    agent = await make_agent()
    url = f"/api/agents/{agent.id}/pairing-code"

    first = await client.get(url, headers=auth_headers)
    again = await client.get(url, headers=auth_headers)
    regenerated = await client.post(url, headers=auth_headers)
    revoked = await client.delete(url, headers=auth_headers)

    assert first.status_code == 200
    assert first.json()["code"].startswith("AF")
    assert again.json()["code"] == first.json()["code"]
    assert regenerated.status_code == 200
    assert revoked.status_code == 204
    assert await PairingResolver().resolve(regenerated.json()["code"]) is None


@pytest.mark.asyncio
async def test_pairing_code_inactive_agent(client: AsyncClient, make_agent, auth_headers):
    agent = await make_agent(status=AgentStatus.DEPLOYING.value)
    response = await client.get(f"/api/agents/{agent.id}/pairing-code", headers=auth_headers)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_channel_bindings(client: AsyncClient, make_agent, auth_headers, use_llm):
    agent = await make_agent(pairing_code="AF9K3M", pairing_code_expires_at=datetime.utcnow() + timedelta(hours=1))
    use_llm()
    await client.post("/api/openclaw/webhook", json={"channel": "telegram", "senderId": "500", "message": "AF9K3M"})

    listed = await client.get(f"/api/agents/{agent.id}/channels", headers=auth_headers)
    binding_id = listed.json()[0]["id"]
    removed = await client.delete(f"/api/agents/{agent.id}/channels/{binding_id}", headers=auth_headers)
    missing = await client.delete(f"/api/agents/{agent.id}/channels/{binding_id}", headers=auth_headers)

    assert listed.status_code == 200
    assert listed.json()[0]["sender_identifier"] == "tg:500"
    assert removed.status_code == 204
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_cron_job_crud(client: AsyncClient, make_agent, auth_headers):
    agent = await make_agent()
    base = f"/api/agents/{agent.id}/cron"

    created = await client.post(base, headers=auth_headers,
                                json={"name": "Check", "schedule": "*/5 * * * *", "prompt": "check rates"})
    invalid = await client.post(base, headers=auth_headers,
                                json={"name": "Bad", "schedule": "sometime", "prompt": "x"})
    job_id = created.json()["id"]
    toggled = await client.patch(f"{base}/{job_id}", headers=auth_headers, json={})
    listed = await client.get(base, headers=auth_headers)
    deleted = await client.delete(f"{base}/{job_id}", headers=auth_headers)
    gone = await client.patch(f"{base}/{job_id}", headers=auth_headers, json={"enabled": True})

    assert created.status_code == 201
    assert created.json()["kind"] == "cron"
    assert invalid.status_code == 400
    assert toggled.json()["enabled"] is False
    assert [j["id"] for j in listed.json()] == [job_id]
    assert deleted.status_code == 204
    assert gone.status_code == 404


@pytest.mark.asyncio
async def test_seed_cron_defaults(client: AsyncClient, make_agent, auth_headers):
    agent = await make_agent(template_type="trading")

    response = await client.post(f"/api/agents/{agent.id}/cron/defaults", headers=auth_headers)

    assert response.status_code == 201
    assert [j["name"] for j in response.json()] == ["Price Check", "Portfolio Rebalance Check"]
