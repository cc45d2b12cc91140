"""
Channel webhooks

- POST /openclaw/webhook: the multi-channel gateway forwards every inbound
  message here; the router decides pairing vs. chat.
- POST /channels/telegram/{agent_id}: per-agent Telegram bots. Always answers
  200 so Telegram stops retrying, whatever happened.
"""

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from agentforge.agent.channel_router import RouteType, SenderContext
from agentforge.agent.channels.telegram import (
    is_chat_allowed, parse_update, send_message, send_typing, verify_webhook_secret,
)
from agentforge.agent.model_failover import MissingApiKeyError
from agentforge.agent.runtime import AgentRuntime, get_agent_runtime
from agentforge.agent.structured_logging import channel_log, generate_request_id, set_request_context
from agentforge.config import settings
from agentforge.db import ActivityType, Agent, AgentStatus, ChannelType, get_db
from agentforge.schemas import GatewayWebhookRequest, GatewayWebhookResponse
from agentforge.services.activity_service import log_activity

logger = logging.getLogger(__name__)
router = APIRouter(tags=["channels"])

APOLOGY_REPLY = "Sorry, I encountered an error processing your message. Please try again."
MISSING_KEY_REPLY = "⚠️ This agent has no LLM API key configured. Ask the owner to add one in Settings."

ROUTE_ACTIONS = {
    RouteType.EXISTING: "chat",
    RouteType.DEDICATED: "chat",
    RouteType.PAIRED_NEW: "paired",
    RouteType.UNPAIRED: "unpaired",
    RouteType.UNKNOWN_SENDER: "unknown_sender",
}


def _bearer_matches(authorization: Optional[str], expected: str) -> bool:
    if not authorization or not authorization.startswith("Bearer "):
        return False
    return hmac.compare_digest(authorization[len("Bearer "):].encode(), expected.encode())


@router.post("/openclaw/webhook", response_model=GatewayWebhookResponse)
async def gateway_webhook(
    body: GatewayWebhookRequest,
    authorization: Optional[str] = Header(None),
    runtime: AgentRuntime = Depends(get_agent_runtime),
):
    """Route a gateway message and return the reply for the gateway to deliver."""
    if settings.gateway_webhook_token and not _bearer_matches(authorization, settings.gateway_webhook_token):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    if not body.message:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="message is required")
    sender = body.sender_id or body.chat_id
    if not sender:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="senderId is required")

    set_request_context(request_id=generate_request_id())
    ctx = SenderContext(
        channel_type=body.channel,
        sender_id=sender,
        message_text=body.message,
        chat_id=body.chat_id,
        sender_name=body.sender_name,
        dedicated_bot_id=body.bot_id,
    )
    channel_log.info(f"Inbound {ctx.channel_type} message from {ctx.sender_id}")

    try:
        outcome = await runtime.handle_channel_message(ctx)
    except MissingApiKeyError:
        return GatewayWebhookResponse(reply=MISSING_KEY_REPLY, action="error")
    except Exception:
        logger.exception(f"[WEBHOOK] Failed to process message from {ctx.sender_id}")
        return GatewayWebhookResponse(reply=APOLOGY_REPLY, action="error")

    return GatewayWebhookResponse(
        reply=outcome.reply,
        agent_id=outcome.route.agent_id,
        agent_name=outcome.route.agent_name,
        action=ROUTE_ACTIONS[outcome.route.type],
    )


@router.post("/channels/telegram/{agent_id}")
async def telegram_webhook(
    agent_id: str,
    request: Request,
    x_telegram_bot_api_secret_token: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
    runtime: AgentRuntime = Depends(get_agent_runtime),
):
    """Handle an update for an agent's dedicated bot."""
    ok = {"ok": True}

    agent = await db.get(Agent, agent_id)
    if agent is None or not agent.telegram_bot_token:
        return ok
    if not verify_webhook_secret(x_telegram_bot_api_secret_token, agent.webhook_secret):
        logger.warning(f"[TELEGRAM] Secret mismatch for agent {agent_id}")
        return ok
    if agent.status != AgentStatus.ACTIVE.value:
        return ok

    try:
        data = await request.json()
    except ValueError:
        return ok
    incoming = parse_update(data) if isinstance(data, dict) else None
    if incoming is None:
        return ok
    if not is_chat_allowed(agent.telegram_chat_ids, incoming.chat_id):
        logger.info(f"[TELEGRAM] Chat {incoming.chat_id} not in allowlist for agent {agent_id}")
        return ok

    bot_token = agent.telegram_bot_token
    set_request_context(request_id=generate_request_id(), agent_id=agent_id)
    try:
        await send_typing(bot_token, incoming.chat_id)
        outcome = await runtime.handle_channel_message(SenderContext(
            channel_type=ChannelType.TELEGRAM.value,
            sender_id=incoming.sender_id,
            message_text=incoming.text,
            chat_id=incoming.chat_id,
            sender_name=incoming.sender_name,
            dedicated_bot_id=agent_id,
        ))
        if outcome.reply:
            await send_message(bot_token, incoming.chat_id, outcome.reply, incoming.message_id)
    except Exception as e:
        logger.exception(f"[TELEGRAM] Webhook error for agent {agent_id}")
        await log_activity(
            agent_id,
            f"Telegram webhook error: {e}"[:200],
            type=ActivityType.ERROR,
        )
    return ok
