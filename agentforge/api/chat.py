"""
Chat API - Web chat with a single agent

The agent ID is in the URL and the client supplies conversation history.
Wallet authority is granted only when the bearer token belongs to the
agent's owner; anyone else chats with a read-only agent.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from openai import APIError
from sqlalchemy.ext.asyncio import AsyncSession

from agentforge.agent.model_failover import MissingApiKeyError, ProviderError
from agentforge.agent.runtime import AgentRuntime, get_agent_runtime
from agentforge.agent.structured_logging import api_log, generate_request_id, set_request_context
from agentforge.api.deps import get_optional_user
from agentforge.db import Agent, AgentStatus, User, get_db
from agentforge.schemas import AgentChatRequest, AgentChatResponse

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/agents", tags=["chat"])


@router.post("/{agent_id}/chat", response_model=AgentChatResponse)
async def chat_with_agent(
    agent_id: str,
    request: AgentChatRequest,
    current_user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
    runtime: AgentRuntime = Depends(get_agent_runtime),
):
    """Send a message to an agent and get its reply."""
    set_request_context(request_id=generate_request_id(), agent_id=agent_id)

    if not request.message or not request.message.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Message is required")

    agent = await db.get(Agent, agent_id)
    if agent is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Agent not found")
    if agent.status != AgentStatus.ACTIVE.value:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Agent is {agent.status}. Only active agents can process messages.",
        )

    can_use_wallet = current_user is not None and current_user.id == agent.owner_id
    history = [m.model_dump() for m in request.conversation_history]

    try:
        result = await runtime.process_message(agent_id, request.message, history, can_use_wallet=can_use_wallet)
    except MissingApiKeyError as e:
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"error": str(e), "action": "Go to Settings to add your API key"},
        )
    except (ProviderError, APIError) as e:
        api_log.warning(f"Provider failure for agent {agent_id}: {e}")
        return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content={"error": str(e)})
    except Exception:
        logger.exception(f"[CHAT] Failed to process message for agent {agent_id}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Failed to process message"},
        )

    api_log.info(f"Web chat turn for agent {agent_id}", data={"owner": can_use_wallet, **result.to_dict()})
    return AgentChatResponse(
        response=result.text,
        agent_id=agent_id,
        can_use_wallet=can_use_wallet,
        **result.to_dict(),
    )
