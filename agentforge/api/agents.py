"""
Agent management endpoints (owner only)

- Pairing code: show / regenerate / revoke
- Channel bindings: list / disconnect
- Scheduled jobs: list / create / toggle / delete
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from agentforge.agent.channel_router import ChannelRouter, get_channel_router
from agentforge.agent.cron_service import CronJobNotFound, CronService, InvalidSchedule, get_cron_service
from agentforge.agent.pairing import InvalidAgentState, PairingCodeExhausted, PairingResolver, get_pairing_resolver
from agentforge.api.deps import get_owned_agent
from agentforge.db import Agent
from agentforge.schemas import (
    ChannelBindingResponse, CronJobCreate, CronJobResponse, CronJobUpdate, PairingCodeResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/agents", tags=["agents"])

PAIRING_INSTRUCTIONS = "Send this code to the AgentForge bot on Telegram, WhatsApp or Discord to connect."


# ============ Pairing ============

@router.get("/{agent_id}/pairing-code", response_model=PairingCodeResponse)
async def get_pairing_code(
    agent: Agent = Depends(get_owned_agent),
    pairing: PairingResolver = Depends(get_pairing_resolver),
):
    """Current live code, created on first request."""
    try:
        code = await pairing.get_or_create(agent.id)
    except InvalidAgentState as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except PairingCodeExhausted as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    return PairingCodeResponse(code=code.code, expires_at=code.expires_at, is_new=code.is_new,
                               instructions=PAIRING_INSTRUCTIONS)


@router.post("/{agent_id}/pairing-code", response_model=PairingCodeResponse)
async def regenerate_pairing_code(
    agent: Agent = Depends(get_owned_agent),
    pairing: PairingResolver = Depends(get_pairing_resolver),
):
    """Issue a fresh code; the previous one stops working."""
    try:
        code = await pairing.generate_code(agent.id)
    except InvalidAgentState as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except PairingCodeExhausted as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    return PairingCodeResponse(code=code.code, expires_at=code.expires_at, is_new=code.is_new,
                               instructions=PAIRING_INSTRUCTIONS)


@router.delete("/{agent_id}/pairing-code", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_pairing_code(
    agent: Agent = Depends(get_owned_agent),
    pairing: PairingResolver = Depends(get_pairing_resolver),
):
    await pairing.revoke(agent.id)


# ============ Channel bindings ============

@router.get("/{agent_id}/channels", response_model=List[ChannelBindingResponse])
async def list_channels(
    agent: Agent = Depends(get_owned_agent),
    router_: ChannelRouter = Depends(get_channel_router),
):
    return await router_.list_agent_bindings(agent.id)


@router.delete("/{agent_id}/channels/{binding_id}", status_code=status.HTTP_204_NO_CONTENT)
async def disconnect_channel(
    binding_id: str,
    agent: Agent = Depends(get_owned_agent),
    router_: ChannelRouter = Depends(get_channel_router),
):
    if not await router_.deactivate_binding(binding_id, agent_id=agent.id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Binding not found")
    logger.info(f"[ROUTER] Owner disconnected binding {binding_id} from agent {agent.id}")


# ============ Scheduled jobs ============

@router.get("/{agent_id}/cron", response_model=List[CronJobResponse])
async def list_cron_jobs(
    agent: Agent = Depends(get_owned_agent),
    cron: CronService = Depends(get_cron_service),
):
    return await cron.list_jobs(agent.id)


@router.post("/{agent_id}/cron", response_model=CronJobResponse, status_code=status.HTTP_201_CREATED)
async def create_cron_job(
    job: CronJobCreate,
    agent: Agent = Depends(get_owned_agent),
    cron: CronService = Depends(get_cron_service),
):
    try:
        return await cron.add_job(agent.id, job.name, job.schedule, job.prompt, enabled=job.enabled)
    except InvalidSchedule as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.post("/{agent_id}/cron/defaults", response_model=List[CronJobResponse],
             status_code=status.HTTP_201_CREATED)
async def seed_cron_defaults(
    agent: Agent = Depends(get_owned_agent),
    cron: CronService = Depends(get_cron_service),
):
    """Create the suggested jobs for the agent's template."""
    return await cron.seed_default_jobs(agent.id, agent.template_type)


@router.patch("/{agent_id}/cron/{job_id}", response_model=CronJobResponse)
async def update_cron_job(
    job_id: str,
    update: CronJobUpdate,
    agent: Agent = Depends(get_owned_agent),
    cron: CronService = Depends(get_cron_service),
):
    """Enable/disable a job; an empty body flips it."""
    try:
        return await cron.toggle_job(agent.id, job_id, update.enabled)
    except CronJobNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.delete("/{agent_id}/cron/{job_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_cron_job(
    job_id: str,
    agent: Agent = Depends(get_owned_agent),
    cron: CronService = Depends(get_cron_service),
):
    try:
        await cron.remove_job(agent.id, job_id)
    except CronJobNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
