"""Pydantic schemas for API request/response validation"""

from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field


# ============ Chat ============

class HistoryMessage(BaseModel):
    role: str
    content: str


class AgentChatRequest(BaseModel):
    """Web chat turn. History is supplied by the client."""
    message: Optional[str] = Field(None, max_length=10000, description="User's message")
    conversation_history: List[HistoryMessage] = Field(
        default_factory=list, alias="conversationHistory", description="Prior turns, oldest first"
    )

    class Config:
        populate_by_name = True


class AgentChatResponse(BaseModel):
    response: str
    agent_id: str
    provider: str
    model: str
    fallback_used: bool = False
    attempts: int = 0
    skills_executed: int = 0
    transactions_executed: int = 0
    can_use_wallet: bool = False


# ============ Channels ============

class GatewayWebhookRequest(BaseModel):
    """Inbound message forwarded by the channel gateway"""
    channel: str = Field("web", description="telegram | whatsapp | discord | imessage | web")
    sender_id: Optional[str] = Field(None, alias="senderId")
    sender_name: Optional[str] = Field(None, alias="senderName")
    chat_id: Optional[str] = Field(None, alias="chatId")
    message: Optional[str] = None
    bot_id: Optional[str] = Field(None, alias="botId", description="Agent ID of a dedicated bot")

    class Config:
        populate_by_name = True


class GatewayWebhookResponse(BaseModel):
    reply: Optional[str] = None
    agent_id: Optional[str] = None
    agent_name: Optional[str] = None
    action: str  # chat | paired | unpaired | unknown_sender | error


class ChannelBindingResponse(BaseModel):
    id: str
    channel_type: str
    sender_identifier: str
    sender_name: Optional[str] = None
    binding_type: str
    paired_at: Optional[datetime] = None
    last_message_at: Optional[datetime] = None
    message_count: int = 0


# ============ Pairing ============

class PairingCodeResponse(BaseModel):
    code: Optional[str] = None
    expires_at: Optional[datetime] = None
    is_new: bool = False
    instructions: Optional[str] = None


# ============ Cron ============

class CronJobCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    schedule: str = Field(min_length=1, max_length=200, description="Cron expression, interval (5m), ISO time or 'in 5m'")
    prompt: str = Field(min_length=1, max_length=4000)
    enabled: bool = True


class CronJobUpdate(BaseModel):
    enabled: Optional[bool] = None


class CronJobResponse(BaseModel):
    id: str
    agent_id: str
    name: str
    schedule: str
    kind: str
    prompt: str
    enabled: bool
    last_run_at: Optional[str] = None
    last_result: Optional[str] = None
    run_count: int = 0


class CronTickRequest(BaseModel):
    secret: Optional[str] = None


class CronTickResponse(BaseModel):
    ok: bool = True
    timestamp: datetime
    checked: int
    executed: int
    errors: int
    results: List[Dict[str, Any]] = Field(default_factory=list)
    session_messages_pruned: int = 0
