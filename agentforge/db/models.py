"""
Database models for the AgentForge runtime

Agents are owned by users, reachable through channel bindings, and keep:
- A pairing code (stored on the agent row, not a separate table)
- Per-binding session history
- Schedule entries (cron jobs)
- An activity feed and on-chain transaction records
"""

from datetime import datetime
from typing import Optional, List
from enum import Enum
import uuid

from sqlalchemy import (
    String, Text, DateTime, Float, Integer, BigInteger, Boolean,
    ForeignKey, Index, text,
)
from sqlalchemy.orm import relationship, Mapped, mapped_column, declarative_base

Base = declarative_base()


class AgentStatus(str, Enum):
    """Agent lifecycle"""
    DEPLOYING = "deploying"
    ACTIVE = "active"
    PAUSED = "paused"


class TemplateType(str, Enum):
    """Agent templates — decide which skills an agent gets"""
    PAYMENT = "payment"
    TRADING = "trading"
    FOREX = "forex"
    SOCIAL = "social"
    CUSTOM = "custom"


class ChannelType(str, Enum):
    """All supported channel types"""
    WEB = "web"
    TELEGRAM = "telegram"
    DISCORD = "discord"
    WHATSAPP = "whatsapp"
    IMESSAGE = "imessage"


class BindingType(str, Enum):
    """How a sender was bound to an agent"""
    PAIRING = "pairing"      # shared bot: sender typed a pairing code
    DEDICATED = "dedicated"  # per-agent bot: bot token = agent
    DIRECT = "direct"        # admin action
    WEB = "web"              # web chat: agent ID in URL


class SessionRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ActivityType(str, Enum):
    ACTION = "action"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class ScheduleKind(str, Enum):
    CRON = "cron"    # 5-field cron expression
    EVERY = "every"  # fixed interval
    AT = "at"        # one-shot absolute time


class User(Base):
    """Agent owner. Holds per-provider LLM API keys."""
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)
    wallet_address: Mapped[Optional[str]] = mapped_column(String(42), nullable=True, index=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # LLM provider keys
    openrouter_api_key: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    openai_api_key: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    groq_api_key: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    grok_api_key: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    gemini_api_key: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    deepseek_api_key: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    zai_api_key: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    agents: Mapped[List["Agent"]] = relationship("Agent", back_populates="owner")


class Agent(Base):
    """A configured conversational agent"""
    __tablename__ = "agents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True)
    name: Mapped[str] = mapped_column(String(200))
    template_type: Mapped[str] = mapped_column(String(30), default=TemplateType.CUSTOM.value)
    system_prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=AgentStatus.DEPLOYING.value, index=True)

    # LLM
    llm_provider: Mapped[str] = mapped_column(String(30), default="openrouter")
    llm_model: Mapped[str] = mapped_column(String(200), default="meta-llama/llama-3.3-70b-instruct:free")

    # Wallet
    agent_wallet_address: Mapped[Optional[str]] = mapped_column(String(42), nullable=True)
    wallet_derivation_index: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    spending_limit: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    spending_used: Mapped[float] = mapped_column(Float, default=0.0)

    # Pairing (one live code per agent)
    pairing_code: Mapped[Optional[str]] = mapped_column(String(6), nullable=True, index=True)
    pairing_code_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Dedicated Telegram bot
    telegram_bot_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    telegram_chat_ids: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # JSON list allowlist
    webhook_secret: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    deployed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    owner: Mapped["User"] = relationship("User", back_populates="agents")
    bindings: Mapped[List["ChannelBinding"]] = relationship("ChannelBinding", back_populates="agent")
    cron_jobs: Mapped[List["CronJob"]] = relationship("CronJob", back_populates="agent")


class ChannelBinding(Base):
    """
    Durable (channel_type, sender_identifier) → agent association.

    At most one active row per (channel_type, sender_identifier); enforced by
    the partial unique index below. Rows are soft-disabled, never deleted.
    """
    __tablename__ = "channel_bindings"
    __table_args__ = (
        Index(
            "uq_channel_bindings_active_sender",
            "channel_type", "sender_identifier",
            unique=True,
            sqlite_where=text("is_active"),
            postgresql_where=text("is_active"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    agent_id: Mapped[str] = mapped_column(String(36), ForeignKey("agents.id"), index=True)
    channel_type: Mapped[str] = mapped_column(String(20))
    sender_identifier: Mapped[str] = mapped_column(String(255))  # channel-prefixed, e.g. "tg:12345"
    sender_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    chat_identifier: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    pairing_code: Mapped[Optional[str]] = mapped_column(String(6), nullable=True)
    binding_type: Mapped[str] = mapped_column(String(20), default=BindingType.PAIRING.value)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    paired_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    last_message_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    agent: Mapped["Agent"] = relationship("Agent", back_populates="bindings")
    session_messages: Mapped[List["SessionMessage"]] = relationship(
        "SessionMessage", back_populates="binding", order_by="SessionMessage.created_at"
    )


class SessionMessage(Base):
    """Immutable conversation turn tied to a binding"""
    __tablename__ = "session_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    binding_id: Mapped[str] = mapped_column(String(36), ForeignKey("channel_bindings.id"), index=True)
    role: Mapped[str] = mapped_column(String(20))  # "user" | "assistant"
    content: Mapped[str] = mapped_column(Text)
    metadata_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    binding: Mapped["ChannelBinding"] = relationship("ChannelBinding", back_populates="session_messages")


class CronJob(Base):
    """Scheduled task for an agent."""
    __tablename__ = "cron_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    agent_id: Mapped[str] = mapped_column(String(36), ForeignKey("agents.id"), index=True)
    name: Mapped[str] = mapped_column(String(200))

    # Schedule
    schedule_kind: Mapped[str] = mapped_column(String(20))  # "at", "every", "cron"
    schedule_spec: Mapped[str] = mapped_column(String(200))  # Original schedule string
    schedule_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    schedule_interval_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    schedule_cron_expr: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Payload
    skill_prompt: Mapped[str] = mapped_column(Text)

    # State
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    last_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_result: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    run_count: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    agent: Mapped["Agent"] = relationship("Agent", back_populates="cron_jobs")


class ActivityLog(Base):
    """Per-agent activity feed"""
    __tablename__ = "activity_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    agent_id: Mapped[str] = mapped_column(String(36), ForeignKey("agents.id"), index=True)
    type: Mapped[str] = mapped_column(String(20), default=ActivityType.ACTION.value)
    message: Mapped[str] = mapped_column(Text)
    metadata_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)


class Transaction(Base):
    """On-chain transfer attempted from an agent wallet"""
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    agent_id: Mapped[str] = mapped_column(String(36), ForeignKey("agents.id"), index=True)
    tx_hash: Mapped[Optional[str]] = mapped_column(String(66), nullable=True, index=True)
    type: Mapped[str] = mapped_column(String(20), default="send")
    status: Mapped[str] = mapped_column(String(20))  # "confirmed" | "failed"
    to_address: Mapped[Optional[str]] = mapped_column(String(42), nullable=True)
    amount: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    currency: Mapped[Optional[str]] = mapped_column(String(42), nullable=True)
    block_number: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
