from agentforge.db.models import (
    Base,
    User,
    Agent,
    AgentStatus,
    TemplateType,
    ChannelType,
    BindingType,
    ChannelBinding,
    SessionMessage,
    SessionRole,
    CronJob,
    ScheduleKind,
    ActivityLog,
    ActivityType,
    Transaction,
)
from agentforge.db.database import get_db, init_db, drop_db, async_session_maker, engine

__all__ = [
    "Base",
    "User",
    "Agent",
    "AgentStatus",
    "TemplateType",
    "ChannelType",
    "BindingType",
    "ChannelBinding",
    "SessionMessage",
    "SessionRole",
    "CronJob",
    "ScheduleKind",
    "ActivityLog",
    "ActivityType",
    "Transaction",
    # Database
    "get_db",
    "init_db",
    "drop_db",
    "async_session_maker",
    "engine",
]
