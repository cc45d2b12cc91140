from agentforge.api.agents import router as agents_router
from agentforge.api.channels import router as channels_router
from agentforge.api.chat import router as chat_router
from agentforge.api.cron import router as cron_router
from agentforge.api.deps import get_current_user, get_optional_user

__all__ = [
    "agents_router",
    "channels_router",
    "chat_router",
    "cron_router",
    "get_current_user",
    "get_optional_user",
]
