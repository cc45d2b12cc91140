from agentforge.services.activity_service import log_activity, record_activity
from agentforge.services.auth_service import (
    create_access_token, decode_access_token, create_user,
    get_user_by_id, get_user_by_wallet
)

__all__ = [
    "log_activity",
    "record_activity",
    "create_access_token",
    "decode_access_token",
    "create_user",
    "get_user_by_id",
    "get_user_by_wallet",
]
