"""
Activity Service - Append-only per-agent activity feed.

Every pipeline stage (pairing, LLM call, skills, transactions, cron) leaves a
human-readable line here so owners can see what their agent did.
"""

import json
import logging
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from agentforge.db import ActivityLog, ActivityType, async_session_maker

logger = logging.getLogger(__name__)


def record_activity(
    db: AsyncSession,
    agent_id: str,
    message: str,
    type: ActivityType = ActivityType.ACTION,
    metadata: Optional[Dict[str, Any]] = None,
) -> ActivityLog:
    """Stage an activity row on an open session. Caller commits."""
    entry = ActivityLog(
        agent_id=agent_id,
        type=type.value,
        message=message,
        metadata_json=json.dumps(metadata, default=str) if metadata else None,
    )
    db.add(entry)
    return entry


async def log_activity(
    agent_id: str,
    message: str,
    type: ActivityType = ActivityType.ACTION,
    metadata: Optional[Dict[str, Any]] = None,
    session_maker=None,
) -> None:
    """Write an activity row in its own transaction."""
    async with (session_maker or async_session_maker)() as db:
        record_activity(db, agent_id, message, type, metadata)
        await db.commit()
