"""
Session Store — Per-binding conversation history.

Each channel binding owns an ordered list of user/assistant turns. The router
loads the most recent turns into the prompt and appends the new exchange
after the reply has been produced.

Retention:
- At most `session_max_messages_per_binding` rows are kept per binding
- Rows older than `session_message_retention_days` are pruned by the cron tick
  (0 disables time-based pruning; negative values fall back to 30 days)
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select, delete, func

from agentforge.config import settings
from agentforge.db import SessionMessage, SessionRole, async_session_maker

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 30


@dataclass
class SessionTurn:
    role: str
    content: str
    created_at: Optional[datetime] = None

    def to_message(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


def get_retention_days(configured: Optional[int] = None) -> int:
    """Effective retention window. 0 means keep forever."""
    days = settings.session_message_retention_days if configured is None else configured
    if days < 0:
        return DEFAULT_RETENTION_DAYS
    return days


class SessionStore:
    """Loads, appends and prunes binding-scoped history."""

    def __init__(
        self,
        session_maker=None,
        *,
        max_messages_per_binding: Optional[int] = None,
        retention_days: Optional[int] = None,
    ):
        self._session_maker = session_maker or async_session_maker
        self._max_messages = max_messages_per_binding or settings.session_max_messages_per_binding
        self._retention_days = retention_days

    async def load_history(self, binding_id: str, limit: Optional[int] = None) -> List[Dict[str, str]]:
        """
        Return the last `limit` turns in chronological order, as chat messages.
        """
        limit = limit or settings.session_history_limit
        async with self._session_maker() as db:
            result = await db.execute(
                select(SessionMessage)
                .where(SessionMessage.binding_id == binding_id)
                .order_by(SessionMessage.created_at.desc(), SessionMessage.id.desc())
                .limit(limit)
            )
            rows = list(result.scalars().all())

        rows.reverse()
        return [SessionTurn(role=r.role, content=r.content, created_at=r.created_at).to_message() for r in rows]

    async def append_exchange(
        self,
        binding_id: str,
        user_message: str,
        assistant_reply: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Persist a user turn followed by the assistant reply, then enforce the per-binding cap."""
        now = datetime.utcnow()
        async with self._session_maker() as db:
            db.add(SessionMessage(
                binding_id=binding_id,
                role=SessionRole.USER.value,
                content=user_message,
                created_at=now,
            ))
            db.add(SessionMessage(
                binding_id=binding_id,
                role=SessionRole.ASSISTANT.value,
                content=assistant_reply,
                metadata_json=json.dumps(metadata, default=str) if metadata else None,
                created_at=now,
            ))
            await db.flush()

            count = await db.scalar(
                select(func.count(SessionMessage.id)).where(SessionMessage.binding_id == binding_id)
            )
            if count and count > self._max_messages:
                # Keep the newest N rows
                keep_ids = (
                    select(SessionMessage.id)
                    .where(SessionMessage.binding_id == binding_id)
                    .order_by(SessionMessage.created_at.desc(), SessionMessage.id.desc())
                    .limit(self._max_messages)
                    .scalar_subquery()
                )
                await db.execute(
                    delete(SessionMessage).where(
                        SessionMessage.binding_id == binding_id,
                        SessionMessage.id.not_in(keep_ids),
                    )
                )
                logger.debug(f"[SESSION] Trimmed binding {binding_id} to {self._max_messages} messages")

            await db.commit()

    async def prune_expired(self, now: Optional[datetime] = None) -> int:
        """Delete messages older than the retention window. Returns rows removed."""
        days = get_retention_days(self._retention_days)
        if days == 0:
            return 0

        cutoff = (now or datetime.utcnow()) - timedelta(days=days)
        async with self._session_maker() as db:
            result = await db.execute(
                delete(SessionMessage).where(SessionMessage.created_at < cutoff)
            )
            await db.commit()

        removed = result.rowcount or 0
        if removed:
            logger.info(f"[SESSION] Pruned {removed} messages older than {days} days")
        return removed


# ── Singleton ──
_store: Optional[SessionStore] = None


def get_session_store() -> SessionStore:
    global _store
    if _store is None:
        _store = SessionStore()
    return _store
