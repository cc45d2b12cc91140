"""
Telegram Channel Adapter — Dedicated per-agent bots.

Each agent can have its own bot (token from @BotFather). Telegram POSTs
updates to /api/channels/telegram/{agent_id}; we extract the text message,
run it through the router (dedicated binding) and reply with the Bot API.

Uses python-telegram-bot for update parsing and outbound calls.
"""

import hmac
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from telegram import Bot, LinkPreviewOptions, ReplyParameters, Update
from telegram.constants import ChatAction, ParseMode
from telegram.error import BadRequest, TelegramError

logger = logging.getLogger(__name__)

SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"

# Telegram rejects messages over 4096 chars; leave headroom for entities
MAX_MESSAGE_CHARS = 4000


@dataclass
class TelegramIncoming:
    sender_id: str
    sender_name: Optional[str]
    chat_id: str
    text: str
    message_id: int


def parse_update(data: Dict[str, Any]) -> Optional[TelegramIncoming]:
    """Text message (or edit) from a webhook payload. None for anything else."""
    try:
        update = Update.de_json(data, None)
    except (KeyError, TypeError, ValueError) as e:
        logger.warning(f"[TELEGRAM] Unparseable update: {e}")
        return None
    if update is None:
        return None

    msg = update.message or update.edited_message
    if msg is None or not msg.text:
        return None

    user = msg.from_user
    name = " ".join(p for p in (user.first_name, user.last_name) if p) if user else ""
    return TelegramIncoming(
        sender_id=str(user.id) if user else "unknown",
        sender_name=name or None,
        chat_id=str(msg.chat.id),
        text=msg.text,
        message_id=msg.message_id,
    )


def verify_webhook_secret(header_value: Optional[str], expected: Optional[str]) -> bool:
    """Constant-time check of the secret Telegram echoes back. No secret configured → accept."""
    if not expected:
        return True
    if not header_value:
        return False
    return hmac.compare_digest(header_value.encode(), expected.encode())


def is_chat_allowed(allowlist_json: Optional[str], chat_id: str) -> bool:
    """An empty or malformed allowlist allows every chat."""
    if not allowlist_json:
        return True
    try:
        allowed = json.loads(allowlist_json)
    except ValueError:
        return True
    if not isinstance(allowed, list) or not allowed:
        return True
    return chat_id in {str(c) for c in allowed}


def split_message(text: str, max_len: int = MAX_MESSAGE_CHARS) -> List[str]:
    """Split on a newline, then a space, else hard-cut."""
    if len(text) <= max_len:
        return [text]

    chunks = []
    remaining = text
    while remaining:
        if len(remaining) <= max_len:
            chunks.append(remaining)
            break
        split_at = remaining.rfind("\n", 0, max_len)
        if split_at < max_len * 0.5:
            split_at = remaining.rfind(" ", 0, max_len)
        if split_at < max_len * 0.3:
            split_at = max_len
        chunks.append(remaining[:split_at])
        remaining = remaining[split_at:].lstrip()
    return chunks


async def send_typing(bot_token: str, chat_id: str) -> None:
    try:
        async with Bot(bot_token) as bot:
            await bot.send_chat_action(chat_id=chat_id, action=ChatAction.TYPING)
    except TelegramError as e:
        logger.debug(f"[TELEGRAM] Typing indicator failed: {e}")


async def send_message(bot_token: str, chat_id: str, text: str, reply_to: Optional[int] = None) -> None:
    """Send a reply, chunked. Falls back to plain text if Markdown parsing fails."""
    async with Bot(bot_token) as bot:
        for i, chunk in enumerate(split_message(text)):
            reply_parameters = (
                ReplyParameters(message_id=reply_to, allow_sending_without_reply=True)
                if reply_to is not None and i == 0 else None
            )
            kwargs = {
                "chat_id": chat_id,
                "text": chunk,
                "reply_parameters": reply_parameters,
                "link_preview_options": LinkPreviewOptions(is_disabled=True),
            }
            try:
                await bot.send_message(parse_mode=ParseMode.MARKDOWN, **kwargs)
            except BadRequest:
                await bot.send_message(**kwargs)
