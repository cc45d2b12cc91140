"""
SelfClaw Client - Read-only access to the SelfClaw agent-economy API.

Only the public endpoints are used: per-agent economics and the pool list.
"""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from agentforge.config import settings

logger = logging.getLogger(__name__)


class SelfClawError(Exception):
    pass


class SelfClawClient:
    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = (base_url or settings.selfclaw_api_url).rstrip("/")
        self.timeout = timeout or settings.selfclaw_timeout_seconds
        self._transport = transport

    async def _get(self, path: str) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.get(f"{self.base_url}{path}")
        except httpx.HTTPError as e:
            logger.warning(f"SelfClaw request {path} failed: {e}")
            raise SelfClawError(f"SelfClaw unreachable: {e}") from e
        try:
            data = resp.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        if resp.status_code >= 400:
            raise SelfClawError(data.get("error") or f"SelfClaw API error: {resp.status_code}")
        return data

    async def get_agent_economics(self, identifier: str) -> Dict[str, Any]:
        return await self._get(f"/agent/{quote(identifier, safe='')}/economics")

    async def get_pools(self) -> List[Dict[str, Any]]:
        data = await self._get("/pools")
        return data.get("pools") or []


_client: Optional[SelfClawClient] = None


def get_selfclaw_client() -> SelfClawClient:
    global _client
    if _client is None:
        _client = SelfClawClient()
    return _client
