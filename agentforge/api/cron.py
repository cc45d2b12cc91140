"""
Cron tick endpoint

Called every minute by an external scheduler (or the dashboard in dev) when
the in-process APScheduler loop is disabled. Protected by CRON_SECRET when set.
"""

import hmac
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from agentforge.agent.cron_service import CronService, get_cron_service
from agentforge.config import settings
from agentforge.schemas import CronTickResponse

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/cron", tags=["cron"])


def _secret_matches(provided: Optional[str], expected: str) -> bool:
    return bool(provided) and hmac.compare_digest(provided.encode(), expected.encode())


async def _provided_secret(request: Request, authorization: Optional[str]) -> Optional[str]:
    if authorization and authorization.startswith("Bearer "):
        return authorization[len("Bearer "):]
    if request.method == "POST":
        try:
            body = await request.json()
        except ValueError:
            return None
        if isinstance(body, dict):
            return body.get("secret")
    return None


@router.api_route("/tick", methods=["GET", "POST"], response_model=CronTickResponse)
async def cron_tick(
    request: Request,
    authorization: Optional[str] = Header(None),
    cron: CronService = Depends(get_cron_service),
):
    """Run due jobs, then prune expired session messages."""
    if settings.cron_secret:
        provided = await _provided_secret(request, authorization)
        if not _secret_matches(provided, settings.cron_secret):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    now = datetime.utcnow()
    result = await cron.run_maintenance(now)
    return CronTickResponse(
        timestamp=now,
        checked=result["checked"],
        executed=result["executed"],
        errors=result["errors"],
        results=result["results"],
        session_messages_pruned=result["pruned_messages"],
    )
