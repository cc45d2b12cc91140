"""
AgentForge Runtime - Main Application Entry Point
"""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from agentforge.agent.structured_logging import setup_logging
from agentforge.api import agents_router, channels_router, chat_router, cron_router
from agentforge.config import settings
from agentforge.db import async_session_maker, init_db

logger = logging.getLogger(__name__)

VERSION = "1.0.0"

# Global start time for uptime tracking
_app_start_time = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler - runs on startup and shutdown"""
    global _app_start_time
    _app_start_time = time.time()

    # Startup
    setup_logging(settings.log_level, json_output=settings.log_json)
    logger.info("🔨 AgentForge Runtime starting up...")
    await init_db()
    logger.info("✅ Database initialized")

    cron_service = None
    if settings.enable_scheduler:
        from agentforge.agent.cron_service import get_cron_service
        cron_service = get_cron_service()
        cron_service.start()

    yield

    # Shutdown
    if cron_service is not None:
        cron_service.stop()
    logger.info("🔨 AgentForge Runtime shutdown complete.")


app = FastAPI(
    title=settings.app_name,
    description="Multi-tenant agent runtime: channel routing, pairing, skills, on-chain transfers and scheduled tasks",
    version=VERSION,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(chat_router, prefix=settings.api_prefix)
app.include_router(agents_router, prefix=settings.api_prefix)
app.include_router(channels_router, prefix=settings.api_prefix)
app.include_router(cron_router, prefix=settings.api_prefix)


@app.get("/")
async def root():
    return {"name": settings.app_name, "status": "healthy", "version": VERSION}


@app.get("/health")
async def health():
    """Health check with a database probe and uptime."""
    db_status = "connected"
    try:
        async with async_session_maker() as db:
            await db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.warning(f"Health check database probe failed: {e}")
        db_status = f"error: {e}"

    uptime = time.time() - _app_start_time if _app_start_time else 0
    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "version": VERSION,
        "uptime_seconds": round(uptime, 1),
        "database": db_status,
        "scheduler": "enabled" if settings.enable_scheduler else "disabled",
    }
