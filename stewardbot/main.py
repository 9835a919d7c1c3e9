"""FastAPI application entry point — wires everything together.

Usage:
    python -m stewardbot.main

Serves the health check and the WhatsApp webhook.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI

from stewardbot.channels.whatsapp import whatsapp_router
from stewardbot.config import settings
from stewardbot.db.engine import db_lifespan
from stewardbot.events.audit import audit_on_event
from stewardbot.events.bus import emit, start_event_system, stop_event_system, subscribe, unsubscribe
from stewardbot.schemas.events import EventType, SystemEvent

# ── Logging setup ────────────────────────────────────────────────────

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    stream=sys.stdout,
)
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = logging.getLogger(__name__)

# ── FastAPI lifespan ─────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup and shutdown lifecycle."""
    logger.info("Starting %s (env=%s)", settings.bot_name, settings.environment)

    async with db_lifespan():
        logger.info("Database initialized")

        subscribe(audit_on_event)
        await start_event_system()
        await emit(SystemEvent(event_type=EventType.SYSTEM_STARTUP, source_module="main"))

        if not settings.whatsapp.whatsapp_api_token:
            logger.warning("WHATSAPP_API_TOKEN not set — webhook will answer not_configured")
        if not settings.storage.storage_bucket:
            logger.warning("STORAGE_BUCKET not set — inspection photos cannot be stored")

        try:
            yield
        finally:
            logger.info("Shutting down %s...", settings.bot_name)
            await emit(SystemEvent(event_type=EventType.SYSTEM_SHUTDOWN, source_module="main"))
            await stop_event_system()
            unsubscribe(audit_on_event)

    logger.info("Shutdown complete")


# ── FastAPI app ──────────────────────────────────────────────────────

app = FastAPI(
    title="Property Stewards Inspection Bot",
    description="Checklist-driven property inspections over WhatsApp",
    version="0.1.0",
    lifespan=lifespan,
)
app.include_router(whatsapp_router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {
        "status": "ok",
        "environment": settings.environment,
        "bot_name": settings.bot_name,
    }


# ── Entry point ──────────────────────────────────────────────────────

if __name__ == "__main__":
    uvicorn.run(
        "stewardbot.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )
