"""FastAPI application entry point — wires everything together.

Usage:
    python -m src.main

Serves the ticket, consent, SMS, profile and push APIs. Ticket events are
fanned out to SMS and push by the notification dispatcher on the event-bus
worker; every event is also written to the audit log.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI

from src.api import consent, profile, push, sms, tickets
from src.channels.push import push_sender
from src.channels.sms import twilio_client
from src.config import settings
from src.db.engine import db_lifespan
from src.errors import register_error_handlers
from src.events.bus import emit, start_event_system, stop_event_system, subscribe, unsubscribe
from src.notifications.dispatcher import notification_dispatcher
from src.schemas.events import TICKET_EVENT_TYPES, EventType, SystemEvent
from src.security.audit import audit_on_event

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
    logger.info("Starting %s incident desk (env=%s)", settings.branding.app_name, settings.environment)

    # 1. Database + Redis
    async with db_lifespan():
        logger.info("Database initialized")

        # 2. Subscribers, then the worker that feeds them
        subscribe(audit_on_event)
        subscribe(notification_dispatcher.on_event, event_types=TICKET_EVENT_TYPES)
        await start_event_system()

        if not twilio_client.can_send_messages:
            logger.warning("Twilio credentials or sender number missing — SMS notifications disabled")
        if not push_sender.is_configured:
            logger.warning("VAPID_PRIVATE_KEY not set — push notifications disabled")

        await emit(SystemEvent(
            event_type=EventType.SYSTEM_STARTUP,
            actor_id="system",
            actor_role="system",
            data={"environment": settings.environment},
            source_module="main",
        ))

        try:
            yield
        finally:
            logger.info("Shutting down...")
            await emit(SystemEvent(
                event_type=EventType.SYSTEM_SHUTDOWN,
                actor_id="system",
                actor_role="system",
                source_module="main",
            ))
            await stop_event_system()
            unsubscribe(notification_dispatcher.on_event)
            unsubscribe(audit_on_event)

    logger.info("Shutdown complete")


# ── FastAPI app ──────────────────────────────────────────────────────

app = FastAPI(
    title="VAKTROS API",
    description="Team incident tickets with SMS and push notifications",
    version="0.1.0",
    lifespan=lifespan,
)
register_error_handlers(app)

app.include_router(tickets.router)
app.include_router(consent.router)
app.include_router(sms.router)
app.include_router(profile.router)
app.include_router(push.router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {
        "status": "ok",
        "environment": settings.environment,
        "app_name": settings.branding.app_name,
    }


# ── Entry point ──────────────────────────────────────────────────────

if __name__ == "__main__":
    uvicorn.run(
        "src.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )
