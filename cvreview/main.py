"""FastAPI application entry point: wires everything together.

Usage:
    python -m cvreview.main
"""

from __future__ import annotations

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI

from cvreview.api import availability, conferencing, meetings
from cvreview.api.errors import register_exception_handlers
from cvreview.config import settings
from cvreview.conferencing.bridge import conferencing_bridge
from cvreview.db.engine import db_lifespan
from cvreview.events import emit, start_event_system, stop_event_system, subscribe
from cvreview.notifications.meetings import NOTIFIED_EVENTS, meeting_notifier
from cvreview.schemas.events import EventType, SystemEvent
from cvreview.security.audit import audit_on_event

# ── Logging setup ────────────────────────────────────────────────────

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
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
    logger.info("Starting CV review meetings service (env=%s)", settings.environment)

    async with db_lifespan():
        logger.info("Database initialized")

        await start_event_system()
        subscribe(audit_on_event)
        subscribe(
            conferencing_bridge.release_on_event,
            [EventType.MEETING_CANCELLED, EventType.MEETING_RESCHEDULED],
        )
        subscribe(meeting_notifier.on_event, NOTIFIED_EVENTS)
        logger.info("Event system started: audit, calendar release and meeting e-mail subscribers registered")

        if not settings.notifications.resend_api_key:
            logger.warning("RESEND_API_KEY not set: meeting e-mails are logged, not sent")

        if settings.conferencing.credential_policy == "system_fallback":
            logger.warning("Calendar credential policy is system_fallback: experts may share calendars")

        await emit(SystemEvent(
            event_type=EventType.SYSTEM_STARTUP,
            data={"environment": settings.environment},
            source_module="main",
        ))

        try:
            yield
        finally:
            logger.info("Shutting down CV review meetings service...")
            await emit(SystemEvent(event_type=EventType.SYSTEM_SHUTDOWN, source_module="main"))
            await stop_event_system()
            logger.info("Event system stopped")

    logger.info("Shutdown complete")


# ── FastAPI app ──────────────────────────────────────────────────────

app = FastAPI(
    title="CV Review Meetings API",
    description="Expert availability, slot booking and meeting lifecycle",
    version="0.1.0",
    lifespan=lifespan,
)
register_exception_handlers(app)
app.include_router(availability.router)
app.include_router(meetings.router)
app.include_router(conferencing.router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {
        "status": "ok",
        "environment": settings.environment,
        "credential_policy": settings.conferencing.credential_policy,
    }


# ── Entry point ──────────────────────────────────────────────────────

if __name__ == "__main__":
    uvicorn.run(
        "cvreview.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )
