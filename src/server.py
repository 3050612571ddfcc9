"""FastAPI server for the Pitchside booking agent.

Run with:
    uvicorn src.server:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from src.agent import create_booking_agent
from src.api.routes import router
from src.config import CORS_ORIGINS, SERVER_HOST, SERVER_PORT, SESSION_SWEEP_SECONDS
from src.services.cache import TTLCache
from src.services.metrics import metrics
from src.services.whatsapp_client import WhatsAppClient

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


async def _sweep_sessions(agent, interval: float) -> None:
    """Periodically drop idle sessions so memory stays bounded."""
    while True:
        await asyncio.sleep(interval)
        try:
            await agent.sessions.purge_expired()
        except Exception:
            logger.exception("Session sweep failed")


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Start-up: build the agent, channel client and sweep task once."""
    logger.info("Building booking agent…")
    agent = await create_booking_agent()
    application.state.agent = agent
    application.state.dedup_cache = TTLCache(max_bytes=2 * 1024 * 1024)

    whatsapp = WhatsAppClient()
    if whatsapp.configured:
        application.state.whatsapp = whatsapp
        logger.info("WhatsApp delivery enabled.")
    else:
        application.state.whatsapp = None
        logger.info("WhatsApp credentials not set; replies are returned in the response only.")

    sweeper = asyncio.create_task(_sweep_sessions(agent, SESSION_SWEEP_SECONDS))
    logger.info("Agent ready.")
    yield

    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweeper
    await whatsapp.aclose()
    await agent.aclose()
    metrics.close()


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="Pitchside Booking Agent",
    description=(
        "WhatsApp booking assistant for football pitch operators: create, "
        "move and cancel reservations and report on sales."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request-ID middleware ────────────────────────────────────────────
@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Attach a request ID (``X-Request-ID``) for log correlation."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info(
        "[%s] %s %s", request_id, request.method, request.url.path,
    )
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ── Register routes ──────────────────────────────────────────────────
app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Pitchside Booking Agent",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
    }


# ── CLI entry point ──────────────────────────────────────────────────

if __name__ == "__main__":
    logger.info("Starting Pitchside API server on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(
        "src.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=True,
    )
