"""FastAPI route definitions for the Pitchside agent API."""

from __future__ import annotations

import base64
import logging
from dataclasses import asdict
from datetime import datetime

from fastapi import APIRouter, HTTPException, Request

from src.api.schemas import HealthResponse, MessageRequest, MessageResponse, TokenUsageResponse
from src.errors import ChannelAPIError

logger = logging.getLogger(__name__)

router = APIRouter()

# Channels redeliver on timeouts; a message id is remembered for a day.
DEDUP_TTL_SECONDS = 24 * 60 * 60


def _get_agent(request: Request):
    """Retrieve the booking agent from app state (set in the lifespan)."""
    agent = getattr(request.app.state, "agent", None)
    if agent is None:
        raise HTTPException(
            status_code=503,
            detail="The agent is still starting up. Please try again in a moment.",
        )
    return agent


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check(http_request: Request):
    """Health check endpoint."""
    agent = getattr(http_request.app.state, "agent", None)
    sessions = getattr(getattr(agent, "sessions", None), "session_count", None)
    return HealthResponse(active_sessions=sessions)


@router.post("/messages", response_model=MessageResponse)
async def handle_message(request: MessageRequest, http_request: Request):
    """Run one inbound message through the agent.

    The tenant is resolved (and created on first contact) from
    ``channel_account_id``.  If a WhatsApp client is configured the reply is
    also delivered to the sender; the response body always carries it.
    """
    agent = _get_agent(http_request)
    request_id = getattr(http_request.state, "request_id", "?")
    dedup = getattr(http_request.app.state, "dedup_cache", None)
    whatsapp = getattr(http_request.app.state, "whatsapp", None)

    dedup_key = None
    if request.message_id and dedup is not None:
        dedup_key = f"msg:{request.channel_account_id}:{request.message_id}"
        if dedup.has(dedup_key):
            logger.info("[%s] Duplicate message %s ignored", request_id, request.message_id)
            return MessageResponse(duplicate=True)
        dedup.set(dedup_key, True, ttl=DEDUP_TTL_SECONDS)

    try:
        tenant_id = await agent.bookings.store.get_or_create_tenant(request.channel_account_id)
        if whatsapp is not None and request.message_id:
            await whatsapp.mark_as_read(request.message_id)

        reply = await agent.handle_message(tenant_id, request.sender_id, request.content)

    except Exception as e:
        # Full traceback server-side; the client only gets a generic message.
        logger.exception("[%s] Error processing message", request_id)
        if dedup_key is not None:
            # Let the channel's redelivery be processed.
            dedup.delete(dedup_key)
        raise HTTPException(
            status_code=500,
            detail="An internal error occurred. Please try again.",
        ) from e

    delivered = False
    if whatsapp is not None:
        try:
            for image in reply.images:
                await whatsapp.send_image(request.sender_id, image)
            await whatsapp.send_text(request.sender_id, reply.text)
            delivered = True
        except ChannelAPIError:
            logger.exception("[%s] Reply delivery to %s failed", request_id, request.sender_id)

    return MessageResponse(
        reply=reply.text,
        images=[base64.b64encode(img).decode("ascii") for img in reply.images],
        delivered=delivered,
        tenant_id=tenant_id,
    )


@router.delete("/sessions/{tenant_id}/{user_id}", status_code=204)
async def reset_session(tenant_id: int, user_id: str, http_request: Request):
    """Forget the conversation of one sender."""
    agent = _get_agent(http_request)
    await agent.reset_session(tenant_id, user_id)


@router.get("/token-usage", response_model=TokenUsageResponse)
async def token_usage(http_request: Request, tenant_id: int | None = None, since: datetime | None = None):
    """Sum recorded LLM token usage, optionally for one tenant and from ``since`` on."""
    agent = _get_agent(http_request)
    if since is not None and since.tzinfo is not None:
        # Usage rows carry naive server-local timestamps.
        since = since.astimezone().replace(tzinfo=None)
    summary = await agent.bookings.store.usage_summary(tenant_id, since)
    return TokenUsageResponse.model_validate(asdict(summary))
