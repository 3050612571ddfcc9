"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class MessageRequest(BaseModel):
    """One inbound WhatsApp message, as forwarded by the channel gateway."""

    sender_id: str = Field(
        ..., min_length=1, max_length=64, description="Sender's WhatsApp number (E.164 digits)",
    )
    channel_account_id: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Business phone-number id that received the message; identifies the tenant",
    )
    content: str = Field(..., min_length=1, max_length=4000, description="Message text")
    message_id: str | None = Field(
        default=None, max_length=200, description="Channel message id, used for de-duplication",
    )


class MessageResponse(BaseModel):
    """The agent's reply for one inbound message."""

    reply: str = Field("", description="Reply text")
    images: list[str] = Field(default_factory=list, description="Base64-encoded PNG attachments")
    duplicate: bool = Field(False, description="True if the message id was already processed")
    delivered: bool = Field(False, description="True if the reply was sent through WhatsApp")
    tenant_id: int | None = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "pitchside-agent"
    active_sessions: int | None = None


class TokenTotals(BaseModel):
    requests: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ModelTokenUsage(BaseModel):
    provider: str
    model: str
    totals: TokenTotals


class TokenUsageResponse(BaseModel):
    """Recorded LLM token usage, summed and broken down by backend and model."""

    tenant_id: int | None = Field(None, description="Tenant filter; null means all tenants")
    since: datetime | None = Field(None, description="Lower bound on the call time; null means all history")
    total: TokenTotals
    by_model: list[ModelTokenUsage] = Field(default_factory=list)
