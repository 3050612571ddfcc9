"""Tests for the FastAPI endpoints."""

from __future__ import annotations

import asyncio
import base64
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from src.agent import BookingAgent
from src.errors import ChannelAPIError
from src.models import Message, SessionKey, ToolCall, Usage, UsageEvent
from src.server import app
from src.services.bookings import BookingService
from src.services.cache import TTLCache
from src.services.datastore import InMemoryBookingStore

MONDAY = datetime(2026, 10, 12, 14, 30)


class FakeRenderer:
    async def render_week(self, reservations, week_start, week_offset):
        return b"\x89PNG table"


@pytest.fixture
def provider(scripted_provider):
    return scripted_provider(Message.assistant("Merhaba! Size nasıl yardımcı olabilirim?"))


@pytest.fixture
def agent(provider):
    """Build a real agent over the in-memory store and attach it to app state (mirrors the lifespan)."""
    agent = BookingAgent(
        provider,
        BookingService(InMemoryBookingStore(), TTLCache()),
        routing_enabled=False,
        clock=lambda: MONDAY,
        renderer=FakeRenderer(),
    )
    app.state.agent = agent
    app.state.dedup_cache = TTLCache()
    app.state.whatsapp = None
    yield agent
    app.state.agent = None
    app.state.whatsapp = None


@pytest.fixture
def client(agent):
    """FastAPI test client with the agent wired up."""
    return TestClient(app)


def _message(**overrides) -> dict:
    body = {
        "sender_id": "905551112233",
        "channel_account_id": "pitch-kadikoy",
        "content": "merhaba",
        "message_id": "wamid.1",
    }
    body.update(overrides)
    return body


class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["service"] == "pitchside-agent"
        assert data["active_sessions"] == 0


class TestMessagesEndpoint:
    def test_returns_reply(self, client):
        response = client.post("/api/messages", json=_message())
        assert response.status_code == 200
        data = response.json()
        assert data["reply"] == "Merhaba! Size nasıl yardımcı olabilirim?"
        assert data["duplicate"] is False
        assert data["delivered"] is False
        assert data["tenant_id"] == 1

    def test_tenant_is_resolved_per_channel_account(self, client):
        first = client.post("/api/messages", json=_message(message_id="a"))
        second = client.post("/api/messages", json=_message(message_id="b", channel_account_id="pitch-besiktas"))
        again = client.post("/api/messages", json=_message(message_id="c"))
        assert first.json()["tenant_id"] == again.json()["tenant_id"]
        assert first.json()["tenant_id"] != second.json()["tenant_id"]

    def test_session_is_stored_under_tenant_and_sender(self, client, agent):
        tenant_id = client.post("/api/messages", json=_message()).json()["tenant_id"]
        history = asyncio.run(agent.sessions.load(SessionKey(tenant_id, "905551112233")))
        assert [m.content for m in history][-2:] == ["merhaba", "Merhaba! Size nasıl yardımcı olabilirim?"]

    def test_duplicate_message_is_ignored(self, client, provider):
        client.post("/api/messages", json=_message())
        response = client.post("/api/messages", json=_message())
        assert response.status_code == 200
        assert response.json()["duplicate"] is True
        assert response.json()["reply"] == ""
        assert len(provider.calls) == 1

    def test_messages_without_id_are_not_deduplicated(self, client, provider):
        client.post("/api/messages", json=_message(message_id=None))
        client.post("/api/messages", json=_message(message_id=None))
        assert len(provider.calls) == 2

    def test_images_are_base64_encoded(self, client, provider):
        provider.turns[:] = [
            Message.assistant("", [ToolCall(id="t", name="show_week_table", arguments={"week_offset": 0})]),
            Message.assistant("Tabloyu gönderdim."),
        ]
        data = client.post("/api/messages", json=_message(content="tabloyu göster")).json()
        assert data["reply"] == "Tabloyu gönderdim."
        assert [base64.b64decode(i) for i in data["images"]] == [b"\x89PNG table"]

    def test_validates_empty_content(self, client):
        response = client.post("/api/messages", json=_message(content=""))
        assert response.status_code == 422  # Pydantic validation error

    def test_validates_missing_sender(self, client):
        body = _message()
        del body["sender_id"]
        assert client.post("/api/messages", json=body).status_code == 422

    def test_handles_store_error(self, client, agent):
        agent.bookings.store.get_or_create_tenant = AsyncMock(side_effect=RuntimeError("db exploded"))
        response = client.post("/api/messages", json=_message())
        assert response.status_code == 500
        # Internal details are not leaked to the caller
        detail = response.json()["detail"]
        assert "db exploded" not in detail
        assert "internal error" in detail.lower()

    def test_failed_message_is_processed_on_redelivery(self, client, agent, provider):
        store = agent.bookings.store
        resolve_tenant = store.get_or_create_tenant
        store.get_or_create_tenant = AsyncMock(side_effect=RuntimeError("db blip"))

        first = client.post("/api/messages", json=_message())
        store.get_or_create_tenant = resolve_tenant
        redelivered = client.post("/api/messages", json=_message())

        assert first.status_code == 500
        assert redelivered.status_code == 200
        assert redelivered.json()["duplicate"] is False
        assert redelivered.json()["reply"] == "Merhaba! Size nasıl yardımcı olabilirim?"
        assert len(provider.calls) == 1

    def test_processed_message_stays_deduplicated(self, client):
        client.post("/api/messages", json=_message())
        assert client.app.state.dedup_cache.has("msg:pitch-kadikoy:wamid.1")

    def test_response_includes_request_id_header(self, client):
        response = client.post("/api/messages", json=_message())
        assert "X-Request-ID" in response.headers

    def test_client_supplied_request_id_is_echoed(self, client):
        response = client.post(
            "/api/messages", json=_message(), headers={"X-Request-ID": "my-trace-id-123"},
        )
        assert response.headers["X-Request-ID"] == "my-trace-id-123"


class TestWhatsAppDelivery:
    @pytest.fixture
    def whatsapp(self, agent):
        whatsapp = MagicMock()
        whatsapp.mark_as_read = AsyncMock()
        whatsapp.send_text = AsyncMock(return_value={"messages": [{"id": "wamid.out"}]})
        whatsapp.send_image = AsyncMock()
        app.state.whatsapp = whatsapp
        return whatsapp

    def test_reply_is_delivered(self, client, whatsapp):
        data = client.post("/api/messages", json=_message()).json()
        assert data["delivered"] is True
        whatsapp.mark_as_read.assert_awaited_once_with("wamid.1")
        whatsapp.send_text.assert_awaited_once_with(
            "905551112233", "Merhaba! Size nasıl yardımcı olabilirim?",
        )
        whatsapp.send_image.assert_not_awaited()

    def test_delivery_failure_still_returns_reply(self, client, whatsapp):
        whatsapp.send_text.side_effect = ChannelAPIError("Client error 400", status_code=400)
        response = client.post("/api/messages", json=_message())
        assert response.status_code == 200
        assert response.json()["delivered"] is False
        assert response.json()["reply"] == "Merhaba! Size nasıl yardımcı olabilirim?"


class TestSessionReset:
    def test_delete_clears_history(self, client, agent):
        tenant_id = client.post("/api/messages", json=_message()).json()["tenant_id"]
        response = client.delete(f"/api/sessions/{tenant_id}/905551112233")
        assert response.status_code == 204
        assert asyncio.run(agent.sessions.load(SessionKey(tenant_id, "905551112233"))) == []


class TestTokenUsage:
    @pytest.fixture
    def usage(self, agent):
        store = agent.bookings.store

        def event(tenant_id, provider, model, usage, at=MONDAY):
            return UsageEvent(tenant_id, "905551112233", provider, model, "chat_completion", usage, created_at=at)

        for e in (
            event(1, "openai", "gpt-4o-mini", Usage(100, 20, 120)),
            event(1, "gemini", "gemini-2.0-flash", Usage(40, 5, 45)),
            event(2, "openai", "gpt-4o-mini", Usage(200, 30, 230)),
            event(1, "openai", "gpt-4o-mini", Usage(7, 3, 10), at=datetime(2026, 9, 1, 12, 0)),
        ):
            asyncio.run(store.record_usage(e))

    def test_totals_across_tenants(self, client, usage):
        response = client.get("/api/token-usage")
        assert response.status_code == 200
        data = response.json()
        assert data["tenant_id"] is None
        assert data["total"] == {
            "requests": 4, "prompt_tokens": 347, "completion_tokens": 58, "total_tokens": 405,
        }
        assert [(m["provider"], m["model"]) for m in data["by_model"]] == [
            ("openai", "gpt-4o-mini"), ("gemini", "gemini-2.0-flash"),
        ]
        assert data["by_model"][0]["totals"]["requests"] == 3

    def test_filters_by_tenant(self, client, usage):
        data = client.get("/api/token-usage", params={"tenant_id": 2}).json()
        assert data["tenant_id"] == 2
        assert data["total"]["requests"] == 1
        assert data["total"]["total_tokens"] == 230
        assert [m["model"] for m in data["by_model"]] == ["gpt-4o-mini"]

    def test_filters_by_since(self, client, usage):
        data = client.get(
            "/api/token-usage", params={"tenant_id": 1, "since": "2026-10-01T00:00:00"},
        ).json()
        assert data["total"]["requests"] == 2
        assert data["total"]["total_tokens"] == 165

    def test_empty_when_nothing_recorded(self, client):
        data = client.get("/api/token-usage").json()
        assert data["total"]["requests"] == 0
        assert data["by_model"] == []

    def test_rejects_malformed_since(self, client):
        assert client.get("/api/token-usage", params={"since": "dün"}).status_code == 422


class TestAgentNotReady:
    def test_returns_503_when_agent_not_initialised(self):
        """Before the lifespan has built the agent, requests get a 503."""
        app.state.agent = None
        response = TestClient(app).post("/api/messages", json=_message())
        assert response.status_code == 503
        assert "starting up" in response.json()["detail"].lower()


class TestRootEndpoint:
    def test_root_returns_service_info(self, client):
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "Pitchside Booking Agent"
        assert "docs" in data
