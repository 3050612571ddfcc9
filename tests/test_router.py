"""Tests for the two-stage tool router."""

from __future__ import annotations

import pytest

from src.errors import ProviderError
from src.models import CompletionResult, Message, Role, Usage
from src.router import ToolRouter
from src.tools import build_tool_registry


@pytest.fixture
def definitions():
    return build_tool_registry().definitions


class TestParseSelection:
    def test_maps_known_names_in_order(self, scripted_provider, definitions):
        router = ToolRouter(scripted_provider(), definitions, top_n=3)
        selected = router.parse_selection("create_reservation, show_week_table")
        assert [t.name for t in selected] == ["create_reservation", "show_week_table"]

    def test_drops_unknown_and_duplicates_and_caps(self, scripted_provider, definitions):
        router = ToolRouter(scripted_provider(), definitions, top_n=2)
        selected = router.parse_selection(
            "book_pitch,create_reservation,create_reservation,`get_current_time`,show_week_table"
        )
        assert [t.name for t in selected] == ["create_reservation", "get_current_time"]

    def test_garbled_reply(self, scripted_provider, definitions):
        router = ToolRouter(scripted_provider(), definitions)
        assert router.parse_selection("???") == []


class TestSelect:
    @pytest.mark.asyncio
    async def test_routed_subset(self, scripted_provider, definitions):
        provider = scripted_provider(
            CompletionResult(
                message=Message.assistant("cancel_reservation,find_reservations_by_name"),
                model="m",
                usage=Usage(50, 5, 55),
            )
        )
        router = ToolRouter(provider, definitions, top_n=3, max_tokens=200)

        result = await router.select("Ahmet'in rezervasyonunu iptal et")

        assert [t.name for t in result.tools] == ["cancel_reservation", "find_reservations_by_name"]
        assert result.fallback is False
        assert result.usage == Usage(50, 5, 55)

        call = provider.calls[0]
        assert call["tools"] == []
        assert call["max_tokens"] == 200
        assert call["history"][0].role is Role.SYSTEM
        assert "create_reservation" in call["history"][0].content
        assert call["history"][1].content == "Ahmet'in rezervasyonunu iptal et"

    @pytest.mark.asyncio
    async def test_garbled_selection_falls_back_to_all_tools(self, scripted_provider, definitions):
        router = ToolRouter(scripted_provider(Message.assistant("???")), definitions)
        result = await router.select("merhaba")
        assert result.fallback is True
        assert len(result.tools) == len(definitions)
        assert result.model == "scripted-model"

    @pytest.mark.asyncio
    async def test_provider_failure_falls_back_to_all_tools(self, scripted_provider, definitions):
        router = ToolRouter(scripted_provider(ProviderError("down", provider="x")), definitions)
        result = await router.select("merhaba")
        assert result.fallback is True
        assert len(result.tools) == len(definitions)
        assert result.model is None

    @pytest.mark.asyncio
    async def test_disabled_router_makes_no_call(self, scripted_provider, definitions):
        provider = scripted_provider()
        router = ToolRouter(provider, definitions, enabled=False)
        result = await router.select("merhaba")
        assert len(result.tools) == len(definitions)
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_small_tool_set_skips_selection(self, scripted_provider, definitions):
        provider = scripted_provider()
        router = ToolRouter(provider, definitions[:2], top_n=3)
        result = await router.select("merhaba")
        assert len(result.tools) == 2
        assert provider.calls == []
