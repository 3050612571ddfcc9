"""Shared test fixtures for the Pitchside test suite."""

from __future__ import annotations

import os
from datetime import datetime
from unittest.mock import MagicMock

import pytest


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py reads deterministic values.
    """
    os.environ.setdefault("LLM_PROVIDER", "openai")
    os.environ.setdefault("OPENAI_API_KEY", "test-openai-key-123")
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ.setdefault("GOOGLE_CLOUD_PROJECT", "test-project")
    os.environ["DATABASE_URL"] = ""
    os.environ["WHATSAPP_PHONE_NUMBER_ID"] = ""
    os.environ["WHATSAPP_ACCESS_TOKEN"] = ""
    os.environ["METRICS_ENABLED"] = "false"


# Monday 12 October 2026, 14:30 local time.
MONDAY = datetime(2026, 10, 12, 14, 30)


@pytest.fixture
def monday() -> datetime:
    return MONDAY


@pytest.fixture
def mock_http_response():
    """Factory fixture for creating mock httpx responses."""

    def _make(data: dict, status_code: int = 200):
        mock = MagicMock()
        mock.status_code = status_code
        mock.json.return_value = data
        mock.text = str(data)
        return mock

    return _make


class ScriptedProvider:
    """LLMProvider stand-in that replays queued results (or raises queued errors)."""

    name = "scripted"

    def __init__(self, *turns, model: str = "scripted-model"):
        self.model = model
        self.turns = list(turns)
        self.calls: list[dict] = []

    async def complete_turn(self, history, tools, max_tokens):
        from src.models import CompletionResult, Message

        self.calls.append({"history": list(history), "tools": list(tools), "max_tokens": max_tokens})
        if not self.turns:
            return CompletionResult(message=Message.assistant("tamam"), model=self.model)
        turn = self.turns.pop(0)
        if isinstance(turn, Exception):
            raise turn
        if isinstance(turn, CompletionResult):
            return turn
        return CompletionResult(message=turn, model=self.model)


@pytest.fixture
def scripted_provider():
    """Factory: ``scripted_provider(Message.assistant("..."), RuntimeError(), ...)``."""
    return ScriptedProvider
