"""LLM backends behind one neutral contract.

``create_provider()`` picks the backend named by ``LLM_PROVIDER`` and
resolves only that backend's credentials.
"""

from __future__ import annotations

import logging

from src import config
from src.providers.anthropic_provider import AnthropicProvider
from src.providers.base import APOLOGY_TEXT, MALFORMED_CALL_TEXT, LLMProvider
from src.providers.gemini_provider import GeminiProvider
from src.providers.openai_provider import OpenAIProvider

logger = logging.getLogger(__name__)

__all__ = [
    "APOLOGY_TEXT",
    "MALFORMED_CALL_TEXT",
    "AnthropicProvider",
    "GeminiProvider",
    "LLMProvider",
    "OpenAIProvider",
    "create_provider",
]


def create_provider(name: str | None = None) -> LLMProvider:
    """Build the configured backend.

    Raises:
        ValueError: unknown provider name.
        OSError: the selected backend's credentials are missing.
    """
    name = (name or config.LLM_PROVIDER).strip().lower()

    if name == "openai":
        provider: LLMProvider = OpenAIProvider(
            config.OPENAI_MODEL,
            api_key=config.require_env("OPENAI_API_KEY"),
            timeout=config.OPENAI_TIMEOUT_SECONDS,
        )
    elif name == "gemini":
        provider = GeminiProvider(
            config.GEMINI_MODEL,
            project=config.require_env("GOOGLE_CLOUD_PROJECT"),
            location=config.GOOGLE_CLOUD_LOCATION,
        )
    elif name == "anthropic":
        provider = AnthropicProvider(
            config.ANTHROPIC_MODEL,
            api_key=config.require_env("ANTHROPIC_API_KEY"),
        )
    else:
        raise ValueError(
            f"Unknown LLM_PROVIDER {name!r}. Expected one of: openai, gemini, anthropic."
        )

    logger.info("LLM provider: %s (model %s)", provider.name, provider.model)
    return provider
