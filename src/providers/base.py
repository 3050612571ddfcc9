"""Backend-neutral LLM contract.

Every backend implements one operation, :meth:`LLMProvider.complete_turn`,
which takes the neutral history and tool list and returns one assistant
turn.  The orchestration graph never sees an SDK type.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from src.models import CompletionResult, Message, ToolDefinition, Usage

logger = logging.getLogger(__name__)

# Shown when a whole turn fails (provider down, unexpected exception).
APOLOGY_TEXT = "Üzgünüm, bir hata oluştu. Lütfen tekrar deneyin."

# Shown when the backend produced a tool call we cannot decode.
MALFORMED_CALL_TEXT = (
    "Özür dilerim, bir işlem yapmaya çalışırken hata oluştu. "
    "Lütfen isteğinizi tekrar belirtir misiniz?"
)


class LLMProvider(ABC):
    """One chat-completion backend with tool calling."""

    #: Short service name used in logs, metrics and usage events.
    name: str = "llm"

    def __init__(self, model: str):
        self.model = model

    @abstractmethod
    async def complete_turn(
        self,
        history: list[Message],
        tools: list[ToolDefinition],
        max_tokens: int,
    ) -> CompletionResult:
        """Run one model turn.

        Args:
            history: Ordered conversation, system prompt first.
            tools: Candidate tools.  An empty list means no tool schema is
                sent at all (routing stage).
            max_tokens: Completion token budget.

        Returns:
            The assistant turn plus best-effort usage.

        Raises:
            ProviderError: transport or SDK failure.  A malformed tool-call
                payload is *not* an error: it degrades to an apology turn.
        """

    def malformed_turn(self, usage: Usage | None = None) -> CompletionResult:
        """Plain-text apology turn with no tool calls."""
        logger.warning("%s returned an undecodable tool call; degrading to apology", self.name)
        return CompletionResult(
            message=Message.assistant(MALFORMED_CALL_TEXT),
            model=self.model,
            usage=usage,
        )
