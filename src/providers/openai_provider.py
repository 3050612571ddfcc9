"""OpenAI chat-completions backend.

Tool results are correlated with their call by ``tool_call_id``.  Tool-call
arguments travel as JSON strings on the wire and are decoded here.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import openai
from openai import AsyncOpenAI

from src.errors import ProviderError
from src.models import CompletionResult, Message, Role, ToolCall, ToolDefinition, Usage
from src.providers.base import LLMProvider

logger = logging.getLogger(__name__)


# ── Neutral → OpenAI ─────────────────────────────────────────────────


def to_openai_messages(history: list[Message]) -> list[dict[str, Any]]:
    """Translate neutral messages to chat-completions message params."""
    converted: list[dict[str, Any]] = []
    for msg in history:
        if msg.role is Role.TOOL:
            converted.append(
                {"role": "tool", "tool_call_id": msg.tool_call_id, "content": msg.content}
            )
        elif msg.has_tool_calls:
            converted.append(
                {
                    "role": "assistant",
                    "content": msg.content or None,
                    "tool_calls": [
                        {
                            "id": tc.id,
                            "type": "function",
                            "function": {
                                "name": tc.name,
                                "arguments": json.dumps(tc.arguments, ensure_ascii=False),
                            },
                        }
                        for tc in msg.tool_calls
                    ],
                }
            )
        else:
            converted.append({"role": msg.role.value, "content": msg.content})
    return converted


def to_openai_tools(tools: list[ToolDefinition]) -> list[dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.parameters,
            },
        }
        for tool in tools
    ]


# ── Provider ─────────────────────────────────────────────────────────


class OpenAIProvider(LLMProvider):
    """``openai.AsyncOpenAI`` adapter."""

    name = "openai"

    def __init__(
        self,
        model: str,
        *,
        api_key: str | None = None,
        timeout: float = 60.0,
        client: AsyncOpenAI | None = None,
    ):
        super().__init__(model)
        self._api_key = api_key
        self._timeout = timeout
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        """Lazy initialisation of the OpenAI client."""
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self._api_key, timeout=self._timeout)
        return self._client

    async def complete_turn(
        self,
        history: list[Message],
        tools: list[ToolDefinition],
        max_tokens: int,
    ) -> CompletionResult:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": to_openai_messages(history),
            "max_completion_tokens": max_tokens,
        }
        if tools:
            kwargs["tools"] = to_openai_tools(tools)
            kwargs["tool_choice"] = "auto"

        try:
            response = await self.client.chat.completions.create(**kwargs)
        except openai.OpenAIError as exc:
            raise ProviderError(f"OpenAI request failed: {exc}", provider=self.name) from exc

        usage = None
        if response.usage is not None:
            usage = Usage(
                prompt_tokens=response.usage.prompt_tokens or 0,
                completion_tokens=response.usage.completion_tokens or 0,
                total_tokens=response.usage.total_tokens or 0,
            )

        if not response.choices:
            raise ProviderError("OpenAI returned no choices", provider=self.name)
        choice = response.choices[0].message

        calls: list[ToolCall] = []
        for tc in choice.tool_calls or []:
            if tc.type != "function":
                continue
            try:
                arguments = json.loads(tc.function.arguments or "{}")
            except json.JSONDecodeError:
                logger.debug("Bad arguments for %s: %r", tc.function.name, tc.function.arguments)
                return self.malformed_turn(usage)
            if not isinstance(arguments, dict):
                return self.malformed_turn(usage)
            calls.append(ToolCall(id=tc.id, name=tc.function.name, arguments=arguments))

        return CompletionResult(
            message=Message.assistant(choice.content or "", calls),
            model=response.model or self.model,
            usage=usage,
        )
