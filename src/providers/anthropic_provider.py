"""Anthropic backend through ``langchain_anthropic.ChatAnthropic``.

Neutral messages are mapped onto LangChain message classes; the returned
``AIMessage`` is mapped back.  ``invalid_tool_calls`` on the response means
Claude produced arguments LangChain could not parse, which degrades to the
apology turn like every other backend.
"""

from __future__ import annotations

import logging
from typing import Any

import anthropic
from langchain_anthropic import ChatAnthropic
from langchain_core.messages import AIMessage, AnyMessage, HumanMessage, SystemMessage, ToolMessage

from src.errors import ProviderError
from src.models import CompletionResult, Message, Role, ToolCall, ToolDefinition, Usage
from src.providers.base import LLMProvider

logger = logging.getLogger(__name__)


def to_langchain_messages(history: list[Message]) -> list[AnyMessage]:
    converted: list[AnyMessage] = []
    for msg in history:
        if msg.role is Role.SYSTEM:
            converted.append(SystemMessage(content=msg.content))
        elif msg.role is Role.USER:
            converted.append(HumanMessage(content=msg.content))
        elif msg.role is Role.TOOL:
            converted.append(
                ToolMessage(content=msg.content, tool_call_id=msg.tool_call_id or "", name=msg.name)
            )
        else:
            converted.append(
                AIMessage(
                    content=msg.content,
                    tool_calls=[
                        {"name": tc.name, "args": dict(tc.arguments), "id": tc.id, "type": "tool_call"}
                        for tc in msg.tool_calls
                    ],
                )
            )
    return converted


def to_anthropic_tools(tools: list[ToolDefinition]) -> list[dict[str, Any]]:
    return [
        {"name": tool.name, "description": tool.description, "input_schema": tool.parameters}
        for tool in tools
    ]


def _text_of(content: str | list[Any]) -> str:
    """Flatten an ``AIMessage.content`` that may be a list of content blocks."""
    if isinstance(content, str):
        return content
    chunks = []
    for block in content:
        if isinstance(block, str):
            chunks.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            chunks.append(block.get("text", ""))
    return "".join(chunks)


class AnthropicProvider(LLMProvider):
    """Claude via LangChain."""

    name = "anthropic"

    def __init__(self, model: str, *, api_key: str | None = None, temperature: float = 0.1):
        super().__init__(model)
        self._api_key = api_key
        self._temperature = temperature
        # One client per token budget (routing and execution use different ones).
        self._llms: dict[int, ChatAnthropic] = {}

    def _build_llm(self, max_tokens: int) -> ChatAnthropic:
        llm = self._llms.get(max_tokens)
        if llm is None:
            llm = self._llms[max_tokens] = ChatAnthropic(
                model=self.model,
                api_key=self._api_key,
                temperature=self._temperature,
                max_tokens=max_tokens,
            )
        return llm

    async def complete_turn(
        self,
        history: list[Message],
        tools: list[ToolDefinition],
        max_tokens: int,
    ) -> CompletionResult:
        llm = self._build_llm(max_tokens)
        runnable = llm.bind_tools(to_anthropic_tools(tools)) if tools else llm

        try:
            response = await runnable.ainvoke(to_langchain_messages(history))
        except anthropic.APIError as exc:
            raise ProviderError(f"Anthropic request failed: {exc}", provider=self.name) from exc

        usage = None
        metadata = getattr(response, "usage_metadata", None)
        if metadata:
            usage = Usage(
                prompt_tokens=metadata.get("input_tokens", 0),
                completion_tokens=metadata.get("output_tokens", 0),
                total_tokens=metadata.get("total_tokens", 0),
            )

        if getattr(response, "invalid_tool_calls", None):
            return self.malformed_turn(usage)

        calls = [
            ToolCall(id=tc.get("id") or f"call_{i}", name=tc["name"], arguments=dict(tc.get("args") or {}))
            for i, tc in enumerate(response.tool_calls or [], start=1)
        ]
        return CompletionResult(
            message=Message.assistant(_text_of(response.content), calls),
            model=self.model,
            usage=usage,
        )
