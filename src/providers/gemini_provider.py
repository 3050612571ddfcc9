"""Gemini (Vertex AI) backend via ``google-genai``.

Gemini correlates a function response with its call by the function
**name**, not by an id.  Tool-result messages carry ``name`` for that
reason; if it is missing we recover it from the originating call.

Calls that Gemini returns without an id get a generated ``call_<n>`` id so
the rest of the agent can keep correlating by id.
"""

from __future__ import annotations

import itertools
import logging
from typing import Any

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from src.errors import ProviderError
from src.models import CompletionResult, Message, Role, ToolCall, ToolDefinition, Usage
from src.providers.base import LLMProvider

logger = logging.getLogger(__name__)

_MALFORMED = "MALFORMED_FUNCTION_CALL"


def to_gemini_contents(history: list[Message]) -> tuple[str | None, list[types.Content]]:
    """Split out the system instruction and convert the rest to ``Content``.

    Consecutive tool results are grouped into one ``user`` content so the
    number of function responses matches the preceding model turn.
    """
    system_instruction: str | None = None
    contents: list[types.Content] = []
    call_names: dict[str, str] = {}

    for msg in history:
        if msg.role is Role.SYSTEM:
            system_instruction = msg.content
            continue

        if msg.role is Role.USER:
            contents.append(types.Content(role="user", parts=[types.Part(text=msg.content)]))

        elif msg.role is Role.ASSISTANT:
            parts: list[types.Part] = []
            if msg.content:
                parts.append(types.Part(text=msg.content))
            for tc in msg.tool_calls:
                call_names[tc.id] = tc.name
                parts.append(
                    types.Part(function_call=types.FunctionCall(name=tc.name, args=dict(tc.arguments)))
                )
            if parts:
                contents.append(types.Content(role="model", parts=parts))

        elif msg.role is Role.TOOL:
            name = msg.name or call_names.get(msg.tool_call_id or "", "unknown")
            part = types.Part.from_function_response(name=name, response={"result": msg.content})
            previous = contents[-1] if contents else None
            if previous is not None and previous.role == "user" and all(
                p.function_response is not None for p in previous.parts or []
            ):
                previous.parts.append(part)
            else:
                contents.append(types.Content(role="user", parts=[part]))

    return system_instruction, contents


def to_gemini_tools(tools: list[ToolDefinition]) -> list[types.Tool]:
    declarations = [
        types.FunctionDeclaration(
            name=tool.name,
            description=tool.description,
            parameters_json_schema={
                "type": "object",
                "properties": tool.parameters.get("properties", {}),
                "required": tool.parameters.get("required", []),
            },
        )
        for tool in tools
    ]
    return [types.Tool(function_declarations=declarations)]


def _usage_from(metadata: Any) -> Usage | None:
    if metadata is None:
        return None
    return Usage(
        prompt_tokens=getattr(metadata, "prompt_token_count", None) or 0,
        completion_tokens=getattr(metadata, "candidates_token_count", None) or 0,
        total_tokens=getattr(metadata, "total_token_count", None) or 0,
    )


class GeminiProvider(LLMProvider):
    """``google.genai`` async adapter against Vertex AI."""

    name = "gemini"

    def __init__(
        self,
        model: str,
        *,
        project: str | None = None,
        location: str = "us-central1",
        client: genai.Client | None = None,
    ):
        super().__init__(model)
        self._project = project
        self._location = location
        self._client = client
        self._call_ids = itertools.count(1)

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            self._client = genai.Client(
                vertexai=True, project=self._project, location=self._location,
            )
        return self._client

    async def complete_turn(
        self,
        history: list[Message],
        tools: list[ToolDefinition],
        max_tokens: int,
    ) -> CompletionResult:
        system_instruction, contents = to_gemini_contents(history)
        config = types.GenerateContentConfig(
            system_instruction=system_instruction,
            max_output_tokens=max_tokens,
        )
        if tools:
            config.tools = to_gemini_tools(tools)
            config.tool_config = types.ToolConfig(
                function_calling_config=types.FunctionCallingConfig(
                    mode=types.FunctionCallingConfigMode.AUTO,
                )
            )

        try:
            response = await self.client.aio.models.generate_content(
                model=self.model, contents=contents, config=config,
            )
        except genai_errors.APIError as exc:
            raise ProviderError(f"Gemini request failed: {exc}", provider=self.name) from exc

        usage = _usage_from(getattr(response, "usage_metadata", None))
        candidates = getattr(response, "candidates", None) or []
        if not candidates:
            logger.warning("Gemini returned no candidates")
            return CompletionResult(message=Message.assistant(""), model=self.model, usage=usage)

        candidate = candidates[0]
        finish_reason = getattr(candidate, "finish_reason", None)
        if getattr(finish_reason, "name", finish_reason) == _MALFORMED:
            return self.malformed_turn(usage)

        texts: list[str] = []
        calls: list[ToolCall] = []
        content = getattr(candidate, "content", None)
        for part in getattr(content, "parts", None) or []:
            if getattr(part, "text", None):
                texts.append(part.text)
            fc = getattr(part, "function_call", None)
            if fc is not None:
                call_id = getattr(fc, "id", None) or f"call_{next(self._call_ids)}"
                calls.append(ToolCall(id=call_id, name=fc.name or "", arguments=dict(fc.args or {})))

        return CompletionResult(
            message=Message.assistant("".join(texts), calls),
            model=self.model,
            usage=usage,
        )
