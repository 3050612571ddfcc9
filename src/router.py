"""Two-stage tool routing.

Stage 1 sends only ``name: description`` for every tool and asks the model
for a comma-separated shortlist.  Stage 2 (the agent graph) then sends full
JSON schemas for the shortlist only, which keeps the per-turn payload small.

Routing never fails a turn: an empty, unparseable or errored selection
falls back to the full tool set.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass

from src.errors import RoutingFailure
from src.models import Message, ToolDefinition, Usage
from src.prompts import get_routing_prompt
from src.providers.base import LLMProvider
from src.services.metrics import metrics

logger = logging.getLogger(__name__)

_SPLIT_RE = re.compile(r"[,\s]+")
_STRIP_CHARS = "`'\"*•-.:;()[]{}"


@dataclass
class RoutingResult:
    tools: list[ToolDefinition]
    fallback: bool = False
    usage: Usage | None = None
    model: str | None = None


class ToolRouter:
    """Pick the most relevant tools for one user message."""

    def __init__(
        self,
        provider: LLMProvider,
        tools: list[ToolDefinition],
        *,
        top_n: int = 3,
        max_tokens: int = 200,
        enabled: bool = True,
    ):
        self._provider = provider
        self._tools = list(tools)
        self._by_name = {tool.name: tool for tool in self._tools}
        self._top_n = top_n
        self._max_tokens = max_tokens
        self._enabled = enabled

    @property
    def tools(self) -> list[ToolDefinition]:
        return list(self._tools)

    def parse_selection(self, text: str) -> list[ToolDefinition]:
        """Map a model reply to known tools: de-duplicated, capped at N."""
        selected: list[ToolDefinition] = []
        for token in _SPLIT_RE.split(text or ""):
            name = token.strip(_STRIP_CHARS)
            tool = self._by_name.get(name)
            if tool is None or tool in selected:
                continue
            selected.append(tool)
            if len(selected) >= self._top_n:
                break
        return selected

    async def select(self, user_text: str) -> RoutingResult:
        """Return the routed subset, or every tool with ``fallback=True``."""
        if not self._enabled or len(self._tools) <= self._top_n:
            return RoutingResult(tools=self.tools)

        prompt = [
            Message.system(get_routing_prompt(self._tools, self._top_n)),
            Message.user(user_text),
        ]
        t0 = time.perf_counter()
        usage: Usage | None = None
        model: str | None = None
        try:
            result = await self._provider.complete_turn(prompt, [], self._max_tokens)
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_success(self._provider.name, "route", latency_ms=elapsed)
            usage, model = result.usage, result.model

            selected = self.parse_selection(result.message.content)
            if not selected:
                raise RoutingFailure(f"no known tool in {result.message.content!r}")

            logger.debug(
                "Router selected %s (%.0fms)", [t.name for t in selected], elapsed,
            )
            return RoutingResult(tools=selected, usage=usage, model=model)

        except RoutingFailure as exc:
            logger.warning("Tool routing produced nothing usable, using all tools: %s", exc)
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure(
                self._provider.name, "route",
                error_type=type(exc).__name__, latency_ms=elapsed,
            )
            logger.warning("Tool routing failed, using all tools: %s", exc)

        return RoutingResult(tools=self.tools, fallback=True, usage=usage, model=model)
