"""Tool registry, execution context and per-call fault containment.

A tool is a :class:`~src.models.ToolDefinition` (what the model sees) plus
an async handler ``(args, ctx) -> str`` (what runs).  Handlers return text
for the model; they may raise, and :meth:`ToolRegistry.execute` turns every
exception into an error string so one bad call never aborts the turn.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Protocol

from src.errors import BookingError, ToolExecutionError, ValidationError
from src.models import Reservation, ToolCall, ToolDefinition
from src.services.bookings import BookingService

logger = logging.getLogger(__name__)


class ScheduleRenderer(Protocol):
    """Renders a week of bookings to an image (PNG bytes)."""

    async def render_week(
        self, reservations: list[Reservation], week_start: date, week_offset: int,
    ) -> bytes: ...


@dataclass
class ToolContext:
    """Everything a handler may touch for one turn."""

    tenant_id: int
    user_id: str
    now: datetime
    bookings: BookingService
    renderer: ScheduleRenderer | None = None
    images: list[bytes] = field(default_factory=list)


ToolHandler = Callable[[dict[str, Any], ToolContext], Awaitable[str]]


@dataclass(frozen=True)
class Tool:
    definition: ToolDefinition
    handler: ToolHandler

    @property
    def name(self) -> str:
        return self.definition.name

    async def run(self, args: dict[str, Any], ctx: ToolContext) -> str:
        return await self.handler(args, ctx)


def tool(name: str, description: str, parameters: dict[str, Any]) -> Callable[[ToolHandler], Tool]:
    """Decorator turning an async handler into a :class:`Tool`."""

    def decorator(handler: ToolHandler) -> Tool:
        return Tool(ToolDefinition(name=name, description=description, parameters=parameters), handler)

    return decorator


# ── Argument helpers ─────────────────────────────────────────────────


def require_str(args: dict[str, Any], key: str, label: str) -> str:
    value = args.get(key)
    if value is None or not str(value).strip():
        raise ValidationError(f"{label} eksik.")
    return str(value).strip()


def optional_str(args: dict[str, Any], key: str) -> str | None:
    value = args.get(key)
    if value is None or not str(value).strip():
        return None
    return str(value).strip()


def as_int(args: dict[str, Any], key: str, default: int | None = None) -> int | None:
    value = args.get(key)
    if value is None or value == "":
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError) as exc:
        raise ValidationError(f'"{key}" sayı olmalı, "{value}" geçersiz.') from exc


def as_float(args: dict[str, Any], key: str) -> float | None:
    value = args.get(key)
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f'"{key}" sayı olmalı, "{value}" geçersiz.') from exc


# ── Registry ─────────────────────────────────────────────────────────


class ToolRegistry:
    """Name → tool lookup with fault-contained execution."""

    def __init__(self, tools: list[Tool] | None = None):
        self._tools: dict[str, Tool] = {}
        for t in tools or []:
            self.add(t)

    def add(self, t: Tool) -> None:
        if t.name in self._tools:
            raise ValueError(f"Tool {t.name!r} registered twice")
        self._tools[t.name] = t

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    @property
    def definitions(self) -> list[ToolDefinition]:
        return [t.definition for t in self._tools.values()]

    def __len__(self) -> int:
        return len(self._tools)

    async def execute(self, call: ToolCall, ctx: ToolContext) -> str:
        """Run one call.  Never raises: failures become result text."""
        t = self._tools.get(call.name)
        if t is None:
            logger.warning("Model requested unknown tool %r", call.name)
            return f"❌ Bilinmeyen fonksiyon: {call.name}"

        logger.debug("Executing %s with %s", call.name, call.arguments)
        try:
            return await t.run(call.arguments, ctx)
        except BookingError as exc:
            logger.info("%s rejected: %s", call.name, exc)
            return f"❌ {exc}"
        except Exception as exc:
            error = ToolExecutionError(call.name, exc)
            logger.exception("Tool execution failed: %s", error)
            return f"❌ Hata: {exc or 'Fonksiyon çalıştırılamadı'}"
