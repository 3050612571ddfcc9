"""LangGraph orchestration loop for the Pitchside booking agent.

Architecture:
  One inbound message runs one compiled LangGraph StateGraph:

    1. **route**     — cheap model call that narrows the tool set to the
                       few most relevant tools (falls back to all tools)
    2. **model**     — main model call with the routed tool subset
    3. **tools**     — executes every tool call of the last assistant turn
    4. **finalize**  — extracts the reply and closes the history

  Routing:
    route → model → (tool calls & under the cap?) → tools → model (loop)
                  → (no tool calls / cap hit / provider failure) → finalize → END

  Memory:
    History lives in a :class:`~src.sessions.SessionStore`, keyed by
    ``(tenant_id, user_id)``.  The store's per-identity lock is held for the
    whole load → graph → save turn, so two messages from the same sender are
    processed one after the other while different senders run concurrently.
"""

from __future__ import annotations

import functools
import logging
import operator
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Annotated, Any

from langchain_core.runnables import RunnableConfig
from langgraph.graph import END, StateGraph
from typing_extensions import TypedDict

from src.config import (
    AGENT_MAX_ITERATIONS,
    BUSINESS_TIMEZONE,
    CACHE_MAX_BYTES,
    DATABASE_POOL_MAX,
    DATABASE_URL,
    LLM_MAX_TOKENS,
    ROUTER_MAX_TOKENS,
    ROUTER_TOP_N,
    ROUTING_ENABLED,
    SESSION_IDLE_MINUTES,
    SESSION_MAX_MESSAGES,
)
from src.models import Message, Role, SessionKey, ToolDefinition, Usage, UsageEvent
from src.prompts import get_system_prompt
from src.providers import APOLOGY_TEXT, LLMProvider, create_provider
from src.router import ToolRouter
from src.scheduling import local_now
from src.services.bookings import BookingService
from src.services.cache import TTLCache
from src.services.datastore import BookingStore, InMemoryBookingStore
from src.services.metering import DatabaseUsageSink, LoggingUsageSink, UsageSink, record_safely
from src.services.metrics import metrics
from src.sessions import InMemorySessionStore, SessionStore
from src.tools import ScheduleRenderer, ToolContext, ToolRegistry, build_tool_registry

logger = logging.getLogger(__name__)


# ── State schema ─────────────────────────────────────────────────────


class AgentState(TypedDict):
    """The state that flows through the graph.

    ``messages`` and ``tools_used`` use ``operator.add`` so each node only
    returns what it appends.  ``tools`` is the routed subset for this turn.
    """

    messages: Annotated[list[Message], operator.add]
    user_text: str
    tools: list[ToolDefinition]
    iterations: int
    tools_used: Annotated[list[str], operator.add]
    finished: bool
    reply: str


@dataclass
class AgentReply:
    """Outcome of one turn, ready for the channel layer."""

    text: str
    images: list[bytes] = field(default_factory=list)
    iterations: int = 0
    tools_used: list[str] = field(default_factory=list)


def _context(config: RunnableConfig) -> ToolContext:
    return config["configurable"]["context"]


# ── Agent ────────────────────────────────────────────────────────────


class BookingAgent:
    """Per-message orchestration: route, call the model, run tools, reply.

    Nothing raised inside a turn reaches the caller: provider failures and
    unexpected exceptions end the turn with :data:`APOLOGY_TEXT`.
    """

    def __init__(
        self,
        provider: LLMProvider,
        bookings: BookingService,
        *,
        registry: ToolRegistry | None = None,
        router_provider: LLMProvider | None = None,
        sessions: SessionStore | None = None,
        usage_sink: UsageSink | None = None,
        renderer: ScheduleRenderer | None = None,
        clock: Callable[[], datetime] | None = None,
        max_iterations: int = AGENT_MAX_ITERATIONS,
        max_tokens: int = LLM_MAX_TOKENS,
        routing_enabled: bool = ROUTING_ENABLED,
        router_top_n: int = ROUTER_TOP_N,
        router_max_tokens: int = ROUTER_MAX_TOKENS,
    ):
        self._provider = provider
        self._bookings = bookings
        self._registry = registry or build_tool_registry()
        self._router = ToolRouter(
            router_provider or provider,
            self._registry.definitions,
            top_n=router_top_n,
            max_tokens=router_max_tokens,
            enabled=routing_enabled,
        )
        self._router_provider = router_provider or provider
        self._sessions = sessions or InMemorySessionStore()
        self._usage_sink = usage_sink
        self._renderer = renderer
        self._clock = clock or functools.partial(local_now, BUSINESS_TIMEZONE)
        self._max_iterations = max_iterations
        self._max_tokens = max_tokens
        self._graph = self._build_graph()

    @property
    def sessions(self) -> SessionStore:
        return self._sessions

    @property
    def bookings(self) -> BookingService:
        return self._bookings

    # ── Usage ────────────────────────────────────────────────────────

    async def _record_usage(
        self,
        ctx: ToolContext,
        provider: LLMProvider,
        model: str | None,
        usage: Usage | None,
        request_type: str,
    ) -> None:
        event = UsageEvent(
            tenant_id=ctx.tenant_id,
            user_id=ctx.user_id,
            provider=provider.name,
            model=model or provider.model,
            request_type=request_type,
            usage=usage or Usage(),
        )
        await record_safely(self._usage_sink, event)

    # ── Nodes ────────────────────────────────────────────────────────

    async def _route_node(self, state: AgentState, config: RunnableConfig) -> dict:
        """Narrow the tool set for this message."""
        result = await self._router.select(state["user_text"])
        if result.model is not None:
            await self._record_usage(
                _context(config), self._router_provider, result.model, result.usage, "routing",
            )
        logger.debug(
            "Routed to %s%s",
            [t.name for t in result.tools], " (fallback)" if result.fallback else "",
        )
        return {"tools": result.tools}

    async def _model_node(self, state: AgentState, config: RunnableConfig) -> dict:
        """One provider call with the current history and routed tools."""
        ctx = _context(config)
        t0 = time.perf_counter()
        try:
            result = await self._provider.complete_turn(
                state["messages"], state["tools"], self._max_tokens,
            )
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure(
                self._provider.name, "execute",
                error_type=type(exc).__name__, latency_ms=elapsed,
            )
            logger.exception("Model call failed for %s:%s", ctx.tenant_id, ctx.user_id)
            return {"messages": [Message.assistant(APOLOGY_TEXT)], "finished": True}

        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_success(self._provider.name, "execute", latency_ms=elapsed)
        logger.debug(
            "%s responded in %.0fms (%d tool call(s))",
            self._provider.name, elapsed, len(result.message.tool_calls),
        )

        request_type = "chat_completion" if state["iterations"] == 0 else "tool_call_iteration"
        await self._record_usage(ctx, self._provider, result.model, result.usage, request_type)
        return {"messages": [result.message]}

    async def _tools_node(self, state: AgentState, config: RunnableConfig) -> dict:
        """Run every call of the last assistant turn, one result per call."""
        ctx = _context(config)
        calls = state["messages"][-1].tool_calls
        results = []
        for call in calls:
            content = await self._registry.execute(call, ctx)
            results.append(Message.tool_result(call, content))
        return {
            "messages": results,
            "iterations": state["iterations"] + 1,
            "tools_used": [call.name for call in calls],
        }

    async def _finalize_node(self, state: AgentState) -> dict:
        """Pick the reply text; close the history if calls are still pending."""
        last = state["messages"][-1]
        reply = (last.content or "").strip() or APOLOGY_TEXT
        if last.has_tool_calls:
            logger.warning(
                "Iteration cap (%d) reached with %d pending tool call(s)",
                self._max_iterations, len(last.tool_calls),
            )
            return {"messages": [Message.assistant(reply)], "reply": reply}
        return {"reply": reply}

    # ── Conditional edges ────────────────────────────────────────────

    def _should_use_tools(self, state: AgentState) -> str:
        last = state["messages"][-1]
        if state.get("finished") or not last.has_tool_calls:
            return "finalize"
        if state["iterations"] >= self._max_iterations:
            return "finalize"
        return "tools"

    # ── Graph assembly ───────────────────────────────────────────────

    def _build_graph(self):
        graph = StateGraph(AgentState)

        graph.add_node("route", self._route_node)
        graph.add_node("model", self._model_node)
        graph.add_node("tools", self._tools_node)
        graph.add_node("finalize", self._finalize_node)

        graph.set_entry_point("route")
        graph.add_edge("route", "model")
        graph.add_conditional_edges(
            "model", self._should_use_tools, {"tools": "tools", "finalize": "finalize"},
        )
        graph.add_edge("tools", "model")
        graph.add_edge("finalize", END)

        compiled = graph.compile()
        logger.debug(
            "Booking agent compiled — provider: %s, tools: %d, max iterations: %d",
            self._provider.name, len(self._registry), self._max_iterations,
        )
        return compiled

    # ── Public API ───────────────────────────────────────────────────

    async def handle_message(self, tenant_id: int, user_id: str, text: str) -> AgentReply:
        """Process one inbound message and return the reply."""
        key = SessionKey(tenant_id, user_id)
        async with self._sessions.lock(key):
            t0 = time.perf_counter()
            try:
                reply = await self._run_turn(key, text)
            except Exception:
                logger.exception("Turn failed for %s", key)
                metrics.record_turn(latency_ms=(time.perf_counter() - t0) * 1000, iterations=0, failed=True)
                return AgentReply(text=APOLOGY_TEXT)
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_turn(latency_ms=elapsed, iterations=reply.iterations)
            logger.info(
                "Turn for %s done in %.0fms (%d iteration(s), tools: %s)",
                key, elapsed, reply.iterations, reply.tools_used or "-",
            )
            return reply

    async def _run_turn(self, key: SessionKey, text: str) -> AgentReply:
        now = self._clock()
        stored = await self._sessions.load(key)
        history = [m for m in stored if m.role is not Role.SYSTEM]
        messages = [Message.system(get_system_prompt(now)), *history, Message.user(text)]

        ctx = ToolContext(
            tenant_id=key.tenant_id,
            user_id=key.user_id,
            now=now,
            bookings=self._bookings,
            renderer=self._renderer,
        )
        initial: dict[str, Any] = {
            "messages": messages,
            "user_text": text,
            "tools": [],
            "iterations": 0,
            "tools_used": [],
            "finished": False,
            "reply": "",
        }
        final = await self._graph.ainvoke(
            initial,
            config={
                "configurable": {"context": ctx},
                # route + model + (tools + model) per round + finalize
                "recursion_limit": 2 * self._max_iterations + 10,
            },
        )

        await self._sessions.save(key, final["messages"])
        return AgentReply(
            text=final["reply"],
            images=list(ctx.images),
            iterations=final["iterations"],
            tools_used=list(final["tools_used"]),
        )

    async def reset_session(self, tenant_id: int, user_id: str) -> None:
        key = SessionKey(tenant_id, user_id)
        async with self._sessions.lock(key):
            await self._sessions.clear(key)

    async def aclose(self) -> None:
        await self._bookings.store.close()


# ── Factory ──────────────────────────────────────────────────────────


async def create_booking_agent(
    provider: LLMProvider | None = None,
    *,
    store: BookingStore | None = None,
    renderer: ScheduleRenderer | None = None,
) -> BookingAgent:
    """Wire the agent from configuration.

    Uses PostgreSQL (and the ``token_usage`` table) when ``DATABASE_URL`` is
    set, otherwise an in-memory store with log-only metering.
    """
    if store is None:
        if DATABASE_URL:
            from src.services.postgres import PostgresBookingStore  # noqa: PLC0415

            store = PostgresBookingStore(DATABASE_URL, max_size=DATABASE_POOL_MAX)
        else:
            logger.warning("DATABASE_URL not set; bookings are kept in memory only")
            store = InMemoryBookingStore()
    await store.open()

    usage_sink: UsageSink = (
        DatabaseUsageSink(store) if DATABASE_URL else LoggingUsageSink()
    )
    sessions = InMemorySessionStore(
        idle_timeout=SESSION_IDLE_MINUTES * 60,
        max_messages=SESSION_MAX_MESSAGES,
    )
    return BookingAgent(
        provider or create_provider(),
        BookingService(store, TTLCache(CACHE_MAX_BYTES)),
        sessions=sessions,
        usage_sink=usage_sink,
        renderer=renderer,
    )
