"""Per-identity conversation history with idle expiry, compaction and trimming.

Sessions are keyed by :class:`~src.models.SessionKey` (tenant + user) so the
same WhatsApp number writing to two different businesses never shares state.

On every save the history is:

1. **compacted** — tool round trips (assistant tool-call turn + tool
   results) are dropped; the assistant's final text for that turn stays.
2. **trimmed** — only the last ``max_messages`` non-system messages are
   kept, plus the leading system prompt.  Tool calls and their results are
   dropped together so no orphaned tool result ever survives.

Expiry is lazy (checked on ``load``); :meth:`InMemorySessionStore.purge_expired`
is an optional sweep for the server's background task.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field

from src.models import Message, Role, SessionKey

logger = logging.getLogger(__name__)

DEFAULT_IDLE_TIMEOUT_SECONDS = 15 * 60
DEFAULT_MAX_MESSAGES = 10


# ── History transforms ───────────────────────────────────────────────


def compact_history(messages: list[Message]) -> list[Message]:
    """Collapse tool round trips down to the assistant's final text.

    Keeps system, user and plain assistant messages; drops assistant
    tool-call turns and tool results.  Applying it twice is a no-op.
    """
    compacted: list[Message] = []
    for msg in messages:
        if msg.role is Role.TOOL or msg.has_tool_calls:
            continue
        if msg.role is Role.ASSISTANT and not msg.content.strip():
            continue
        compacted.append(msg)
    return compacted


def drop_orphans(messages: list[Message]) -> list[Message]:
    """Remove tool results without their call, and calls without all results."""
    call_ids = {tc.id for m in messages if m.has_tool_calls for tc in m.tool_calls}
    result_ids = {m.tool_call_id for m in messages if m.role is Role.TOOL}

    incomplete = {
        id(m) for m in messages
        if m.has_tool_calls and any(tc.id not in result_ids for tc in m.tool_calls)
    }
    dropped_call_ids = {
        tc.id for m in messages if id(m) in incomplete for tc in m.tool_calls
    }

    cleaned: list[Message] = []
    for msg in messages:
        if id(msg) in incomplete:
            continue
        if msg.role is Role.TOOL and (
            msg.tool_call_id not in call_ids or msg.tool_call_id in dropped_call_ids
        ):
            continue
        cleaned.append(msg)
    return cleaned


def trim_history(messages: list[Message], max_messages: int) -> list[Message]:
    """Keep the leading system message plus the last ``max_messages`` others."""
    system = messages[0] if messages and messages[0].role is Role.SYSTEM else None
    others = [m for m in messages if m.role is not Role.SYSTEM]
    recent = drop_orphans(others[-max_messages:] if max_messages > 0 else [])
    return [system, *recent] if system is not None else recent


# ── Store interface ──────────────────────────────────────────────────


class SessionStore(ABC):
    """Owns conversation histories.  The agent only borrows them per turn."""

    def __init__(self) -> None:
        # key → (lock, holders + waiters); an entry lives only while someone uses it.
        self._locks: dict[SessionKey, tuple[asyncio.Lock, int]] = {}

    @contextlib.asynccontextmanager
    async def lock(self, key: SessionKey) -> AsyncIterator[None]:
        """Identity-scoped lock; hold it for a whole load → process → save turn."""
        lock, users = self._locks.get(key) or (asyncio.Lock(), 0)
        self._locks[key] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            _, users = self._locks[key]
            if users == 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, users - 1)

    @property
    def lock_count(self) -> int:
        return len(self._locks)

    @abstractmethod
    async def load(self, key: SessionKey) -> list[Message]:
        """Return the stored history, or ``[]`` if absent or expired."""

    @abstractmethod
    async def save(self, key: SessionKey, messages: list[Message]) -> None:
        """Compact, trim and persist ``messages`` (last write wins)."""

    @abstractmethod
    async def clear(self, key: SessionKey) -> None:
        """Forget the session."""


@dataclass
class _SessionEntry:
    messages: list[Message] = field(default_factory=list)
    last_activity: float = 0.0


class InMemorySessionStore(SessionStore):
    """Process-local session store.  Data is lost on restart."""

    def __init__(
        self,
        *,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT_SECONDS,
        max_messages: int = DEFAULT_MAX_MESSAGES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__()
        self._idle_timeout = idle_timeout
        self._max_messages = max_messages
        self._clock = clock
        self._sessions: dict[SessionKey, _SessionEntry] = {}

    def _is_expired(self, entry: _SessionEntry) -> bool:
        return self._clock() - entry.last_activity > self._idle_timeout

    async def load(self, key: SessionKey) -> list[Message]:
        entry = self._sessions.get(key)
        if entry is None:
            return []
        if self._is_expired(entry):
            self._sessions.pop(key, None)
            logger.info("Session expired for %s", key)
            return []
        return list(entry.messages)

    async def save(self, key: SessionKey, messages: list[Message]) -> None:
        stored = trim_history(compact_history(messages), self._max_messages)
        self._sessions[key] = _SessionEntry(messages=stored, last_activity=self._clock())
        logger.debug(
            "Saved session %s (%d → %d messages)", key, len(messages), len(stored),
        )

    async def clear(self, key: SessionKey) -> None:
        self._sessions.pop(key, None)
        logger.info("Conversation history cleared for %s", key)

    async def purge_expired(self) -> int:
        """Drop every expired session.  Returns the count removed."""
        expired = [k for k, e in self._sessions.items() if self._is_expired(e)]
        for key in expired:
            self._sessions.pop(key, None)
        if expired:
            logger.info("Purged %d expired session(s)", len(expired))
        return len(expired)

    @property
    def session_count(self) -> int:
        return len(self._sessions)
