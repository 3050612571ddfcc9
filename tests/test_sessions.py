"""Tests for session compaction, trimming, expiry and identity isolation."""

from __future__ import annotations

import asyncio

import pytest

from src.models import Message, Role, SessionKey, ToolCall
from src.sessions import InMemorySessionStore, compact_history, drop_orphans, trim_history


def _tool_round(call_id: str = "c1") -> list[Message]:
    call = ToolCall(id=call_id, name="show_week_table", arguments={"week_offset": 0})
    return [
        Message.assistant("", [call]),
        Message.tool_result(call, "📊 Tablo"),
    ]


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestCompactHistory:
    def test_drops_tool_round_trips(self):
        history = [
            Message.system("sys"),
            Message.user("tabloyu göster"),
            *_tool_round(),
            Message.assistant("İşte tablo."),
        ]
        compacted = compact_history(history)
        assert [m.role for m in compacted] == [Role.SYSTEM, Role.USER, Role.ASSISTANT]
        assert compacted[-1].content == "İşte tablo."

    def test_is_idempotent(self):
        history = [Message.user("a"), *_tool_round(), Message.assistant("b")]
        once = compact_history(history)
        assert compact_history(once) == once


class TestTrimHistory:
    def test_keeps_system_and_last_messages(self):
        history = [Message.system("sys")]
        for i in range(8):
            history += [Message.user(f"u{i}"), Message.assistant(f"a{i}")]
        trimmed = trim_history(history, 4)
        assert trimmed[0].role is Role.SYSTEM
        assert [m.content for m in trimmed[1:]] == ["u6", "a6", "u7", "a7"]

    def test_never_leaves_orphan_tool_result(self):
        history = [Message.user("u"), *_tool_round(), Message.assistant("a")]
        # Window cuts between the call and its result.
        trimmed = trim_history(history, 2)
        assert all(m.role is not Role.TOOL for m in trimmed)
        assert [m.content for m in trimmed] == ["a"]

    def test_drops_call_missing_a_result(self):
        call_a = ToolCall(id="a", name="x")
        call_b = ToolCall(id="b", name="y")
        history = [
            Message.assistant("", [call_a, call_b]),
            Message.tool_result(call_a, "ok"),
        ]
        assert drop_orphans(history) == []


class TestInMemorySessionStore:
    @pytest.mark.asyncio
    async def test_save_compacts_and_load_returns_copy(self):
        store = InMemorySessionStore()
        key = SessionKey(1, "905321112233")
        await store.save(key, [Message.system("s"), Message.user("u"), *_tool_round(), Message.assistant("a")])

        loaded = await store.load(key)
        assert [m.role for m in loaded] == [Role.SYSTEM, Role.USER, Role.ASSISTANT]
        loaded.append(Message.user("mutated"))
        assert len(await store.load(key)) == 3

    @pytest.mark.asyncio
    async def test_idle_expiry(self):
        clock = FakeClock()
        store = InMemorySessionStore(idle_timeout=900, clock=clock)
        key = SessionKey(1, "u")
        await store.save(key, [Message.user("hi")])

        clock.now = 900
        assert await store.load(key) != []
        clock.now = 901
        assert await store.load(key) == []

    @pytest.mark.asyncio
    async def test_purge_expired(self):
        clock = FakeClock()
        store = InMemorySessionStore(idle_timeout=10, clock=clock)
        await store.save(SessionKey(1, "old"), [Message.user("x")])
        clock.now = 20
        await store.save(SessionKey(1, "new"), [Message.user("y")])

        assert await store.purge_expired() == 1
        assert store.session_count == 1

    @pytest.mark.asyncio
    async def test_tenants_do_not_share_sessions(self):
        store = InMemorySessionStore()
        await store.save(SessionKey(1, "same-user"), [Message.user("tenant one")])
        assert await store.load(SessionKey(2, "same-user")) == []

    @pytest.mark.asyncio
    async def test_clear(self):
        store = InMemorySessionStore()
        key = SessionKey(1, "u")
        await store.save(key, [Message.user("x")])
        await store.clear(key)
        assert await store.load(key) == []


class TestIdentityLock:
    @pytest.mark.asyncio
    async def test_other_identity_is_not_blocked(self):
        store = InMemorySessionStore()

        async def enter_other():
            async with store.lock(SessionKey(1, "b")):
                return True

        async with store.lock(SessionKey(1, "a")):
            assert await asyncio.wait_for(enter_other(), timeout=1)

    @pytest.mark.asyncio
    async def test_same_identity_waits(self):
        store = InMemorySessionStore()
        key = SessionKey(1, "a")
        order = []

        async def turn(name):
            async with store.lock(key):
                order.append(f"{name}:start")
                await asyncio.sleep(0)
                order.append(f"{name}:end")

        await asyncio.gather(turn("first"), turn("second"))
        assert order == ["first:start", "first:end", "second:start", "second:end"]

    @pytest.mark.asyncio
    async def test_lock_is_dropped_when_unused(self):
        store = InMemorySessionStore()
        key = SessionKey(1, "a")
        async with store.lock(key):
            assert store.lock_count == 1
        assert store.lock_count == 0

    @pytest.mark.asyncio
    async def test_lock_is_dropped_after_failed_turn(self):
        store = InMemorySessionStore()
        with pytest.raises(RuntimeError):
            async with store.lock(SessionKey(1, "a")):
                raise RuntimeError("turn failed before save")
        assert store.lock_count == 0

    @pytest.mark.asyncio
    async def test_lock_survives_while_someone_waits(self):
        store = InMemorySessionStore()
        key = SessionKey(1, "a")
        entered = asyncio.Event()
        release = asyncio.Event()

        async def holder():
            async with store.lock(key):
                entered.set()
                await release.wait()

        async def waiter():
            await entered.wait()
            async with store.lock(key):
                pass

        tasks = [asyncio.create_task(holder()), asyncio.create_task(waiter())]
        await entered.wait()
        await asyncio.sleep(0)
        assert store.lock_count == 1
        release.set()
        await asyncio.gather(*tasks)
        assert store.lock_count == 0

    @pytest.mark.asyncio
    async def test_clear_under_lock_leaves_no_entry(self):
        store = InMemorySessionStore()
        key = SessionKey(1, "a")
        await store.save(key, [Message.user("x")])
        async with store.lock(key):
            await store.clear(key)
        assert store.lock_count == 0
        assert store.session_count == 0
