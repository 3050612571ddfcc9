"""Tests for the PostgreSQL store's row mapping and error translation.

The connection pool is replaced by a fake whose connections hand back
scripted rows, so no database is needed.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from psycopg import errors as pg_errors

from src.errors import ConflictError
from src.models import ReservationStatus, Usage, UsageEvent
from src.services.postgres import PostgresBookingStore

ROW = {
    "id": 11,
    "tenant_id": 1,
    "customer_id": 4,
    "customer_name": "Ahmet",
    "phone_number": "05321112233",
    "start_time": datetime(2026, 10, 12, 21),
    "end_time": datetime(2026, 10, 12, 22),
    "status": "active",
    "price": Decimal("1500.00"),
    "notes": None,
}


class FakePool:
    """Stands in for ``AsyncConnectionPool``; every ``execute`` pops the next result."""

    def __init__(self, *results):
        self.results = list(results)
        self.conn = MagicMock()
        self.conn.execute = AsyncMock(side_effect=self._execute)

    async def _execute(self, query, params=()):
        result = self.results.pop(0) if self.results else None
        if isinstance(result, Exception):
            raise result
        cursor = MagicMock()
        cursor.fetchone = AsyncMock(return_value=result[0] if result else None)
        cursor.fetchall = AsyncMock(return_value=result or [])
        return cursor

    @asynccontextmanager
    async def connection(self):
        yield self.conn


class TestRowMapping:
    @pytest.mark.asyncio
    async def test_get_reservation(self):
        store = PostgresBookingStore("", pool=FakePool([ROW]))
        reservation = await store.get_reservation(1, 11)
        assert reservation.status is ReservationStatus.ACTIVE
        assert reservation.price == 1500.0
        assert reservation.customer_name == "Ahmet"

    @pytest.mark.asyncio
    async def test_missing_reservation(self):
        store = PostgresBookingStore("", pool=FakePool([]))
        assert await store.get_reservation(1, 99) is None

    @pytest.mark.asyncio
    async def test_queries_are_tenant_scoped(self):
        pool = FakePool([ROW])
        store = PostgresBookingStore("", pool=pool)
        await store.get_reservation(7, 11)
        query, params = pool.conn.execute.call_args.args
        assert "r.tenant_id = %s" in query
        assert 7 in params


class TestExclusionViolation:
    @pytest.mark.asyncio
    async def test_insert_race_becomes_conflict(self):
        pool = FakePool(pg_errors.ExclusionViolation("conflicting key value"), [ROW])
        store = PostgresBookingStore("", pool=pool)

        with pytest.raises(ConflictError) as exc_info:
            await store.insert_reservation(
                1, 5, datetime(2026, 10, 12, 21, 30), datetime(2026, 10, 12, 22, 30),
            )
        assert exc_info.value.existing.id == 11


class TestRecordUsage:
    @pytest.mark.asyncio
    async def test_inserts_token_usage_row(self):
        pool = FakePool()
        store = PostgresBookingStore("", pool=pool)
        event = UsageEvent(1, "905551112233", "gemini", "gemini-2.0-flash", "routing", Usage(10, 2, 12))

        await store.record_usage(event)

        query, params = pool.conn.execute.call_args.args
        assert "INSERT INTO token_usage" in query
        assert params == (1, "905551112233", "gemini", "gemini-2.0-flash", "routing", 10, 2, 12)


class TestUsageSummary:
    @pytest.mark.asyncio
    async def test_groups_by_backend_and_model(self):
        pool = FakePool([
            {"provider": "openai", "model": "gpt-4o-mini", "requests": 3, "prompt_tokens": 307,
             "completion_tokens": 53, "total_tokens": 360},
            {"provider": "gemini", "model": "gemini-2.0-flash", "requests": 1, "prompt_tokens": 40,
             "completion_tokens": 5, "total_tokens": 45},
        ])
        store = PostgresBookingStore("", pool=pool)

        summary = await store.usage_summary(1, datetime(2026, 10, 1))

        query, params = pool.conn.execute.call_args.args
        assert "GROUP BY provider, model" in query
        assert "tenant_id = %s AND created_at >= %s" in query
        assert params == (1, datetime(2026, 10, 1))
        assert summary.total.requests == 4
        assert summary.total.total_tokens == 405
        assert [m.model for m in summary.by_model] == ["gpt-4o-mini", "gemini-2.0-flash"]

    @pytest.mark.asyncio
    async def test_all_tenants_has_no_filter(self):
        pool = FakePool([])
        store = PostgresBookingStore("", pool=pool)

        summary = await store.usage_summary()

        query, params = pool.conn.execute.call_args.args
        assert "WHERE" not in query
        assert params == ()
        assert summary.total.requests == 0
        assert summary.by_model == []
