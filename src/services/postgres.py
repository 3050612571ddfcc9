"""PostgreSQL booking store (psycopg 3 + ``psycopg_pool``).

Double booking is prevented by the database itself::

    EXCLUDE USING GIST (tenant_id WITH =, tsrange(start_time, end_time) WITH &&)
        WHERE (status = 'active')

``tsrange`` defaults to ``[)`` bounds, i.e. the same half-open intersection
the service pre-check uses.  A racing insert that slips past the pre-check
fails with ``ExclusionViolation`` and is surfaced as ``ConflictError``.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from psycopg import errors as pg_errors
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from src.errors import ConflictError, NotFoundError
from src.models import (
    Customer,
    CustomerStats,
    ModelUsage,
    Reservation,
    ReservationStatus,
    UsageEvent,
    UsageSummary,
    UsageTotals,
)
from src.services.datastore import OVERLAP_MESSAGE, PHONE_TAKEN_MESSAGE, BookingStore

logger = logging.getLogger(__name__)

SCHEMA_STATEMENTS = (
    "CREATE EXTENSION IF NOT EXISTS btree_gist",
    """
    CREATE TABLE IF NOT EXISTS tenants (
        id SERIAL PRIMARY KEY,
        channel_account_id VARCHAR(64) UNIQUE NOT NULL,
        business_name VARCHAR(255),
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS customers (
        id SERIAL PRIMARY KEY,
        tenant_id INTEGER NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
        name VARCHAR(255) NOT NULL,
        phone_number VARCHAR(32) NOT NULL,
        created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (tenant_id, phone_number)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS reservations (
        id SERIAL PRIMARY KEY,
        tenant_id INTEGER NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
        customer_id INTEGER NOT NULL REFERENCES customers(id) ON DELETE CASCADE,
        start_time TIMESTAMP NOT NULL,
        end_time TIMESTAMP NOT NULL,
        status VARCHAR(16) NOT NULL DEFAULT 'active'
            CHECK (status IN ('active', 'cancelled', 'completed')),
        price NUMERIC(10, 2),
        notes TEXT,
        created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
        CHECK (end_time > start_time),
        CONSTRAINT no_overlapping_reservations EXCLUDE USING GIST (
            tenant_id WITH =,
            tsrange(start_time, end_time) WITH &&
        ) WHERE (status = 'active')
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS token_usage (
        id SERIAL PRIMARY KEY,
        tenant_id INTEGER,
        user_id VARCHAR(64) NOT NULL,
        provider VARCHAR(32) NOT NULL,
        model VARCHAR(100) NOT NULL,
        request_type VARCHAR(64) NOT NULL,
        prompt_tokens INTEGER NOT NULL DEFAULT 0,
        completion_tokens INTEGER NOT NULL DEFAULT 0,
        total_tokens INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_reservations_tenant_start ON reservations(tenant_id, start_time)",
    "CREATE INDEX IF NOT EXISTS idx_reservations_customer ON reservations(customer_id)",
    "CREATE INDEX IF NOT EXISTS idx_token_usage_tenant_created ON token_usage(tenant_id, created_at)",
)

_RESERVATION_SELECT = """
    SELECT r.id, r.tenant_id, r.customer_id, c.name AS customer_name, c.phone_number,
           r.start_time, r.end_time, r.status, r.price, r.notes
    FROM reservations r
    JOIN customers c ON c.id = r.customer_id
"""


def _to_reservation(row: dict[str, Any]) -> Reservation:
    return Reservation(
        id=row["id"],
        tenant_id=row["tenant_id"],
        customer_id=row["customer_id"],
        customer_name=row["customer_name"],
        phone_number=row["phone_number"],
        start=row["start_time"],
        end=row["end_time"],
        status=ReservationStatus(row["status"]),
        price=float(row["price"]) if row["price"] is not None else None,
        notes=row["notes"],
    )


def _to_customer(row: dict[str, Any]) -> Customer:
    return Customer(
        id=row["id"], tenant_id=row["tenant_id"], name=row["name"], phone_number=row["phone_number"],
    )


def _to_stats(row: dict[str, Any]) -> CustomerStats:
    spent = row.get("total_spent")
    return CustomerStats(
        customer_id=row["id"],
        name=row["name"],
        phone_number=row["phone_number"],
        count=int(row["count"]),
        total_spent=float(spent) if spent is not None else None,
    )


class PostgresBookingStore(BookingStore):
    """Connection-pooled store; call :meth:`open` before use."""

    def __init__(self, conninfo: str, *, max_size: int = 20, pool: AsyncConnectionPool | None = None):
        self._pool = pool or AsyncConnectionPool(
            conninfo,
            min_size=1,
            max_size=max_size,
            kwargs={"autocommit": True, "row_factory": dict_row},
            open=False,
        )

    async def open(self) -> None:
        await self._pool.open()
        async with self._pool.connection() as conn:
            for statement in SCHEMA_STATEMENTS:
                await conn.execute(statement)
        logger.info("PostgreSQL booking store ready")

    async def close(self) -> None:
        await self._pool.close()

    async def _fetchone(self, query: str, params: tuple = ()) -> dict[str, Any] | None:
        async with self._pool.connection() as conn:
            cur = await conn.execute(query, params)
            return await cur.fetchone()

    async def _fetchall(self, query: str, params: tuple = ()) -> list[dict[str, Any]]:
        async with self._pool.connection() as conn:
            cur = await conn.execute(query, params)
            return await cur.fetchall()

    async def _existing_for_conflict(
        self, tenant_id: int, start: datetime, end: datetime, exclude_id: int | None = None,
    ) -> ConflictError:
        clashes = await self.find_overlapping(tenant_id, start, end, exclude_id=exclude_id)
        return ConflictError(OVERLAP_MESSAGE, existing=clashes[0] if clashes else None)

    # ── Tenants & customers ──────────────────────────────────────────

    async def get_or_create_tenant(self, channel_account_id: str) -> int:
        row = await self._fetchone(
            """
            INSERT INTO tenants (channel_account_id) VALUES (%s)
            ON CONFLICT (channel_account_id)
            DO UPDATE SET channel_account_id = EXCLUDED.channel_account_id
            RETURNING id
            """,
            (channel_account_id,),
        )
        return row["id"]

    async def upsert_customer(self, tenant_id: int, name: str, phone_number: str) -> Customer:
        row = await self._fetchone(
            """
            INSERT INTO customers (tenant_id, name, phone_number) VALUES (%s, %s, %s)
            ON CONFLICT (tenant_id, phone_number)
            DO UPDATE SET name = EXCLUDED.name, updated_at = CURRENT_TIMESTAMP
            RETURNING id, tenant_id, name, phone_number
            """,
            (tenant_id, name, phone_number),
        )
        return _to_customer(row)

    async def get_customer(self, tenant_id: int, customer_id: int) -> Customer | None:
        row = await self._fetchone(
            "SELECT id, tenant_id, name, phone_number FROM customers WHERE id = %s AND tenant_id = %s",
            (customer_id, tenant_id),
        )
        return _to_customer(row) if row else None

    async def update_customer(
        self,
        tenant_id: int,
        customer_id: int,
        *,
        name: str | None = None,
        phone_number: str | None = None,
    ) -> Customer:
        try:
            row = await self._fetchone(
                """
                UPDATE customers
                SET name = COALESCE(%s, name),
                    phone_number = COALESCE(%s, phone_number),
                    updated_at = CURRENT_TIMESTAMP
                WHERE id = %s AND tenant_id = %s
                RETURNING id, tenant_id, name, phone_number
                """,
                (name, phone_number, customer_id, tenant_id),
            )
        except pg_errors.UniqueViolation as exc:
            raise ConflictError(PHONE_TAKEN_MESSAGE) from exc
        if row is None:
            raise NotFoundError(f"#{customer_id} numaralı müşteri bulunamadı.")
        return _to_customer(row)

    # ── Reservations ─────────────────────────────────────────────────

    async def find_overlapping(
        self,
        tenant_id: int,
        start: datetime,
        end: datetime,
        *,
        exclude_id: int | None = None,
    ) -> list[Reservation]:
        rows = await self._fetchall(
            _RESERVATION_SELECT
            + """
            WHERE r.tenant_id = %s AND r.status = 'active'
              AND r.start_time < %s AND r.end_time > %s
              AND (%s::int IS NULL OR r.id <> %s)
            ORDER BY r.start_time
            """,
            (tenant_id, end, start, exclude_id, exclude_id),
        )
        return [_to_reservation(r) for r in rows]

    async def insert_reservation(
        self,
        tenant_id: int,
        customer_id: int,
        start: datetime,
        end: datetime,
        *,
        price: float | None = None,
        notes: str | None = None,
    ) -> Reservation:
        try:
            row = await self._fetchone(
                """
                INSERT INTO reservations (tenant_id, customer_id, start_time, end_time, price, notes)
                VALUES (%s, %s, %s, %s, %s, %s)
                RETURNING id
                """,
                (tenant_id, customer_id, start, end, price, notes),
            )
        except pg_errors.ExclusionViolation as exc:
            logger.info("Exclusion constraint rejected booking for tenant %d", tenant_id)
            raise await self._existing_for_conflict(tenant_id, start, end) from exc
        return await self.get_reservation(tenant_id, row["id"])

    async def get_reservation(self, tenant_id: int, reservation_id: int) -> Reservation | None:
        row = await self._fetchone(
            _RESERVATION_SELECT + " WHERE r.id = %s AND r.tenant_id = %s",
            (reservation_id, tenant_id),
        )
        return _to_reservation(row) if row else None

    async def update_reservation(
        self,
        tenant_id: int,
        reservation_id: int,
        *,
        start: datetime,
        end: datetime,
        price: float | None,
    ) -> Reservation:
        try:
            row = await self._fetchone(
                """
                UPDATE reservations
                SET start_time = %s, end_time = %s, price = %s, updated_at = CURRENT_TIMESTAMP
                WHERE id = %s AND tenant_id = %s
                RETURNING id
                """,
                (start, end, price, reservation_id, tenant_id),
            )
        except pg_errors.ExclusionViolation as exc:
            raise await self._existing_for_conflict(
                tenant_id, start, end, exclude_id=reservation_id,
            ) from exc
        if row is None:
            raise NotFoundError(f"#{reservation_id} numaralı rezervasyon bulunamadı.")
        return await self.get_reservation(tenant_id, reservation_id)

    async def set_status(
        self, tenant_id: int, reservation_id: int, status: ReservationStatus,
    ) -> Reservation:
        try:
            row = await self._fetchone(
                """
                UPDATE reservations SET status = %s, updated_at = CURRENT_TIMESTAMP
                WHERE id = %s AND tenant_id = %s
                RETURNING id
                """,
                (status.value, reservation_id, tenant_id),
            )
        except pg_errors.ExclusionViolation as exc:
            raise ConflictError(OVERLAP_MESSAGE) from exc
        if row is None:
            raise NotFoundError(f"#{reservation_id} numaralı rezervasyon bulunamadı.")
        return await self.get_reservation(tenant_id, reservation_id)

    async def reservations_between(
        self,
        tenant_id: int,
        start: datetime,
        end: datetime,
        *,
        statuses: tuple[ReservationStatus, ...] = (ReservationStatus.ACTIVE,),
    ) -> list[Reservation]:
        rows = await self._fetchall(
            _RESERVATION_SELECT
            + """
            WHERE r.tenant_id = %s AND r.start_time >= %s AND r.start_time < %s
              AND r.status = ANY(%s)
            ORDER BY r.start_time
            """,
            (tenant_id, start, end, [s.value for s in statuses]),
        )
        return [_to_reservation(r) for r in rows]

    async def find_by_customer_name(self, tenant_id: int, name: str) -> list[Reservation]:
        rows = await self._fetchall(
            _RESERVATION_SELECT
            + """
            WHERE r.tenant_id = %s AND r.status = 'active' AND c.name ILIKE %s
            ORDER BY r.start_time
            """,
            (tenant_id, f"%{name}%"),
        )
        return [_to_reservation(r) for r in rows]

    # ── Analytics ────────────────────────────────────────────────────

    async def sales_totals(
        self, tenant_id: int, start: datetime, end: datetime,
    ) -> tuple[int, float, float]:
        row = await self._fetchone(
            """
            SELECT COUNT(*) AS total_reservations,
                   COALESCE(SUM(EXTRACT(EPOCH FROM (end_time - start_time)) / 3600), 0) AS total_hours,
                   COALESCE(SUM(price), 0) AS total_revenue
            FROM reservations
            WHERE tenant_id = %s AND start_time >= %s AND end_time <= %s
              AND status IN ('active', 'completed')
            """,
            (tenant_id, start, end),
        )
        return int(row["total_reservations"]), float(row["total_hours"]), float(row["total_revenue"])

    async def top_customers(self, tenant_id: int, limit: int) -> list[CustomerStats]:
        rows = await self._fetchall(
            """
            SELECT c.id, c.name, c.phone_number, COUNT(r.id) AS count, SUM(r.price) AS total_spent
            FROM customers c
            JOIN reservations r ON r.customer_id = c.id
            WHERE r.tenant_id = %s AND r.status IN ('active', 'completed')
            GROUP BY c.id
            ORDER BY count DESC, total_spent DESC NULLS LAST, c.id
            LIMIT %s
            """,
            (tenant_id, limit),
        )
        return [_to_stats(r) for r in rows]

    async def top_cancellers(self, tenant_id: int, limit: int) -> list[CustomerStats]:
        rows = await self._fetchall(
            """
            SELECT c.id, c.name, c.phone_number, COUNT(r.id) AS count
            FROM customers c
            JOIN reservations r ON r.customer_id = c.id
            WHERE r.tenant_id = %s AND r.status = 'cancelled'
            GROUP BY c.id
            ORDER BY count DESC, c.id
            LIMIT %s
            """,
            (tenant_id, limit),
        )
        return [_to_stats(r) for r in rows]

    # ── Metering ─────────────────────────────────────────────────────

    async def record_usage(self, event: UsageEvent) -> None:
        async with self._pool.connection() as conn:
            await conn.execute(
                """
                INSERT INTO token_usage
                    (tenant_id, user_id, provider, model, request_type,
                     prompt_tokens, completion_tokens, total_tokens)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    event.tenant_id,
                    event.user_id,
                    event.provider,
                    event.model,
                    event.request_type,
                    event.usage.prompt_tokens,
                    event.usage.completion_tokens,
                    event.usage.total_tokens,
                ),
            )

    async def usage_summary(
        self, tenant_id: int | None = None, since: datetime | None = None,
    ) -> UsageSummary:
        clauses, params = [], []
        if tenant_id is not None:
            clauses.append("tenant_id = %s")
            params.append(tenant_id)
        if since is not None:
            clauses.append("created_at >= %s")
            params.append(since)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = await self._fetchall(
            f"""
            SELECT provider, model, COUNT(*) AS requests,
                   COALESCE(SUM(prompt_tokens), 0) AS prompt_tokens,
                   COALESCE(SUM(completion_tokens), 0) AS completion_tokens,
                   COALESCE(SUM(total_tokens), 0) AS total_tokens
            FROM token_usage
            {where}
            GROUP BY provider, model
            ORDER BY total_tokens DESC, provider, model
            """,
            tuple(params),
        )
        summary = UsageSummary(tenant_id=tenant_id, since=since)
        for r in rows:
            totals = UsageTotals(
                requests=int(r["requests"]),
                prompt_tokens=int(r["prompt_tokens"]),
                completion_tokens=int(r["completion_tokens"]),
                total_tokens=int(r["total_tokens"]),
            )
            summary.by_model.append(ModelUsage(provider=r["provider"], model=r["model"], totals=totals))
            summary.total.requests += totals.requests
            summary.total.prompt_tokens += totals.prompt_tokens
            summary.total.completion_tokens += totals.completion_tokens
            summary.total.total_tokens += totals.total_tokens
        return summary
