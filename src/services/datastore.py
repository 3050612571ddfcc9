"""Booking datastore interface and the in-memory implementation.

The datastore is the sole authority for booking-conflict correctness: an
``insert_reservation`` / ``update_reservation`` that would overlap another
*active* reservation of the same tenant raises
:class:`~src.errors.ConflictError`, no matter what the caller pre-checked.

:class:`InMemoryBookingStore` enforces that with one ``asyncio.Lock`` around
every write (check + write happen atomically).  It backs the CLI and the
test-suite; production uses :class:`~src.services.postgres.PostgresBookingStore`.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime

from src.errors import ConflictError, NotFoundError
from src.models import (
    Customer,
    CustomerStats,
    ModelUsage,
    Reservation,
    ReservationStatus,
    UsageEvent,
    UsageSummary,
)

logger = logging.getLogger(__name__)

OVERLAP_MESSAGE = "Bu saat aralığında zaten aktif bir rezervasyon var."
PHONE_TAKEN_MESSAGE = "Bu telefon numarası başka bir müşteriye kayıtlı."

# Reservations counted as "sold" in analytics.
BILLABLE_STATUSES = (ReservationStatus.ACTIVE, ReservationStatus.COMPLETED)


class BookingStore(ABC):
    """Tenant-scoped persistence for customers, reservations and usage."""

    async def open(self) -> None:  # noqa: B027
        """Acquire resources (connection pool, schema)."""

    async def close(self) -> None:  # noqa: B027
        """Release resources."""

    # ── Tenants & customers ──────────────────────────────────────────

    @abstractmethod
    async def get_or_create_tenant(self, channel_account_id: str) -> int:
        """Atomically map a channel account (business phone number) to a tenant id."""

    @abstractmethod
    async def upsert_customer(self, tenant_id: int, name: str, phone_number: str) -> Customer:
        """Insert or refresh the name of the customer with this phone number."""

    @abstractmethod
    async def get_customer(self, tenant_id: int, customer_id: int) -> Customer | None: ...

    @abstractmethod
    async def update_customer(
        self,
        tenant_id: int,
        customer_id: int,
        *,
        name: str | None = None,
        phone_number: str | None = None,
    ) -> Customer:
        """Raises ``NotFoundError`` or ``ConflictError`` (phone already taken)."""

    # ── Reservations ─────────────────────────────────────────────────

    @abstractmethod
    async def find_overlapping(
        self,
        tenant_id: int,
        start: datetime,
        end: datetime,
        *,
        exclude_id: int | None = None,
    ) -> list[Reservation]:
        """Active reservations intersecting ``[start, end)``."""

    @abstractmethod
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
        """Raises ``ConflictError`` if the exclusion constraint rejects the row."""

    @abstractmethod
    async def get_reservation(self, tenant_id: int, reservation_id: int) -> Reservation | None: ...

    @abstractmethod
    async def update_reservation(
        self,
        tenant_id: int,
        reservation_id: int,
        *,
        start: datetime,
        end: datetime,
        price: float | None,
    ) -> Reservation:
        """Raises ``NotFoundError`` or ``ConflictError``."""

    @abstractmethod
    async def set_status(
        self, tenant_id: int, reservation_id: int, status: ReservationStatus,
    ) -> Reservation:
        """Raises ``NotFoundError``."""

    @abstractmethod
    async def reservations_between(
        self,
        tenant_id: int,
        start: datetime,
        end: datetime,
        *,
        statuses: tuple[ReservationStatus, ...] = (ReservationStatus.ACTIVE,),
    ) -> list[Reservation]:
        """Reservations starting in ``[start, end)``, ordered by start."""

    @abstractmethod
    async def find_by_customer_name(self, tenant_id: int, name: str) -> list[Reservation]:
        """Active reservations whose customer name contains ``name`` (case-insensitive)."""

    # ── Analytics ────────────────────────────────────────────────────

    @abstractmethod
    async def sales_totals(
        self, tenant_id: int, start: datetime, end: datetime,
    ) -> tuple[int, float, float]:
        """``(reservation_count, hours, revenue)`` of billable bookings inside the range."""

    @abstractmethod
    async def top_customers(self, tenant_id: int, limit: int) -> list[CustomerStats]: ...

    @abstractmethod
    async def top_cancellers(self, tenant_id: int, limit: int) -> list[CustomerStats]: ...

    # ── Metering ─────────────────────────────────────────────────────

    @abstractmethod
    async def record_usage(self, event: UsageEvent) -> None: ...

    @abstractmethod
    async def usage_summary(
        self, tenant_id: int | None = None, since: datetime | None = None,
    ) -> UsageSummary:
        """Totals and a per-backend/model breakdown of recorded token usage.

        ``tenant_id=None`` sums every tenant; ``since=None`` covers all history.
        """


# ── In-memory implementation ─────────────────────────────────────────


@dataclass
class _ReservationRow:
    id: int
    tenant_id: int
    customer_id: int
    start: datetime
    end: datetime
    status: ReservationStatus = ReservationStatus.ACTIVE
    price: float | None = None
    notes: str | None = None

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return start < self.end and end > self.start


class InMemoryBookingStore(BookingStore):
    """Process-local store.  Data is lost on restart."""

    def __init__(self) -> None:
        self._tenants: dict[str, int] = {}
        self._customers: dict[int, Customer] = {}
        self._reservations: dict[int, _ReservationRow] = {}
        self.usage_events: list[UsageEvent] = []
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()

    # ── Helpers ──────────────────────────────────────────────────────

    def _join(self, row: _ReservationRow) -> Reservation:
        customer = self._customers[row.customer_id]
        return Reservation(
            id=row.id,
            tenant_id=row.tenant_id,
            customer_id=row.customer_id,
            customer_name=customer.name,
            phone_number=customer.phone_number,
            start=row.start,
            end=row.end,
            status=row.status,
            price=row.price,
            notes=row.notes,
        )

    def _row(self, tenant_id: int, reservation_id: int) -> _ReservationRow | None:
        row = self._reservations.get(reservation_id)
        if row is None or row.tenant_id != tenant_id:
            return None
        return row

    def _overlapping_rows(
        self, tenant_id: int, start: datetime, end: datetime, exclude_id: int | None = None,
    ) -> list[_ReservationRow]:
        return sorted(
            (
                r for r in self._reservations.values()
                if r.tenant_id == tenant_id
                and r.status is ReservationStatus.ACTIVE
                and r.id != exclude_id
                and r.overlaps(start, end)
            ),
            key=lambda r: r.start,
        )

    def _conflict(self, rows: list[_ReservationRow]) -> ConflictError:
        return ConflictError(OVERLAP_MESSAGE, existing=self._join(rows[0]))

    # ── Tenants & customers ──────────────────────────────────────────

    async def get_or_create_tenant(self, channel_account_id: str) -> int:
        async with self._lock:
            tenant_id = self._tenants.get(channel_account_id)
            if tenant_id is None:
                tenant_id = self._tenants[channel_account_id] = len(self._tenants) + 1
                logger.info("Created tenant %d for channel account %s", tenant_id, channel_account_id)
            return tenant_id

    async def upsert_customer(self, tenant_id: int, name: str, phone_number: str) -> Customer:
        async with self._lock:
            for customer in self._customers.values():
                if customer.tenant_id == tenant_id and customer.phone_number == phone_number:
                    customer.name = name
                    return replace(customer)
            customer = Customer(id=next(self._ids), tenant_id=tenant_id, name=name, phone_number=phone_number)
            self._customers[customer.id] = customer
            return replace(customer)

    async def get_customer(self, tenant_id: int, customer_id: int) -> Customer | None:
        customer = self._customers.get(customer_id)
        if customer is None or customer.tenant_id != tenant_id:
            return None
        return replace(customer)

    async def update_customer(
        self,
        tenant_id: int,
        customer_id: int,
        *,
        name: str | None = None,
        phone_number: str | None = None,
    ) -> Customer:
        async with self._lock:
            customer = self._customers.get(customer_id)
            if customer is None or customer.tenant_id != tenant_id:
                raise NotFoundError(f"#{customer_id} numaralı müşteri bulunamadı.")
            if phone_number is not None and any(
                c.tenant_id == tenant_id and c.phone_number == phone_number and c.id != customer_id
                for c in self._customers.values()
            ):
                raise ConflictError(PHONE_TAKEN_MESSAGE)
            if name is not None:
                customer.name = name
            if phone_number is not None:
                customer.phone_number = phone_number
            return replace(customer)

    # ── Reservations ─────────────────────────────────────────────────

    async def find_overlapping(
        self,
        tenant_id: int,
        start: datetime,
        end: datetime,
        *,
        exclude_id: int | None = None,
    ) -> list[Reservation]:
        return [self._join(r) for r in self._overlapping_rows(tenant_id, start, end, exclude_id)]

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
        async with self._lock:
            clashes = self._overlapping_rows(tenant_id, start, end)
            if clashes:
                raise self._conflict(clashes)
            row = _ReservationRow(
                id=next(self._ids),
                tenant_id=tenant_id,
                customer_id=customer_id,
                start=start,
                end=end,
                price=price,
                notes=notes,
            )
            self._reservations[row.id] = row
            return self._join(row)

    async def get_reservation(self, tenant_id: int, reservation_id: int) -> Reservation | None:
        row = self._row(tenant_id, reservation_id)
        return self._join(row) if row is not None else None

    async def update_reservation(
        self,
        tenant_id: int,
        reservation_id: int,
        *,
        start: datetime,
        end: datetime,
        price: float | None,
    ) -> Reservation:
        async with self._lock:
            row = self._row(tenant_id, reservation_id)
            if row is None:
                raise NotFoundError(f"#{reservation_id} numaralı rezervasyon bulunamadı.")
            if row.status is ReservationStatus.ACTIVE:
                clashes = self._overlapping_rows(tenant_id, start, end, exclude_id=reservation_id)
                if clashes:
                    raise self._conflict(clashes)
            row.start, row.end, row.price = start, end, price
            return self._join(row)

    async def set_status(
        self, tenant_id: int, reservation_id: int, status: ReservationStatus,
    ) -> Reservation:
        async with self._lock:
            row = self._row(tenant_id, reservation_id)
            if row is None:
                raise NotFoundError(f"#{reservation_id} numaralı rezervasyon bulunamadı.")
            if status is ReservationStatus.ACTIVE and row.status is not ReservationStatus.ACTIVE:
                clashes = self._overlapping_rows(tenant_id, row.start, row.end, exclude_id=reservation_id)
                if clashes:
                    raise self._conflict(clashes)
            row.status = status
            return self._join(row)

    async def reservations_between(
        self,
        tenant_id: int,
        start: datetime,
        end: datetime,
        *,
        statuses: tuple[ReservationStatus, ...] = (ReservationStatus.ACTIVE,),
    ) -> list[Reservation]:
        rows = sorted(
            (
                r for r in self._reservations.values()
                if r.tenant_id == tenant_id and r.status in statuses and start <= r.start < end
            ),
            key=lambda r: r.start,
        )
        return [self._join(r) for r in rows]

    async def find_by_customer_name(self, tenant_id: int, name: str) -> list[Reservation]:
        needle = name.casefold()
        matches = [
            self._join(r) for r in self._reservations.values()
            if r.tenant_id == tenant_id
            and r.status is ReservationStatus.ACTIVE
            and needle in self._customers[r.customer_id].name.casefold()
        ]
        return sorted(matches, key=lambda r: r.start)

    # ── Analytics ────────────────────────────────────────────────────

    async def sales_totals(
        self, tenant_id: int, start: datetime, end: datetime,
    ) -> tuple[int, float, float]:
        sold = [
            r for r in self._reservations.values()
            if r.tenant_id == tenant_id
            and r.status in BILLABLE_STATUSES
            and r.start >= start
            and r.end <= end
        ]
        hours = sum((r.end - r.start).total_seconds() / 3600 for r in sold)
        revenue = sum(r.price or 0.0 for r in sold)
        return len(sold), hours, revenue

    def _stats(self, tenant_id: int, statuses: tuple[ReservationStatus, ...]) -> list[CustomerStats]:
        stats: dict[int, CustomerStats] = {}
        for r in self._reservations.values():
            if r.tenant_id != tenant_id or r.status not in statuses:
                continue
            entry = stats.get(r.customer_id)
            if entry is None:
                customer = self._customers[r.customer_id]
                entry = stats[r.customer_id] = CustomerStats(
                    customer_id=customer.id,
                    name=customer.name,
                    phone_number=customer.phone_number,
                    count=0,
                )
            entry.count += 1
            if r.price is not None:
                entry.total_spent = (entry.total_spent or 0.0) + r.price
        return list(stats.values())

    async def top_customers(self, tenant_id: int, limit: int) -> list[CustomerStats]:
        ranked = sorted(
            self._stats(tenant_id, BILLABLE_STATUSES),
            key=lambda s: (-s.count, -(s.total_spent or 0.0), s.customer_id),
        )
        return ranked[:limit]

    async def top_cancellers(self, tenant_id: int, limit: int) -> list[CustomerStats]:
        ranked = sorted(
            self._stats(tenant_id, (ReservationStatus.CANCELLED,)),
            key=lambda s: (-s.count, s.customer_id),
        )
        for entry in ranked:
            entry.total_spent = None
        return ranked[:limit]

    # ── Metering ─────────────────────────────────────────────────────

    async def record_usage(self, event: UsageEvent) -> None:
        self.usage_events.append(event)

    async def usage_summary(
        self, tenant_id: int | None = None, since: datetime | None = None,
    ) -> UsageSummary:
        summary = UsageSummary(tenant_id=tenant_id, since=since)
        groups: dict[tuple[str, str], ModelUsage] = {}
        for event in self.usage_events:
            if tenant_id is not None and event.tenant_id != tenant_id:
                continue
            if since is not None and event.created_at < since:
                continue
            summary.total.add(event.usage)
            key = (event.provider, event.model)
            if key not in groups:
                groups[key] = ModelUsage(provider=event.provider, model=event.model)
            groups[key].totals.add(event.usage)
        summary.by_model = sorted(groups.values(), key=lambda g: (-g.totals.total_tokens, g.provider, g.model))
        return summary
