"""Booking operations on top of a :class:`~src.services.datastore.BookingStore`.

Conflict detection has two layers:

1. an *advisory* pre-check (``find_overlapping``) that produces a friendly
   message naming the colliding booking, and
2. the datastore's exclusion constraint, which is what actually guarantees
   no two active bookings of a tenant intersect under concurrent writers.

Expensive reads (week table, analytics) are cached.  Every write
invalidates the tenant's ``week:*`` and ``analytics:*`` keys; a cache miss or
a stale hit is always acceptable.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import date, datetime

from src.errors import ConflictError, NotFoundError, ValidationError
from src.models import CustomerStats, Reservation, ReservationStatus, SalesSummary
from src.scheduling import month_range, normalize_phone, week_range, week_start
from src.services.cache import TTLCache
from src.services.datastore import BookingStore

logger = logging.getLogger(__name__)

# ── Cache TTLs (seconds) ────────────────────────────────────────────
WEEK_TABLE_TTL = 300
SALES_TTL = 600
CUSTOMER_RANKING_TTL = 900

SALES_PERIODS = {
    "week": "Bu Hafta",
    "month": "Bu Ay",
    "last_month": "Geçen Ay",
}

MAX_RANKING_LIMIT = 50


def describe_slot(reservation: Reservation) -> str:
    """``"18.10.2026 21:00-22:00"``"""
    return (
        f"{reservation.start:%d.%m.%Y} "
        f"{reservation.start:%H:%M}-{reservation.end:%H:%M}"
    )


def conflict_message(existing: Reservation | None) -> str:
    if existing is None:
        return "⚠️ Bu saat aralığı dolu! Lütfen başka bir saat seçin."
    return (
        f"⚠️ Bu saat aralığı dolu! {describe_slot(existing)} arasında "
        f"{existing.customer_name} ({existing.phone_number}) adına aktif rezervasyon var "
        f"(ID: {existing.id}). Lütfen başka bir saat seçin."
    )


class BookingService:
    """Tenant-scoped booking, cancellation and analytics operations."""

    def __init__(self, store: BookingStore, cache: TTLCache | None = None):
        self._store = store
        self._cache = cache or TTLCache()

    @property
    def store(self) -> BookingStore:
        return self._store

    # ── Cache helpers ────────────────────────────────────────────────

    def _invalidate(self, tenant_id: int) -> None:
        removed = self._cache.invalidate_pattern(f"week:{tenant_id}:*")
        removed += self._cache.invalidate_pattern(f"analytics:{tenant_id}:*")
        logger.debug("Cache: invalidated %d key(s) for tenant %d", removed, tenant_id)

    async def _precheck(
        self,
        tenant_id: int,
        start: datetime,
        end: datetime,
        exclude_id: int | None = None,
    ) -> None:
        clashes = await self._store.find_overlapping(tenant_id, start, end, exclude_id=exclude_id)
        if clashes:
            raise ConflictError(conflict_message(clashes[0]), existing=clashes[0])

    async def _require_reservation(self, tenant_id: int, reservation_id: int) -> Reservation:
        reservation = await self._store.get_reservation(tenant_id, reservation_id)
        if reservation is None:
            raise NotFoundError(f"#{reservation_id} numaralı rezervasyon bulunamadı.")
        return reservation

    @staticmethod
    def _check_interval(start: datetime, end: datetime) -> None:
        if end <= start:
            raise ValidationError("Bitiş saati başlangıç saatinden sonra olmalı.")

    # ── Writes ───────────────────────────────────────────────────────

    async def create_reservation(
        self,
        tenant_id: int,
        customer_name: str,
        phone: str,
        start: datetime,
        end: datetime,
        *,
        price: float | None = None,
        notes: str | None = None,
    ) -> Reservation:
        """Create an active booking for ``[start, end)``.

        Raises:
            ValidationError: missing name, empty phone or inverted interval.
            ConflictError: the slot intersects an active booking of the tenant.
        """
        name = (customer_name or "").strip()
        if not name:
            raise ValidationError("Müşteri adı gerekli.")
        phone_number = normalize_phone(phone)
        self._check_interval(start, end)

        await self._precheck(tenant_id, start, end)
        customer = await self._store.upsert_customer(tenant_id, name, phone_number)
        try:
            reservation = await self._store.insert_reservation(
                tenant_id, customer.id, start, end, price=price, notes=notes,
            )
        except ConflictError as exc:
            # Lost a race the pre-check could not see.
            raise ConflictError(conflict_message(exc.existing), existing=exc.existing) from exc
        finally:
            self._invalidate(tenant_id)

        logger.info(
            "Reservation %d created for tenant %d (%s)",
            reservation.id, tenant_id, describe_slot(reservation),
        )
        return reservation

    async def update_reservation_time(
        self,
        tenant_id: int,
        reservation_id: int,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        price: float | None = None,
    ) -> Reservation:
        current = await self._require_reservation(tenant_id, reservation_id)
        if current.status is not ReservationStatus.ACTIVE:
            raise ValidationError(f"#{reservation_id} numaralı rezervasyon aktif değil, güncellenemez.")
        if start is None and end is None and price is None:
            raise ValidationError("Güncellenecek bir bilgi belirtilmedi (saat, gün veya fiyat).")

        new_start = start or current.start
        new_end = end or current.end
        self._check_interval(new_start, new_end)

        if (new_start, new_end) != (current.start, current.end):
            await self._precheck(tenant_id, new_start, new_end, exclude_id=reservation_id)

        try:
            updated = await self._store.update_reservation(
                tenant_id,
                reservation_id,
                start=new_start,
                end=new_end,
                price=price if price is not None else current.price,
            )
        except ConflictError as exc:
            raise ConflictError(conflict_message(exc.existing), existing=exc.existing) from exc
        finally:
            self._invalidate(tenant_id)

        logger.info("Reservation %d moved to %s", reservation_id, describe_slot(updated))
        return updated

    async def cancel_reservation(self, tenant_id: int, reservation_id: int) -> Reservation:
        current = await self._require_reservation(tenant_id, reservation_id)
        if current.status is not ReservationStatus.ACTIVE:
            raise ValidationError(f"#{reservation_id} numaralı rezervasyon zaten aktif değil.")

        cancelled = await self._store.set_status(tenant_id, reservation_id, ReservationStatus.CANCELLED)
        self._invalidate(tenant_id)
        logger.info("Reservation %d cancelled for tenant %d", reservation_id, tenant_id)
        return cancelled

    async def update_customer_info(
        self,
        tenant_id: int,
        reservation_id: int,
        *,
        name: str | None = None,
        phone: str | None = None,
    ) -> Reservation:
        """Rename / re-number the customer behind a reservation."""
        current = await self._require_reservation(tenant_id, reservation_id)
        new_name = name.strip() if name and name.strip() else None
        new_phone = normalize_phone(phone) if phone and phone.strip() else None
        if new_name is None and new_phone is None:
            raise ValidationError("Yeni isim veya telefon numarası belirtilmedi.")

        await self._store.update_customer(
            tenant_id, current.customer_id, name=new_name, phone_number=new_phone,
        )
        self._invalidate(tenant_id)
        return await self._require_reservation(tenant_id, reservation_id)

    # ── Reads ────────────────────────────────────────────────────────

    async def get_reservation(self, tenant_id: int, reservation_id: int) -> Reservation:
        return await self._require_reservation(tenant_id, reservation_id)

    async def find_by_customer_name(self, tenant_id: int, name: str) -> list[Reservation]:
        needle = (name or "").strip()
        if not needle:
            raise ValidationError("Aranacak müşteri adı gerekli.")
        return await self._store.find_by_customer_name(tenant_id, needle)

    async def reservations_for_week(
        self, tenant_id: int, now: datetime, week_offset: int = 0,
    ) -> tuple[date, list[Reservation]]:
        """Active bookings of the week ``week_offset`` weeks from ``now`` (cached)."""
        monday = week_start(now, week_offset)
        key = f"week:{tenant_id}:{monday.isoformat()}"

        cached = self._cache.get(key)
        if cached is not None:
            return monday, [Reservation.from_dict(r) for r in cached]

        start, end = week_range(now, week_offset)
        reservations = await self._store.reservations_between(tenant_id, start, end)
        self._cache.set(key, [r.to_dict() for r in reservations], ttl=WEEK_TABLE_TTL)
        return monday, reservations

    async def sales_summary(self, tenant_id: int, now: datetime, period: str) -> SalesSummary:
        period = (period or "").strip().lower()
        label = SALES_PERIODS.get(period)
        if label is None:
            raise ValidationError("Geçersiz dönem. week, month veya last_month kullanın.")

        if period == "week":
            start, end = week_range(now, 0)
        elif period == "month":
            start, end = month_range(now, 0)
        else:
            start, end = month_range(now, -1)

        key = f"analytics:{tenant_id}:sales:{start.isoformat()}:{end.isoformat()}"
        cached = self._cache.get(key)
        if cached is not None:
            return SalesSummary(**cached)

        count, hours, revenue = await self._store.sales_totals(tenant_id, start, end)
        summary = SalesSummary(
            period=label, total_reservations=count, total_hours=hours, total_revenue=revenue,
        )
        self._cache.set(key, asdict(summary), ttl=SALES_TTL)
        return summary

    @staticmethod
    def _clamp_limit(limit: int | None) -> int:
        if not limit or limit < 1:
            return 10
        return min(int(limit), MAX_RANKING_LIMIT)

    async def loyal_customers(self, tenant_id: int, limit: int | None = 10) -> list[CustomerStats]:
        limit = self._clamp_limit(limit)
        key = f"analytics:{tenant_id}:loyal:{limit}"
        cached = self._cache.get(key)
        if cached is not None:
            return [CustomerStats(**c) for c in cached]

        customers = await self._store.top_customers(tenant_id, limit)
        self._cache.set(key, [asdict(c) for c in customers], ttl=CUSTOMER_RANKING_TTL)
        return customers

    async def cancellation_customers(self, tenant_id: int, limit: int | None = 10) -> list[CustomerStats]:
        limit = self._clamp_limit(limit)
        key = f"analytics:{tenant_id}:cancellations:{limit}"
        cached = self._cache.get(key)
        if cached is not None:
            return [CustomerStats(**c) for c in cached]

        customers = await self._store.top_cancellers(tenant_id, limit)
        self._cache.set(key, [asdict(c) for c in customers], ttl=CUSTOMER_RANKING_TTL)
        return customers
