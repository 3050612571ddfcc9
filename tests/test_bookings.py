"""Tests for BookingService on the in-memory store."""

from __future__ import annotations

import asyncio
from datetime import datetime
from unittest.mock import AsyncMock

import pytest

from src.errors import ConflictError, NotFoundError, ValidationError
from src.models import Reservation, ReservationStatus
from src.services.bookings import BookingService
from src.services.cache import TTLCache
from src.services.datastore import InMemoryBookingStore

EVENING = (datetime(2026, 10, 12, 21), datetime(2026, 10, 12, 22))


class InterleavingStore(InMemoryBookingStore):
    """Yields to the event loop after each overlap query so concurrent writers interleave."""

    def __init__(self) -> None:
        super().__init__()
        self.free_slot_answers = 0

    async def find_overlapping(self, tenant_id, start, end, *, exclude_id=None):
        clashes = await super().find_overlapping(tenant_id, start, end, exclude_id=exclude_id)
        if not clashes:
            self.free_slot_answers += 1
        await asyncio.sleep(0)
        return clashes


@pytest.fixture
def store() -> InMemoryBookingStore:
    return InMemoryBookingStore()


@pytest.fixture
def service(store) -> BookingService:
    return BookingService(store, TTLCache())


# ── Creation & conflicts ─────────────────────────────────────────────


class TestCreateReservation:
    @pytest.mark.asyncio
    async def test_creates_active_booking_with_normalised_phone(self, service):
        r = await service.create_reservation(1, "Ahmet", "0532 111 22 33", *EVENING, price=1500)
        assert r.status is ReservationStatus.ACTIVE
        assert r.phone_number == "05321112233"
        assert r.customer_name == "Ahmet"
        assert r.price == 1500

    @pytest.mark.asyncio
    async def test_overlap_is_rejected_with_details(self, service):
        first = await service.create_reservation(1, "Ahmet", "05321112233", *EVENING)
        with pytest.raises(ConflictError) as exc_info:
            await service.create_reservation(
                1, "Mehmet", "05440000000",
                datetime(2026, 10, 12, 21, 30), datetime(2026, 10, 12, 22, 30),
            )
        assert exc_info.value.existing.id == first.id
        assert "Ahmet" in str(exc_info.value)
        assert f"ID: {first.id}" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_touching_intervals_do_not_conflict(self, service):
        await service.create_reservation(1, "Ahmet", "05321112233", *EVENING)
        r = await service.create_reservation(
            1, "Mehmet", "05440000000", datetime(2026, 10, 12, 22), datetime(2026, 10, 12, 23),
        )
        assert r.start == datetime(2026, 10, 12, 22)

    @pytest.mark.asyncio
    async def test_cancelled_booking_frees_the_slot(self, service):
        first = await service.create_reservation(1, "Ahmet", "05321112233", *EVENING)
        await service.cancel_reservation(1, first.id)
        second = await service.create_reservation(1, "Mehmet", "05440000000", *EVENING)
        assert second.id != first.id

    @pytest.mark.asyncio
    async def test_tenants_do_not_conflict(self, service):
        await service.create_reservation(1, "Ahmet", "05321112233", *EVENING)
        other = await service.create_reservation(2, "Ahmet", "05321112233", *EVENING)
        assert other.tenant_id == 2

    @pytest.mark.asyncio
    async def test_concurrent_creates_for_same_slot(self, service):
        results = await asyncio.gather(
            service.create_reservation(1, "Ahmet", "05321112233", *EVENING),
            service.create_reservation(1, "Mehmet", "05440000000", *EVENING),
            return_exceptions=True,
        )
        created = [r for r in results if isinstance(r, Reservation)]
        conflicts = [r for r in results if isinstance(r, ConflictError)]
        assert len(created) == 1
        assert len(conflicts) == 1

    @pytest.mark.asyncio
    async def test_concurrent_creates_past_the_precheck(self):
        store = InterleavingStore()
        service = BookingService(store, TTLCache())

        results = await asyncio.gather(
            service.create_reservation(1, "Ahmet", "05321112233", *EVENING),
            service.create_reservation(1, "Mehmet", "05440000000", *EVENING),
            return_exceptions=True,
        )

        # Both pre-checks saw a free slot; only the store's own check stops the second.
        assert store.free_slot_answers == 2
        created = [r for r in results if isinstance(r, Reservation)]
        conflicts = [r for r in results if isinstance(r, ConflictError)]
        assert len(created) == 1
        assert len(conflicts) == 1
        assert conflicts[0].existing.id == created[0].id
        assert str(conflicts[0]).startswith("⚠️ Bu saat aralığı dolu!")
        assert created[0].customer_name in str(conflicts[0])

    @pytest.mark.asyncio
    async def test_store_rejects_overlap_the_precheck_missed(self, service, store):
        first = await service.create_reservation(1, "Ahmet", "05321112233", *EVENING)
        store.find_overlapping = AsyncMock(return_value=[])

        with pytest.raises(ConflictError) as exc_info:
            await service.create_reservation(
                1, "Mehmet", "05440000000", datetime(2026, 10, 12, 21, 30), datetime(2026, 10, 12, 22, 30),
            )
        assert exc_info.value.existing.id == first.id
        assert f"(ID: {first.id})" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_store_rejects_move_the_precheck_missed(self, service, store):
        first = await service.create_reservation(1, "Ahmet", "05321112233", *EVENING)
        second = await service.create_reservation(
            1, "Mehmet", "05440000000", datetime(2026, 10, 12, 22), datetime(2026, 10, 12, 23),
        )
        store.find_overlapping = AsyncMock(return_value=[])

        with pytest.raises(ConflictError) as exc_info:
            await service.update_reservation_time(1, second.id, start=EVENING[0], end=EVENING[1])
        assert exc_info.value.existing.id == first.id
        unchanged = await service.get_reservation(1, second.id)
        assert unchanged.start == datetime(2026, 10, 12, 22)

    @pytest.mark.asyncio
    async def test_same_phone_refreshes_customer_name(self, service, store):
        r1 = await service.create_reservation(1, "Ahmet", "05321112233", *EVENING)
        r2 = await service.create_reservation(
            1, "Ahmet Yılmaz", "05321112233", datetime(2026, 10, 13, 21), datetime(2026, 10, 13, 22),
        )
        assert r1.customer_id == r2.customer_id
        customer = await store.get_customer(1, r1.customer_id)
        assert customer.name == "Ahmet Yılmaz"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("name", "phone", "start", "end"),
        [
            ("", "05321112233", *EVENING),
            ("Ahmet", "", *EVENING),
            ("Ahmet", "05321112233", EVENING[1], EVENING[0]),
        ],
    )
    async def test_validation(self, service, name, phone, start, end):
        with pytest.raises(ValidationError):
            await service.create_reservation(1, name, phone, start, end)


# ── Updates & cancellation ───────────────────────────────────────────


class TestUpdates:
    @pytest.mark.asyncio
    async def test_move_booking(self, service):
        r = await service.create_reservation(1, "Ahmet", "05321112233", *EVENING)
        moved = await service.update_reservation_time(
            1, r.id, start=datetime(2026, 10, 14, 20), end=datetime(2026, 10, 14, 21),
        )
        assert moved.start == datetime(2026, 10, 14, 20)

    @pytest.mark.asyncio
    async def test_move_onto_itself_is_not_a_conflict(self, service):
        r = await service.create_reservation(1, "Ahmet", "05321112233", *EVENING)
        moved = await service.update_reservation_time(
            1, r.id, start=EVENING[0], end=datetime(2026, 10, 12, 22, 30),
        )
        assert moved.end == datetime(2026, 10, 12, 22, 30)

    @pytest.mark.asyncio
    async def test_move_into_other_booking_conflicts(self, service):
        await service.create_reservation(1, "Ahmet", "05321112233", *EVENING)
        other = await service.create_reservation(
            1, "Mehmet", "05440000000", datetime(2026, 10, 12, 22), datetime(2026, 10, 12, 23),
        )
        with pytest.raises(ConflictError):
            await service.update_reservation_time(1, other.id, start=EVENING[0], end=EVENING[1])

    @pytest.mark.asyncio
    async def test_price_only_update(self, service):
        r = await service.create_reservation(1, "Ahmet", "05321112233", *EVENING)
        updated = await service.update_reservation_time(1, r.id, price=1800)
        assert updated.price == 1800
        assert (updated.start, updated.end) == EVENING

    @pytest.mark.asyncio
    async def test_nothing_to_update(self, service):
        r = await service.create_reservation(1, "Ahmet", "05321112233", *EVENING)
        with pytest.raises(ValidationError):
            await service.update_reservation_time(1, r.id)

    @pytest.mark.asyncio
    async def test_not_found_and_wrong_tenant(self, service):
        r = await service.create_reservation(1, "Ahmet", "05321112233", *EVENING)
        with pytest.raises(NotFoundError):
            await service.cancel_reservation(1, 999)
        with pytest.raises(NotFoundError):
            await service.cancel_reservation(2, r.id)

    @pytest.mark.asyncio
    async def test_double_cancel(self, service):
        r = await service.create_reservation(1, "Ahmet", "05321112233", *EVENING)
        cancelled = await service.cancel_reservation(1, r.id)
        assert cancelled.status is ReservationStatus.CANCELLED
        with pytest.raises(ValidationError):
            await service.cancel_reservation(1, r.id)

    @pytest.mark.asyncio
    async def test_update_customer_info(self, service):
        r = await service.create_reservation(1, "Ahmet", "05321112233", *EVENING)
        updated = await service.update_customer_info(1, r.id, name="Ahmet Kaya", phone="0533 999 88 77")
        assert updated.customer_name == "Ahmet Kaya"
        assert updated.phone_number == "05339998877"

    @pytest.mark.asyncio
    async def test_update_customer_info_requires_a_field(self, service):
        r = await service.create_reservation(1, "Ahmet", "05321112233", *EVENING)
        with pytest.raises(ValidationError):
            await service.update_customer_info(1, r.id, name="  ")


# ── Reads & caching ──────────────────────────────────────────────────


class TestReads:
    @pytest.mark.asyncio
    async def test_find_by_name_is_case_insensitive_and_active_only(self, service):
        a = await service.create_reservation(1, "Ahmet Yılmaz", "05321112233", *EVENING)
        b = await service.create_reservation(
            1, "Ahmet Yılmaz", "05321112233", datetime(2026, 10, 13, 21), datetime(2026, 10, 13, 22),
        )
        await service.cancel_reservation(1, b.id)
        found = await service.find_by_customer_name(1, "ahmet")
        assert [r.id for r in found] == [a.id]

    @pytest.mark.asyncio
    async def test_week_table_is_cached_and_invalidated(self, service, store, monday):
        await service.create_reservation(1, "Ahmet", "05321112233", *EVENING)
        week_monday, first = await service.reservations_for_week(1, monday)
        assert week_monday.isoformat() == "2026-10-12"
        assert len(first) == 1

        calls = 0
        original = store.reservations_between

        async def counting(*args, **kwargs):
            nonlocal calls
            calls += 1
            return await original(*args, **kwargs)

        store.reservations_between = counting
        _, cached = await service.reservations_for_week(1, monday)
        assert calls == 0
        assert cached[0].start == EVENING[0]

        await service.create_reservation(
            1, "Mehmet", "05440000000", datetime(2026, 10, 14, 21), datetime(2026, 10, 14, 22),
        )
        _, fresh = await service.reservations_for_week(1, monday)
        assert calls == 1
        assert len(fresh) == 2

    @pytest.mark.asyncio
    async def test_sales_summary(self, service, monday):
        await service.create_reservation(1, "Ahmet", "05321112233", *EVENING, price=1500)
        cancelled = await service.create_reservation(
            1, "Mehmet", "05440000000", datetime(2026, 10, 13, 21), datetime(2026, 10, 13, 23), price=3000,
        )
        await service.cancel_reservation(1, cancelled.id)

        summary = await service.sales_summary(1, monday, "week")
        assert summary.period == "Bu Hafta"
        assert summary.total_reservations == 1
        assert summary.total_hours == 1.0
        assert summary.total_revenue == 1500

    @pytest.mark.asyncio
    async def test_sales_summary_rejects_unknown_period(self, service, monday):
        with pytest.raises(ValidationError):
            await service.sales_summary(1, monday, "year")

    @pytest.mark.asyncio
    async def test_customer_rankings(self, service):
        for day in (12, 13, 14):
            await service.create_reservation(
                1, "Ahmet", "05321112233", datetime(2026, 10, day, 21), datetime(2026, 10, day, 22),
            )
        c = await service.create_reservation(1, "Mehmet", "05440000000", datetime(2026, 10, 15, 21),
                                             datetime(2026, 10, 15, 22))
        await service.cancel_reservation(1, c.id)

        loyal = await service.loyal_customers(1, 5)
        assert [s.name for s in loyal] == ["Ahmet"]
        assert loyal[0].count == 3

        cancellers = await service.cancellation_customers(1, 5)
        assert [(s.name, s.count) for s in cancellers] == [("Mehmet", 1)]
