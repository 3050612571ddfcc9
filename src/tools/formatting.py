"""Turkish text rendering of bookings and analytics for tool results."""

from __future__ import annotations

from datetime import date, timedelta

from src.models import CustomerStats, Reservation, SalesSummary
from src.scheduling import WEEKDAY_NAMES_TR


def format_price(price: float | None) -> str:
    if price is None:
        return ""
    return f"{price:g} TL" if float(price).is_integer() else f"{price:.2f} TL"


def format_reservation(reservation: Reservation, *, name_label: str = "Müşteri", date_label: str = "Tarih",
                       time_label: str = "Saat") -> str:
    lines = [
        f"👤 {name_label}: {reservation.customer_name}",
        f"📞 Telefon: {reservation.phone_number}",
        f"📅 {date_label}: {reservation.start:%d.%m.%Y} {WEEKDAY_NAMES_TR[reservation.start.weekday()]}",
        f"⏰ {time_label}: {reservation.start:%H:%M}-{reservation.end:%H:%M}",
    ]
    if reservation.price is not None:
        lines.append(f"💰 Fiyat: {format_price(reservation.price)}")
    if reservation.notes:
        lines.append(f"📝 Not: {reservation.notes}")
    lines.append(f"🔖 ID: {reservation.id}")
    return "\n".join(lines)


def format_reservation_list(query: str, reservations: list[Reservation]) -> str:
    if not reservations:
        return f'❌ "{query}" adına aktif rezervasyon bulunamadı.'

    lines = [f'📋 "{query}" için bulunan rezervasyonlar:', ""]
    for index, r in enumerate(reservations, start=1):
        lines.append(f"{index}. ID: {r.id}")
        lines.append(f"   👤 {r.customer_name}")
        lines.append(f"   📞 {r.phone_number}")
        lines.append(f"   📅 {r.start:%d.%m.%Y} {WEEKDAY_NAMES_TR[r.start.weekday()]}")
        lines.append(f"   ⏰ {r.start:%H:%M}-{r.end:%H:%M}")
        if r.price is not None:
            lines.append(f"   💰 {format_price(r.price)}")
        lines.append("")
    return "\n".join(lines).rstrip()


def format_week_table(monday: date, reservations: list[Reservation]) -> str:
    """Plain-text week table, one block per day."""
    sunday = monday + timedelta(days=6)
    lines = [f"📊 Haftalık Tablo ({monday:%d.%m.%Y} - {sunday:%d.%m.%Y})", ""]
    for offset, day_name in enumerate(WEEKDAY_NAMES_TR):
        day = monday + timedelta(days=offset)
        todays = [r for r in reservations if r.start.date() == day]
        lines.append(f"{day_name} {day:%d.%m}:")
        if not todays:
            lines.append("   —")
        for r in todays:
            lines.append(f"   ⏰ {r.start:%H:%M}-{r.end:%H:%M} {r.customer_name} (ID: {r.id})")
    lines.append("")
    lines.append(f"Toplam {len(reservations)} rezervasyon.")
    return "\n".join(lines)


def format_sales(summary: SalesSummary) -> str:
    return (
        f"📊 {summary.period} Satış Raporu\n\n"
        f"📅 Toplam Rezervasyon: {summary.total_reservations}\n"
        f"⏰ Toplam Saat: {summary.total_hours:.1f} saat\n"
        f"💰 Toplam Gelir: {summary.total_revenue:.2f} TL"
    )


def format_loyal_customers(customers: list[CustomerStats]) -> str:
    if not customers:
        return "📊 Henüz sadık müşteri verisi bulunmamaktadır."
    lines = ["🏆 En Sadık Müşteriler", ""]
    for index, c in enumerate(customers, start=1):
        lines.append(f"{index}. {c.name}")
        lines.append(f"   📞 {c.phone_number}")
        lines.append(f"   📅 {c.count} rezervasyon")
        if c.total_spent:
            lines.append(f"   💰 {c.total_spent:.2f} TL")
        lines.append("")
    return "\n".join(lines).rstrip()


def format_cancellation_customers(customers: list[CustomerStats]) -> str:
    if not customers:
        return "📊 İptal kaydı bulunmamaktadır."
    lines = ["⚠️ En Çok İptal Yapan Müşteriler", ""]
    for index, c in enumerate(customers, start=1):
        lines.append(f"{index}. {c.name}")
        lines.append(f"   📞 {c.phone_number}")
        lines.append(f"   ❌ {c.count} iptal")
        lines.append("")
    return "\n".join(lines).rstrip()
