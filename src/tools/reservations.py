"""Booking tools: create, look up, move, cancel, week table."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from src.errors import ValidationError
from src.scheduling import (
    WEEKDAY_NAMES_TR,
    at_hour,
    parse_time_slot,
    resolve_date,
    resolve_interval,
)
from src.tools.base import ToolContext, as_float, as_int, optional_str, require_str, tool
from src.tools.formatting import format_reservation, format_reservation_list, format_week_table

logger = logging.getLogger(__name__)

_TIME_SLOT_HINT = (
    'ÖNEMLI: Eğer kullanıcı "sabah" derse "sabah 9-10" yaz, yoksa sadece "9-10" yaz.'
)
_DAY_HINT = "Haftanın günü (pazartesi, salı, çarşamba, perşembe, cuma, cumartesi, pazar)"


@tool(
    name="get_current_time",
    description="İstanbul saat diliminde şu anki tarihi ve saati döndürür",
    parameters={"type": "object", "properties": {}, "required": []},
)
async def get_current_time(args: dict[str, Any], ctx: ToolContext) -> str:
    now = ctx.now
    return (
        f"📅 Bugün: {now:%d.%m.%Y} {WEEKDAY_NAMES_TR[now.weekday()]}\n"
        f"⏰ Saat: {now:%H:%M}"
    )


@tool(
    name="create_reservation",
    description=(
        "Yeni bir rezervasyon oluşturur. ZORUNLU: customer_name ve customer_phone. "
        "Soyisim opsiyonel, sadece isim yeterli."
    ),
    parameters={
        "type": "object",
        "properties": {
            "customer_name": {
                "type": "string",
                "description": "Müşteri adı (soyisim opsiyonel, sadece isim de olabilir)",
            },
            "customer_phone": {
                "type": "string",
                "description": "Müşteri telefon numarası (ZORUNLU - yoksa kullanıcıya sor)",
            },
            "time_slot": {
                "type": "string",
                "description": f'Saat aralığı. {_TIME_SLOT_HINT} Örnekler: "9-10", "sabah 9-10", "14-15"',
            },
            "week_offset": {
                "type": "number",
                "description": (
                    "Hafta offset (0: bu hafta, 1: gelecek hafta, -1: geçen hafta). "
                    '"bugün" ve "yarın" için 0 kullan, günü day_of_week ile belirt'
                ),
            },
            "day_of_week": {"type": "string", "description": _DAY_HINT},
            "price": {"type": "number", "description": "Rezervasyon fiyatı (opsiyonel)"},
            "notes": {"type": "string", "description": "Ek notlar (opsiyonel)"},
        },
        "required": ["customer_name", "customer_phone", "time_slot", "week_offset", "day_of_week"],
    },
)
async def create_reservation(args: dict[str, Any], ctx: ToolContext) -> str:
    name = require_str(args, "customer_name", "Müşteri adı")
    phone = require_str(args, "customer_phone", "Telefon numarası")
    slot = require_str(args, "time_slot", "Saat aralığı")
    day = require_str(args, "day_of_week", "Gün")
    start, end = resolve_interval(ctx.now, as_int(args, "week_offset", 0), day, slot)

    reservation = await ctx.bookings.create_reservation(
        ctx.tenant_id,
        name,
        phone,
        start,
        end,
        price=as_float(args, "price"),
        notes=optional_str(args, "notes"),
    )
    return "✅ Rezervasyon oluşturuldu!\n\n" + format_reservation(reservation)


@tool(
    name="find_reservations_by_name",
    description="Müşteri adına göre aktif rezervasyonları bulur",
    parameters={
        "type": "object",
        "properties": {
            "customer_name": {"type": "string", "description": "Müşteri adı veya soyadı"},
        },
        "required": ["customer_name"],
    },
)
async def find_reservations_by_name(args: dict[str, Any], ctx: ToolContext) -> str:
    name = require_str(args, "customer_name", "Müşteri adı")
    reservations = await ctx.bookings.find_by_customer_name(ctx.tenant_id, name)
    return format_reservation_list(name, reservations)


@tool(
    name="cancel_reservation",
    description="Rezervasyonu iptal eder (önce find_reservations_by_name ile rezervasyon bulunmalı)",
    parameters={
        "type": "object",
        "properties": {
            "reservation_id": {"type": "number", "description": "İptal edilecek rezervasyonun ID'si"},
        },
        "required": ["reservation_id"],
    },
)
async def cancel_reservation(args: dict[str, Any], ctx: ToolContext) -> str:
    reservation_id = _reservation_id(args)
    reservation = await ctx.bookings.cancel_reservation(ctx.tenant_id, reservation_id)
    return "✅ Rezervasyon iptal edildi!\n\n" + format_reservation(reservation)


@tool(
    name="update_customer_info",
    description="Rezervasyonun müşteri bilgilerini (ad, soyad, telefon) günceller",
    parameters={
        "type": "object",
        "properties": {
            "reservation_id": {"type": "number", "description": "Güncellenecek rezervasyonun ID'si"},
            "new_name": {"type": "string", "description": "Yeni ad soyad (opsiyonel)"},
            "new_phone": {"type": "string", "description": "Yeni telefon numarası (opsiyonel)"},
        },
        "required": ["reservation_id"],
    },
)
async def update_customer_info(args: dict[str, Any], ctx: ToolContext) -> str:
    reservation = await ctx.bookings.update_customer_info(
        ctx.tenant_id,
        _reservation_id(args),
        name=optional_str(args, "new_name"),
        phone=optional_str(args, "new_phone"),
    )
    return "✅ Müşteri bilgileri güncellendi!\n\n" + format_reservation(
        reservation, name_label="Yeni Ad",
    )


@tool(
    name="update_reservation_time",
    description="Rezervasyonun tarih, saat veya fiyatını günceller",
    parameters={
        "type": "object",
        "properties": {
            "reservation_id": {"type": "number", "description": "Güncellenecek rezervasyonun ID'si"},
            "time_slot": {
                "type": "string",
                "description": f"Yeni saat aralığı. {_TIME_SLOT_HINT} - opsiyonel",
            },
            "week_offset": {"type": "number", "description": "Yeni hafta offset - opsiyonel"},
            "day_of_week": {"type": "string", "description": "Yeni haftanın günü - opsiyonel"},
            "price": {"type": "number", "description": "Yeni fiyat - opsiyonel"},
        },
        "required": ["reservation_id"],
    },
)
async def update_reservation_time(args: dict[str, Any], ctx: ToolContext) -> str:
    reservation_id = _reservation_id(args)
    slot = optional_str(args, "time_slot")
    day = optional_str(args, "day_of_week")
    week_offset = as_int(args, "week_offset")

    start: datetime | None = None
    end: datetime | None = None
    if slot or day or week_offset is not None:
        current = await ctx.bookings.get_reservation(ctx.tenant_id, reservation_id)
        day_name = day or WEEKDAY_NAMES_TR[current.start.weekday()]
        if day or week_offset is not None:
            target = resolve_date(ctx.now, week_offset or 0, day_name)
        else:
            target = current.start.date()

        if slot:
            start_hour, end_hour = parse_time_slot(slot)
            start, end = at_hour(target, start_hour), at_hour(target, end_hour)
        else:
            # Same hours, new day.
            start = datetime.combine(target, current.start.time())
            end = start + (current.end - current.start)

    reservation = await ctx.bookings.update_reservation_time(
        ctx.tenant_id, reservation_id, start=start, end=end, price=as_float(args, "price"),
    )
    return "✅ Rezervasyon güncellendi!\n\n" + format_reservation(
        reservation, date_label="Yeni Tarih", time_label="Yeni Saat",
    )


@tool(
    name="show_week_table",
    description="Haftalık rezervasyon tablosunu görsel olarak gösterir",
    parameters={
        "type": "object",
        "properties": {
            "week_offset": {
                "type": "number",
                "description": "Hafta offset (0: bu hafta, -1: geçen hafta, -2: 2 hafta önce, 1: gelecek hafta)",
            },
        },
        "required": ["week_offset"],
    },
)
async def show_week_table(args: dict[str, Any], ctx: ToolContext) -> str:
    week_offset = as_int(args, "week_offset", 0)
    monday, reservations = await ctx.bookings.reservations_for_week(ctx.tenant_id, ctx.now, week_offset)

    if ctx.renderer is not None:
        image = await ctx.renderer.render_week(reservations, monday, week_offset)
        ctx.images.append(image)
        logger.info("Week table for %s rendered (%d bytes)", monday, len(image))
        return f"📊 Tablo gönderildi! {len(reservations)} rezervasyon bulundu."

    return format_week_table(monday, reservations)


def _reservation_id(args: dict[str, Any]) -> int:
    reservation_id = as_int(args, "reservation_id")
    if reservation_id is None:
        raise ValidationError("Rezervasyon ID'si gerekli.")
    return reservation_id


RESERVATION_TOOLS = [
    get_current_time,
    create_reservation,
    find_reservations_by_name,
    cancel_reservation,
    update_customer_info,
    update_reservation_time,
    show_week_table,
]
