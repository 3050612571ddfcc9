"""Reporting tools for the pitch operator."""

from __future__ import annotations

from typing import Any

from src.tools.base import ToolContext, as_int, require_str, tool
from src.tools.formatting import format_cancellation_customers, format_loyal_customers, format_sales

_LIMIT_SCHEMA = {"type": "number", "description": "Kaç müşteri gösterilsin (varsayılan: 10)"}


@tool(
    name="get_sales_analytics",
    description="Bu hafta veya bu ay kaç saat satıldığını, gelir bilgilerini gösterir",
    parameters={
        "type": "object",
        "properties": {
            "period": {
                "type": "string",
                "enum": ["week", "month", "last_month"],
                "description": "Dönem (week: bu hafta, month: bu ay, last_month: geçen ay)",
            },
        },
        "required": ["period"],
    },
)
async def get_sales_analytics(args: dict[str, Any], ctx: ToolContext) -> str:
    period = require_str(args, "period", "Dönem")
    summary = await ctx.bookings.sales_summary(ctx.tenant_id, ctx.now, period)
    return format_sales(summary)


@tool(
    name="get_loyal_customers",
    description="En sadık müşterileri listeler",
    parameters={"type": "object", "properties": {"limit": _LIMIT_SCHEMA}, "required": []},
)
async def get_loyal_customers(args: dict[str, Any], ctx: ToolContext) -> str:
    customers = await ctx.bookings.loyal_customers(ctx.tenant_id, as_int(args, "limit", 10))
    return format_loyal_customers(customers)


@tool(
    name="get_cancellation_customers",
    description="En çok rezervasyon iptali yapan müşterileri listeler",
    parameters={"type": "object", "properties": {"limit": _LIMIT_SCHEMA}, "required": []},
)
async def get_cancellation_customers(args: dict[str, Any], ctx: ToolContext) -> str:
    customers = await ctx.bookings.cancellation_customers(ctx.tenant_id, as_int(args, "limit", 10))
    return format_cancellation_customers(customers)


ANALYTICS_TOOLS = [get_sales_analytics, get_loyal_customers, get_cancellation_customers]
