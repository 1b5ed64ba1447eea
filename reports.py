from __future__ import annotations
from datetime import datetime, timezone
from typing import Any

from database import BANNERS, CUSTOMERS, ORDERS, PRODUCTS, TESTIMONIALS, DocumentStore


def _order_amount(order: dict[str, Any]) -> float:
    return float(order.get("total") or 0)


def _is_cancelled(order: dict[str, Any]) -> bool:
    return str(order.get("status", "")).lower() in ("cancelled", "canceled")


def _order_date(order: dict[str, Any]) -> datetime:
    value = order.get("created_at")
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            value = None
    if not isinstance(value, datetime):
        return datetime.now(timezone.utc)
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


async def dashboard_totals(store: DocumentStore) -> dict[str, Any]:
    products = await store.find(PRODUCTS)
    orders = await store.find(ORDERS)
    return {
        "products": len(products),
        "orders": len(orders),
        "customers": await store.count(CUSTOMERS),
        "revenue": round(sum(_order_amount(o) for o in orders if not _is_cancelled(o)), 2),
        "banners": await store.count(BANNERS),
        "reviews": sum(len(p.get("ratings") or []) for p in products),
        "testimonials": await store.count(TESTIMONIALS),
    }


async def revenue_summary(store: DocumentStore, recent: int = 10) -> dict[str, Any]:
    """Revenue from non-cancelled orders, bucketed by ``YYYY-MM``."""
    orders = await store.find(ORDERS, sort=[("created_at", -1)])
    total = 0.0
    monthly: dict[str, float] = {}
    recent_orders = []
    for order in orders:
        if _is_cancelled(order):
            continue
        amount = _order_amount(order)
        date = _order_date(order)
        total += amount
        key = f"{date.year}-{date.month:02d}"
        monthly[key] = round(monthly.get(key, 0) + amount, 2)
        if len(recent_orders) < recent:
            recent_orders.append({
                "id": order.get("id"),
                "amount": amount,
                "date": date,
                "status": order.get("status", "Pending"),
            })
    return {"total": round(total, 2), "monthly": monthly, "recent_orders": recent_orders}
