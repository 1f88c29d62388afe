"""Counter (point of sale) checkout, the day's takings and loyalty quotes.

A counter sale is an order on the ``pos`` channel that is paid and handed over
on the spot: its reservation is consumed immediately and it goes straight to
``delivered``, so a later refund follows the ordinary delivered to refunded
transition.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any
from zoneinfo import ZoneInfo

from medshop.core.config import Settings
from medshop.core.database import Database, utcnow
from medshop.core.errors import AppError
from medshop.core.logging import log_audit_event, log_info
from medshop.repositories import customers as customer_repo
from medshop.repositories import orders as order_repo
from medshop.repositories import pos as pos_repo
from medshop.repositories.rows import coerce_decimal, money, new_id
from medshop.services.orders import OrderService, loyalty_discount


COUNTER_PAYMENT_METHODS = ("cash", "card", "bank_transfer", "e_wallet")
MIN_SEARCH_LENGTH = 2
SEARCH_LIMIT = 20


def store_day(now: datetime, zone: ZoneInfo) -> tuple[datetime, datetime]:
    """Naive UTC bounds of the store-local calendar day containing ``now``."""
    local = now.replace(tzinfo=timezone.utc).astimezone(zone)
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    start = midnight.astimezone(timezone.utc).replace(tzinfo=None)
    return start, start + timedelta(days=1)


class PosService:
    def __init__(self, db: Database, orders: OrderService, settings: Settings) -> None:
        self.db = db
        self.orders = orders
        self.settings = settings
        self.zone = ZoneInfo(settings.store_timezone)

    async def create_sale(
        self,
        *,
        items: list[dict[str, Any]],
        cashier_id: str,
        customer_id: str | None = None,
        payment_method: str = "cash",
        received_amount: Decimal | None = None,
        loyalty_points: int = 0,
        customer_info: dict[str, Any] | None = None,
        notes: str | None = None,
    ) -> dict[str, Any]:
        if payment_method not in COUNTER_PAYMENT_METHODS:
            raise AppError(f"Payment method {payment_method} is not accepted at the counter", 400)

        now = utcnow()
        async with self.db.transaction() as session:
            placed = await self.orders.place_order(
                session,
                customer_id=customer_id,
                items=items,
                payment_method=payment_method,
                now=now,
                loyalty_points=loyalty_points,
                earn_points=True,
                charge_shipping=False,
                notes=notes,
                metadata={"customerInfo": customer_info} if customer_info else None,
                sales_channel=pos_repo.COUNTER_CHANNEL,
                processed_by=cashier_id,
            )
            total = placed["total_amount"]
            received = money(coerce_decimal(received_amount, default=total))
            if payment_method == "cash" and received < total:
                raise AppError(f"Received amount {received} is less than the total {total}", 400)
            if payment_method != "cash":
                received = total

            # The goods leave with the customer, so the reservation is used up.
            await self.orders.release_stock(
                session, placed["id"], restock=False, held=True, now=now
            )
            await order_repo.update_status(
                session, placed["id"], status="delivered", processed_by=cashier_id, when=now
            )
            await order_repo.mark_paid(session, placed["id"], now)
            await order_repo.insert_activity_log(
                session,
                log_id=new_id(),
                user_id=cashier_id,
                action="pos_sale",
                entity_type="order",
                entity_id=placed["id"],
                old_values=None,
                new_values={"status": "delivered", "payment_status": "paid"},
                created_at=now,
            )
            order = await order_repo.get_order(session, placed["id"])
            order["items"] = await order_repo.list_order_items(session, placed["id"])

        order["received_amount"] = received
        order["change_amount"] = money(received - total)
        log_info(
            "POS sale completed",
            order_id=order["id"],
            order_number=order["order_number"],
            cashier_id=cashier_id,
            total=total,
        )
        return order

    async def today_orders(self, *, now: datetime | None = None) -> list[dict[str, Any]]:
        start, end = store_day(now or utcnow(), self.zone)
        sales = await pos_repo.list_sales(self.db, start, end)
        for sale in sales:
            sale["items"] = await order_repo.list_order_items(self.db, sale["id"])
        return sales

    async def today_stats(self, *, now: datetime | None = None) -> dict[str, Any]:
        start, end = store_day(now or utcnow(), self.zone)
        summary = await pos_repo.sales_summary(self.db, start, end)
        orders = summary["total_orders"]
        summary["average_order_value"] = money(
            summary["total_revenue"] / orders if orders else Decimal(0)
        )
        return {
            "summary": summary,
            "payment_methods": await pos_repo.payment_method_totals(self.db, start, end),
            "top_products": await pos_repo.top_products(self.db, start, end),
        }

    async def search_products(self, term: str | None) -> list[dict[str, Any]]:
        term = (term or "").strip()
        if len(term) < MIN_SEARCH_LENGTH:
            return []
        return await pos_repo.search_sellable_variants(self.db, term, SEARCH_LIMIT)

    async def refund(
        self, order_id: str, *, reason: str | None, user_id: str
    ) -> dict[str, Any]:
        """Take back a whole counter sale, restocking it and reversing its points."""
        now = utcnow()
        async with self.db.transaction() as session:
            order = await order_repo.get_order(session, order_id, for_update=True)
            if not order:
                raise AppError("Order not found", 404)
            if order["sales_channel"] != pos_repo.COUNTER_CHANNEL:
                raise AppError("Only counter sales can be refunded at the counter", 400)
            await self.orders.transition(
                session, order, "refunded", user_id=user_id, notes=reason, now=now
            )

        log_audit_event(
            "order",
            "pos_refund",
            user_id=user_id,
            entity_type="order",
            entity_id=order_id,
            amount=order["total_amount"],
        )
        return {
            "order_id": order_id,
            "order_number": order["order_number"],
            "refund_amount": order["total_amount"],
            "reason": reason,
        }

    async def quote_loyalty(self, customer_id: str, points: int) -> dict[str, Any]:
        """Discount a customer would get for ``points``; nothing is deducted."""
        if points <= 0:
            raise AppError("Points must be a positive number", 400)
        customer = await customer_repo.get_customer(self.db, customer_id)
        if not customer:
            raise AppError("Customer not found", 404)
        available = customer["loyalty_points"]
        if points > available:
            raise AppError(f"Customer only has {available} points available", 400)
        name = " ".join(part for part in (customer["first_name"], customer["last_name"]) if part)
        return {
            "customer_id": customer_id,
            "customer_name": name,
            "points_used": points,
            "discount_amount": loyalty_discount(points),
            "remaining_points": available - points,
        }
