"""Order placement and the order status lifecycle.

Creating an order reserves stock on the variant and on the warehouse rows it
is allocated from. Later transitions either hand the reservation over to
shipping or return it to stock, touching exactly the rows recorded in
``order_item_allocations``.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable

from medshop.core.config import Settings
from medshop.core.database import Database, Session, utcnow
from medshop.core.errors import AppError
from medshop.core.logging import log_audit_event, log_info, log_warning
from medshop.repositories import customers as customer_repo
from medshop.repositories import inventory as inventory_repo
from medshop.repositories import orders as order_repo
from medshop.repositories import payments as payment_repo
from medshop.repositories import products as product_repo
from medshop.repositories.rows import coerce_decimal, money, new_id
from medshop.services.pagination import page_window, pagination


ORDER_TRANSITIONS: dict[str, tuple[str, ...]] = {
    "pending": ("confirmed", "cancelled"),
    "confirmed": ("processing", "cancelled"),
    "processing": ("packed", "cancelled"),
    "packed": ("shipped", "cancelled"),
    "shipped": ("delivered", "cancelled"),
    "delivered": ("refunded",),
    "cancelled": (),
    "refunded": (),
}
ORDER_STATUSES = tuple(ORDER_TRANSITIONS)
CUSTOMER_CANCELLABLE_STATUSES = ("pending", "confirmed")
PAYMENT_METHODS = ("cash", "card", "bank_transfer", "e_wallet", "cod", "vnpay", "momo")
GUEST_PAYMENT_METHODS = ("cod", "bank_transfer", "vnpay", "momo")
STAFF_ROLES = ("admin", "manager", "staff")
# Statuses reached after shipping handed the reserved units over to the carrier.
RESERVATION_CONSUMED_STATUSES = ("shipped", "delivered")

POINT_VALUE = Decimal(1000)
POINT_EARN_STEP = Decimal(10000)


def can_transition(current: str, target: str) -> bool:
    return target in ORDER_TRANSITIONS.get(current, ())


def loyalty_discount(points: int) -> Decimal:
    return money(POINT_VALUE * points)


def points_earned(total: Decimal) -> int:
    """One point per full ``POINT_EARN_STEP`` spent."""
    return int(max(total, Decimal(0)) // POINT_EARN_STEP)


def _digits(value: Any) -> str:
    return "".join(ch for ch in str(value or "") if ch.isdigit())


def coupon_discount(coupon: dict[str, Any], subtotal: Decimal) -> Decimal:
    """Discount granted by ``coupon`` on ``subtotal``, never above the subtotal."""
    value = coerce_decimal(coupon.get("discount_value"))
    if coupon.get("discount_type") == "percentage":
        discount = subtotal * value / Decimal(100)
    else:
        discount = value
    return money(max(Decimal(0), min(discount, subtotal)))


def shipping_fee_for(subtotal: Decimal, settings: Settings) -> Decimal:
    if subtotal > settings.free_shipping_threshold:
        return money(Decimal(0))
    return money(settings.shipping_fee)


def format_order_number(when: datetime, sequence: int) -> str:
    return f"ORD{when:%Y%m%d}{sequence:04d}"


class OrderService:
    def __init__(self, db: Database, settings: Settings) -> None:
        self.db = db
        self.settings = settings

    async def _price_items(
        self, session: Session, items: Iterable[dict[str, Any]]
    ) -> tuple[list[dict[str, Any]], Decimal]:
        priced: list[dict[str, Any]] = []
        subtotal = Decimal(0)
        requested: dict[str, int] = {}
        for item in items:
            variant_id = item["variant_id"]
            quantity = int(item["quantity"])
            if quantity <= 0:
                raise AppError("Quantity must be at least 1", 400)

            variant = await product_repo.get_active_variant_for_sale(session, variant_id)
            if not variant:
                raise AppError(f"Product variant {variant_id} not found or inactive", 404)

            # Repeated lines for one variant draw on the same stock.
            requested[variant_id] = requested.get(variant_id, 0) + quantity
            available = variant["stock_quantity"]
            if available < requested[variant_id]:
                raise AppError(
                    f"Insufficient stock for {variant['product_name']}. Available: {available}",
                    400,
                )

            unit_price = money(
                coerce_decimal(item.get("price"), default=None) or variant["price"]
            )
            gross = money(unit_price * quantity)
            discount = money(coerce_decimal(item.get("discount"), default=Decimal(0)))
            if discount < 0 or discount > gross:
                raise AppError(
                    f"Discount for {variant['product_name']} must be between 0 and {gross}", 400
                )
            line_total = money(gross - discount)
            priced.append(
                {
                    "variant_id": variant_id,
                    "product_name": variant["product_name"],
                    "variant_name": variant["name"],
                    "sku": variant["sku"],
                    "quantity": quantity,
                    "unit_price": unit_price,
                    "discount_amount": discount,
                    "line_total": line_total,
                }
            )
            subtotal += line_total
        return priced, money(subtotal)

    async def _apply_coupon(
        self, session: Session, code: str, customer_id: str, subtotal: Decimal, now: datetime
    ) -> tuple[str, Decimal]:
        coupon = await order_repo.get_redeemable_coupon(session, code, now)
        if not coupon:
            raise AppError("Invalid or expired coupon", 400)

        used = await order_repo.count_coupon_usage(session, coupon["id"], customer_id)
        if used >= (coupon.get("customer_limit") or 1):
            raise AppError("Coupon usage limit exceeded for this customer", 400)

        minimum = coupon.get("minimum_amount")
        if minimum and subtotal < minimum:
            raise AppError(f"Minimum order amount of {minimum} required", 400)

        return coupon["id"], coupon_discount(coupon, subtotal)

    async def _redeem_points(
        self, session: Session, customer_id: str, points: int, payable: Decimal
    ) -> Decimal:
        available = await customer_repo.get_loyalty_points(session, customer_id, for_update=True)
        if available is None:
            raise AppError("Customer not found", 404)
        if points > available:
            raise AppError(f"Customer only has {available} points available", 400)
        discount = loyalty_discount(points)
        if discount > payable:
            raise AppError("Loyalty discount exceeds the order amount", 400)
        return discount

    async def _allocate(
        self, session: Session, order_item_id: str, variant_id: str, quantity: int, now: datetime
    ) -> None:
        """Reserve ``quantity`` across warehouse rows, largest stock first."""
        remaining = quantity
        for row in await inventory_repo.list_variant_rows(session, variant_id):
            if remaining <= 0:
                break
            take = min(remaining, row["quantity"])
            await inventory_repo.reserve_from_row(session, row["id"], take, now)
            await order_repo.insert_allocation(
                session,
                allocation_id=new_id(),
                order_item_id=order_item_id,
                inventory_id=row["id"],
                warehouse_id=row["warehouse_id"],
                quantity=take,
                created_at=now,
            )
            remaining -= take
        if remaining > 0:
            log_warning(
                "Warehouse stock short of variant stock, reservation kept on variant only",
                variant_id=variant_id,
                unallocated=remaining,
            )

    async def place_order(
        self,
        session: Session,
        *,
        customer_id: str | None,
        items: list[dict[str, Any]],
        payment_method: str,
        now: datetime,
        coupon_code: str | None = None,
        loyalty_points: int = 0,
        earn_points: bool = False,
        charge_shipping: bool = True,
        shipping_address_id: str | None = None,
        billing_address_id: str | None = None,
        notes: str | None = None,
        metadata: dict[str, Any] | None = None,
        sales_channel: str = "online",
        processed_by: str | None = None,
    ) -> dict[str, Any]:
        """Price, number and insert an order, reserving its stock.

        Runs inside the caller's transaction and returns the inserted order
        fields, so callers can carry on (mark it paid, hand over the goods)
        before anything is committed.
        """
        if not items:
            raise AppError("Order must contain at least one item", 400)
        if payment_method not in PAYMENT_METHODS:
            raise AppError(f"Unsupported payment method {payment_method}", 400)
        if customer_id is None and (coupon_code or loyalty_points):
            raise AppError("Coupons and loyalty points require a customer account", 400)
        if loyalty_points < 0:
            raise AppError("Loyalty points cannot be negative", 400)

        order_id = new_id()
        priced, subtotal = await self._price_items(session, items)

        coupon_id = None
        discount = money(Decimal(0))
        if coupon_code:
            coupon_id, discount = await self._apply_coupon(
                session, coupon_code, customer_id, subtotal, now
            )
        metadata = dict(metadata or {})
        if loyalty_points:
            redeemed = await self._redeem_points(
                session, customer_id, loyalty_points, subtotal - discount
            )
            discount = money(discount + redeemed)
            metadata["loyaltyPointsRedeemed"] = loyalty_points

        rate = self.settings.tax_rate
        tax = money((subtotal - discount) * rate)
        shipping_fee = money(Decimal(0))
        if charge_shipping:
            shipping_fee = shipping_fee_for(subtotal, self.settings)
        total = money(subtotal - discount + tax + shipping_fee)

        earned = points_earned(total) if earn_points and customer_id else 0
        if earned:
            metadata["loyaltyPointsEarned"] = earned

        start_of_day = now.replace(hour=0, minute=0, second=0)
        sequence = await order_repo.count_orders_since(session, start_of_day) + 1
        order = {
            "id": order_id,
            "order_number": format_order_number(now, sequence),
            "customer_id": customer_id,
            "status": "pending",
            "payment_status": "pending",
            "payment_method": payment_method,
            "sales_channel": sales_channel,
            "subtotal": subtotal,
            "discount_amount": discount,
            "tax_amount": tax,
            "shipping_fee": shipping_fee,
            "total_amount": total,
            "coupon_id": coupon_id,
            "shipping_address_id": shipping_address_id,
            "billing_address_id": billing_address_id or shipping_address_id,
            "notes": notes,
            "metadata": metadata or None,
            "processed_by": processed_by,
            "created_at": now,
        }
        await order_repo.insert_order(session, order)

        for position, item in enumerate(priced):
            item_id = new_id()
            item_tax = money(item["line_total"] * rate)
            await order_repo.insert_order_item(
                session,
                {
                    "id": item_id,
                    "order_id": order_id,
                    "position": position,
                    "variant_id": item["variant_id"],
                    "product_name": item["product_name"],
                    "variant_name": item["variant_name"],
                    "sku": item["sku"],
                    "quantity": item["quantity"],
                    "unit_price": item["unit_price"],
                    "discount_amount": item["discount_amount"],
                    "tax_amount": item_tax,
                    "total_amount": money(item["line_total"] + item_tax),
                    "created_at": now,
                },
            )
            await product_repo.reserve_stock(session, item["variant_id"], item["quantity"], now)
            await self._allocate(session, item_id, item["variant_id"], item["quantity"], now)

        if coupon_id:
            await order_repo.record_coupon_usage(
                session,
                usage_id=new_id(),
                coupon_id=coupon_id,
                customer_id=customer_id,
                order_id=order_id,
                discount_amount=discount,
                used_at=now,
            )

        if customer_id:
            await customer_repo.record_order_totals(session, customer_id, total)
            if earned - loyalty_points:
                await customer_repo.adjust_loyalty_points(
                    session, customer_id, earned - loyalty_points, now
                )
        return order

    async def create_order(
        self,
        *,
        customer_id: str,
        items: list[dict[str, Any]],
        payment_method: str,
        coupon_code: str | None = None,
        shipping_address_id: str | None = None,
        billing_address_id: str | None = None,
        notes: str | None = None,
        metadata: dict[str, Any] | None = None,
        sales_channel: str = "online",
        processed_by: str | None = None,
    ) -> dict[str, Any]:
        async with self.db.transaction() as session:
            placed = await self.place_order(
                session,
                customer_id=customer_id,
                items=items,
                payment_method=payment_method,
                now=utcnow(),
                coupon_code=coupon_code,
                shipping_address_id=shipping_address_id,
                billing_address_id=billing_address_id,
                notes=notes,
                metadata=metadata,
                sales_channel=sales_channel,
                processed_by=processed_by,
            )
            order = await order_repo.get_order(session, placed["id"])

        log_info(
            "Order created",
            order_id=placed["id"],
            order_number=placed["order_number"],
            customer_id=customer_id,
            total=placed["total_amount"],
        )
        return order

    async def create_guest_order(
        self,
        *,
        customer_info: dict[str, Any],
        shipping_address: dict[str, Any],
        items: list[dict[str, Any]],
        payment_method: str = "cod",
        notes: str | None = None,
    ) -> dict[str, Any]:
        """Checkout without an account; contact and address live on the order."""
        if payment_method not in GUEST_PAYMENT_METHODS:
            raise AppError(
                f"Payment method {payment_method} is not available for guest orders", 400
            )
        async with self.db.transaction() as session:
            placed = await self.place_order(
                session,
                customer_id=None,
                items=[
                    {"variant_id": item["variant_id"], "quantity": item["quantity"]}
                    for item in items
                ],
                payment_method=payment_method,
                now=utcnow(),
                notes=notes,
                metadata={
                    "isGuest": True,
                    "customerInfo": customer_info,
                    "shippingAddress": shipping_address,
                },
            )
            order = await order_repo.get_order(session, placed["id"])
            order["items"] = await order_repo.list_order_items(session, placed["id"])

        log_info(
            "Guest order created",
            order_id=placed["id"],
            order_number=placed["order_number"],
            total=placed["total_amount"],
        )
        return order

    async def track_guest_order(self, order_number: str, phone: str) -> dict[str, Any]:
        order = await order_repo.get_order_by_number(self.db, order_number.strip())
        metadata = (order or {}).get("metadata") or {}
        expected = _digits((metadata.get("customerInfo") or {}).get("phone"))
        # Unknown numbers and phone mismatches look the same to the caller.
        if not metadata.get("isGuest") or not expected or expected != _digits(phone):
            raise AppError("Order not found", 404)
        order["items"] = await order_repo.list_order_items(self.db, order["id"])
        return order

    async def release_stock(
        self, session: Session, order_id: str, *, restock: bool, held: bool, now: datetime
    ) -> None:
        """Give back an order's units.

        ``held`` says whether the units are still reserved; once shipped the
        reservation is gone and a restock only returns units to stock.
        """
        for item in await order_repo.list_order_items(session, order_id):
            await product_repo.release_reservation(
                session,
                item["variant_id"],
                item["quantity"],
                restock=restock,
                held=held,
                when=now,
            )
        for allocation in await order_repo.list_allocations(session, order_id):
            await inventory_repo.release_row_reservation(
                session,
                allocation["inventory_id"],
                allocation["quantity"],
                restock=restock,
                held=held,
                when=now,
            )

    async def _reverse_loyalty(
        self, session: Session, order: dict[str, Any], now: datetime
    ) -> None:
        metadata = order.get("metadata") or {}
        delta = int(metadata.get("loyaltyPointsRedeemed") or 0) - int(
            metadata.get("loyaltyPointsEarned") or 0
        )
        if order.get("customer_id") and delta:
            await customer_repo.adjust_loyalty_points(session, order["customer_id"], delta, now)

    async def transition(
        self,
        session: Session,
        order: dict[str, Any],
        status: str,
        *,
        user_id: str | None,
        notes: str | None,
        now: datetime,
    ) -> None:
        current = order["status"]
        if not can_transition(current, status):
            raise AppError(f"Cannot change status from {current} to {status}", 400)

        held = current not in RESERVATION_CONSUMED_STATUSES
        payment_status = None
        if status in ("cancelled", "refunded"):
            await self.release_stock(session, order["id"], restock=True, held=held, now=now)
            await self._reverse_loyalty(session, order, now)
            payment_status = status
        elif status == "shipped":
            await self.release_stock(session, order["id"], restock=False, held=True, now=now)

        await order_repo.update_status(
            session,
            order["id"],
            status=status,
            processed_by=user_id,
            when=now,
            payment_status=payment_status,
        )
        await order_repo.insert_activity_log(
            session,
            log_id=new_id(),
            user_id=user_id,
            action="order_status_update",
            entity_type="order",
            entity_id=order["id"],
            old_values={"status": current},
            new_values={"status": status, "notes": notes},
            created_at=now,
        )

    async def update_status(
        self,
        order_id: str,
        status: str,
        *,
        notes: str | None = None,
        user_id: str | None = None,
    ) -> dict[str, Any]:
        now = utcnow()
        async with self.db.transaction() as session:
            order = await order_repo.get_order(session, order_id, for_update=True)
            if not order:
                raise AppError("Order not found", 404)
            current = order["status"]
            await self.transition(session, order, status, user_id=user_id, notes=notes, now=now)
            updated = await order_repo.get_order(session, order_id)

        log_audit_event(
            "order",
            "status_update",
            user_id=user_id,
            entity_type="order",
            entity_id=order_id,
            from_status=current,
            to_status=status,
        )
        return updated

    async def cancel_order(
        self, order_id: str, *, reason: str | None, user: dict[str, Any]
    ) -> dict[str, Any]:
        order = await order_repo.get_order(self.db, order_id)
        if not order:
            raise AppError("Order not found", 404)
        if user.get("role") == "customer":
            if order["customer_id"] != user["id"]:
                raise AppError("You do not have permission to cancel this order", 403)
            if order["status"] not in CUSTOMER_CANCELLABLE_STATUSES:
                raise AppError("Order cannot be cancelled at this stage", 400)
        return await self.update_status(
            order_id,
            "cancelled",
            notes=reason or "Customer requested cancellation",
            user_id=user["id"],
        )

    async def list_orders(
        self,
        *,
        customer_id: str | None = None,
        status: str | None = None,
        payment_status: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 20,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> dict[str, Any]:
        filters = order_repo.OrderFilters(
            customer_id=customer_id,
            status=status,
            payment_status=payment_status,
            date_from=date_from,
            date_to=date_to,
            search=search,
        )
        page, limit, offset = page_window(page, limit)
        orders = await order_repo.list_orders(
            self.db,
            filters,
            sort_by=sort_by,
            sort_desc=sort_order.lower() != "asc",
            limit=limit,
            offset=offset,
        )
        total = await order_repo.count_orders(self.db, filters)
        return {"orders": orders, "pagination": pagination(page, limit, total)}

    async def get_my_orders(
        self,
        customer_id: str,
        *,
        status: str | None = None,
        payment_status: str | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> dict[str, Any]:
        return await self.list_orders(
            customer_id=customer_id,
            status=status,
            payment_status=payment_status,
            page=page,
            limit=limit,
        )

    async def get_order(self, order_id: str, *, user: dict[str, Any] | None = None) -> dict[str, Any]:
        order = await order_repo.get_order_with_customer(self.db, order_id)
        if not order:
            raise AppError("Order not found", 404)
        if user and user.get("role") == "customer" and order["customer_id"] != user["id"]:
            raise AppError("You do not have permission to view this order", 403)

        order["items"] = await order_repo.list_order_items(self.db, order_id)
        order["payments"] = await payment_repo.list_order_payments(self.db, order_id)
        order["shipping_address"] = (
            await customer_repo.get_address(self.db, order["shipping_address_id"])
            if order.get("shipping_address_id")
            else None
        )
        return order

    async def get_history(self, order_id: str) -> list[dict[str, Any]]:
        return await order_repo.list_activity(self.db, "order", order_id)

    async def statistics(
        self,
        *,
        customer_id: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> dict[str, Any]:
        return await order_repo.order_statistics(
            self.db, customer_id=customer_id, date_from=date_from, date_to=date_to
        )
