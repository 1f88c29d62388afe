from datetime import datetime
from decimal import Decimal

import pytest

from medshop.core.errors import AppError
from medshop.services.orders import (
    OrderService,
    can_transition,
    coupon_discount,
    format_order_number,
    shipping_fee_for,
)


def test_percentage_coupon_never_exceeds_subtotal():
    coupon = {"discount_type": "percentage", "discount_value": "150"}
    assert coupon_discount(coupon, Decimal("200")) == Decimal("200.00")


def test_fixed_coupon_is_capped_at_subtotal():
    coupon = {"discount_type": "fixed", "discount_value": "50"}
    assert coupon_discount(coupon, Decimal("30")) == Decimal("30.00")
    assert coupon_discount(coupon, Decimal("80")) == Decimal("50.00")


def test_shipping_is_free_only_above_threshold(settings):
    assert shipping_fee_for(Decimal("500001"), settings) == Decimal("0.00")
    assert shipping_fee_for(Decimal("500000"), settings) == Decimal("30000.00")


def test_order_number_format():
    assert format_order_number(datetime(2026, 3, 5, 14, 30), 7) == "ORD202603050007"


def test_transition_table():
    assert can_transition("pending", "confirmed")
    assert can_transition("shipped", "cancelled")
    assert can_transition("delivered", "refunded")
    assert not can_transition("delivered", "processing")
    assert not can_transition("cancelled", "pending")
    assert not can_transition("pending", "shipped")


async def _variant_stock(db, variant_id):
    return await db.fetch_one(
        "SELECT stock_quantity, reserved_quantity FROM product_variants WHERE id = %s",
        (variant_id,),
    )


async def _row_stock(db, row_id):
    return await db.fetch_one(
        "SELECT quantity, reserved_quantity FROM inventory WHERE id = %s", (row_id,)
    )


async def _order_count(db):
    row = await db.fetch_one("SELECT COUNT(*) AS total FROM orders")
    return row["total"]


@pytest.fixture
def service(database, settings):
    return OrderService(database, settings)


async def _place(service, ids, quantity=2, **kwargs):
    return await service.create_order(
        customer_id=ids.customer,
        items=[{"variant_id": ids.variant, "quantity": quantity}],
        payment_method="cod",
        **kwargs,
    )


@pytest.mark.anyio
async def test_create_order_prices_and_reserves_stock(service, database, catalogue):
    order = await _place(service, catalogue)

    assert order["status"] == "pending"
    assert order["payment_status"] == "pending"
    assert order["order_number"].startswith("ORD")
    assert order["order_number"].endswith("0001")
    assert order["subtotal"] == Decimal("200000")
    assert order["tax_amount"] == Decimal("20000")
    assert order["shipping_fee"] == Decimal("30000")
    assert order["total_amount"] == Decimal("250000")

    variant = await _variant_stock(database, catalogue.variant)
    assert (variant["stock_quantity"], variant["reserved_quantity"]) == (8, 2)

    central = await _row_stock(database, catalogue.central_row)
    north = await _row_stock(database, catalogue.north_row)
    assert (central["quantity"], central["reserved_quantity"]) == (4, 2)
    assert (north["quantity"], north["reserved_quantity"]) == (4, 0)

    customer = await database.fetch_one(
        "SELECT total_orders FROM customers WHERE id = %s", (catalogue.customer,)
    )
    assert customer["total_orders"] == 1


@pytest.mark.anyio
async def test_second_order_of_the_day_gets_next_sequence(service, catalogue):
    await _place(service, catalogue, quantity=1)
    second = await _place(service, catalogue, quantity=1)
    assert second["order_number"].endswith("0002")


@pytest.mark.anyio
async def test_insufficient_stock_leaves_nothing_behind(service, database, catalogue):
    with pytest.raises(AppError) as excinfo:
        await _place(service, catalogue, quantity=11)

    assert excinfo.value.status_code == 400
    assert excinfo.value.message == "Insufficient stock for Digital Thermometer. Available: 10"
    assert await _order_count(database) == 0
    variant = await _variant_stock(database, catalogue.variant)
    assert (variant["stock_quantity"], variant["reserved_quantity"]) == (10, 0)


@pytest.mark.anyio
async def test_repeated_lines_share_the_same_stock(service, database, catalogue):
    with pytest.raises(AppError) as excinfo:
        await service.create_order(
            customer_id=catalogue.customer,
            items=[
                {"variant_id": catalogue.variant, "quantity": 6},
                {"variant_id": catalogue.variant, "quantity": 5},
            ],
            payment_method="cash",
        )

    assert excinfo.value.status_code == 400
    assert await _order_count(database) == 0


@pytest.mark.anyio
async def test_unknown_variant_is_not_found(service, database, catalogue):
    with pytest.raises(AppError) as excinfo:
        await service.create_order(
            customer_id=catalogue.customer,
            items=[{"variant_id": "missing", "quantity": 1}],
            payment_method="cash",
        )
    assert excinfo.value.status_code == 404


@pytest.mark.anyio
async def test_unsupported_payment_method_is_rejected(service, catalogue):
    with pytest.raises(AppError) as excinfo:
        await service.create_order(
            customer_id=catalogue.customer,
            items=[{"variant_id": catalogue.variant, "quantity": 1}],
            payment_method="barter",
        )
    assert excinfo.value.status_code == 400


async def _add_coupon(db, code, **columns):
    values = {
        "id": f"coupon-{code}",
        "code": code,
        "discount_type": "percentage",
        "discount_value": "10",
    }
    values.update(columns)
    names = ", ".join(values)
    placeholders = ", ".join(["%s"] * len(values))
    await db.execute(
        f"INSERT INTO coupons ({names}) VALUES ({placeholders})", tuple(values.values())
    )


@pytest.mark.anyio
async def test_percentage_coupon_is_applied_and_recorded(service, database, catalogue):
    await _add_coupon(database, "SAVE10", minimum_amount="100000", usage_limit=5)

    order = await _place(service, catalogue, coupon_code="SAVE10")

    assert order["discount_amount"] == Decimal("20000")
    assert order["tax_amount"] == Decimal("18000")
    assert order["total_amount"] == Decimal("228000")
    coupon = await database.fetch_one(
        "SELECT used_count FROM coupons WHERE code = %s", ("SAVE10",)
    )
    assert coupon["used_count"] == 1
    usage = await database.fetch_one(
        "SELECT order_id FROM coupon_usage WHERE coupon_id = %s", ("coupon-SAVE10",)
    )
    assert usage["order_id"] == order["id"]


@pytest.mark.anyio
@pytest.mark.parametrize(
    "columns",
    [
        {"valid_until": "2000-01-01 00:00:00"},
        {"usage_limit": 1, "used_count": 1},
        {"is_active": False},
    ],
    ids=["expired", "exhausted", "inactive"],
)
async def test_unredeemable_coupon_rejects_order(service, database, catalogue, columns):
    await _add_coupon(database, "DEAD", **columns)

    with pytest.raises(AppError) as excinfo:
        await _place(service, catalogue, coupon_code="DEAD")

    assert excinfo.value.message == "Invalid or expired coupon"
    assert await _order_count(database) == 0
    variant = await _variant_stock(database, catalogue.variant)
    assert variant["reserved_quantity"] == 0


@pytest.mark.anyio
async def test_coupon_minimum_amount_is_enforced(service, database, catalogue):
    await _add_coupon(database, "BIGSPEND", minimum_amount="500000")

    with pytest.raises(AppError) as excinfo:
        await _place(service, catalogue, coupon_code="BIGSPEND")

    assert excinfo.value.message.startswith("Minimum order amount")
    assert await _order_count(database) == 0


@pytest.mark.anyio
async def test_coupon_per_customer_limit(service, database, catalogue):
    await _add_coupon(database, "ONCE", customer_limit=1)
    await _place(service, catalogue, quantity=1, coupon_code="ONCE")

    with pytest.raises(AppError) as excinfo:
        await _place(service, catalogue, quantity=1, coupon_code="ONCE")

    assert excinfo.value.message == "Coupon usage limit exceeded for this customer"
    assert await _order_count(database) == 1


@pytest.mark.anyio
async def test_cancelling_returns_reserved_stock(service, database, catalogue):
    order = await _place(service, catalogue)

    cancelled = await service.update_status(
        order["id"], "cancelled", notes="duplicate", user_id=catalogue.admin
    )

    assert cancelled["status"] == "cancelled"
    assert cancelled["payment_status"] == "cancelled"
    assert cancelled["cancelled_at"] is not None
    variant = await _variant_stock(database, catalogue.variant)
    assert (variant["stock_quantity"], variant["reserved_quantity"]) == (10, 0)
    central = await _row_stock(database, catalogue.central_row)
    assert (central["quantity"], central["reserved_quantity"]) == (6, 0)

    history = await service.get_history(order["id"])
    assert history[-1]["old_values"] == {"status": "pending"}
    assert history[-1]["new_values"]["status"] == "cancelled"


@pytest.mark.anyio
async def test_shipping_consumes_the_reservation(service, database, catalogue):
    order = await _place(service, catalogue)

    for status in ("confirmed", "processing", "packed", "shipped"):
        await service.update_status(order["id"], status, user_id=catalogue.admin)

    variant = await _variant_stock(database, catalogue.variant)
    assert (variant["stock_quantity"], variant["reserved_quantity"]) == (8, 0)
    central = await _row_stock(database, catalogue.central_row)
    assert (central["quantity"], central["reserved_quantity"]) == (4, 0)


@pytest.mark.anyio
async def test_delivered_order_cannot_go_back_to_processing(service, database, catalogue):
    order = await _place(service, catalogue)
    await database.execute(
        "UPDATE orders SET status = 'delivered' WHERE id = %s", (order["id"],)
    )

    with pytest.raises(AppError) as excinfo:
        await service.update_status(order["id"], "processing", user_id=catalogue.admin)

    assert excinfo.value.status_code == 400
    assert excinfo.value.message == "Cannot change status from delivered to processing"
    unchanged = await database.fetch_one(
        "SELECT status, processing_at FROM orders WHERE id = %s", (order["id"],)
    )
    assert unchanged["status"] == "delivered"
    assert unchanged["processing_at"] is None
    assert await service.get_history(order["id"]) == []


@pytest.mark.anyio
async def test_update_status_of_missing_order(service, catalogue):
    with pytest.raises(AppError) as excinfo:
        await service.update_status("missing", "confirmed")
    assert excinfo.value.status_code == 404


@pytest.mark.anyio
async def test_customer_cannot_cancel_someone_elses_order(service, catalogue):
    order = await _place(service, catalogue)

    with pytest.raises(AppError) as excinfo:
        await service.cancel_order(
            order["id"], reason=None, user={"id": "someone-else", "role": "customer"}
        )
    assert excinfo.value.status_code == 403


@pytest.mark.anyio
async def test_customer_cannot_cancel_once_processing(service, database, catalogue):
    order = await _place(service, catalogue)
    await service.update_status(order["id"], "confirmed", user_id=catalogue.admin)
    await service.update_status(order["id"], "processing", user_id=catalogue.admin)

    with pytest.raises(AppError) as excinfo:
        await service.cancel_order(
            order["id"], reason=None, user={"id": catalogue.customer, "role": "customer"}
        )
    assert excinfo.value.message == "Order cannot be cancelled at this stage"


@pytest.mark.anyio
async def test_get_order_hides_other_customers_orders(service, catalogue):
    order = await _place(service, catalogue)

    detail = await service.get_order(
        order["id"], user={"id": catalogue.customer, "role": "customer"}
    )
    assert [item["quantity"] for item in detail["items"]] == [2]
    assert detail["customer_email"] == "buyer@example.com"

    with pytest.raises(AppError) as excinfo:
        await service.get_order(order["id"], user={"id": "intruder", "role": "customer"})
    assert excinfo.value.status_code == 403


@pytest.mark.anyio
async def test_statistics_count_orders_by_state(service, catalogue):
    first = await _place(service, catalogue, quantity=1)
    await _place(service, catalogue, quantity=1)
    await service.update_status(first["id"], "cancelled", user_id=catalogue.admin)

    stats = await service.statistics(customer_id=catalogue.customer)

    assert stats["total_orders"] == 2
    assert stats["cancelled_orders"] == 1
    assert stats["pending_orders"] == 1
    assert stats["completed_orders"] == 0


@pytest.mark.anyio
async def test_line_discount_cannot_exceed_the_line(service, database, catalogue):
    with pytest.raises(AppError) as excinfo:
        await service.create_order(
            customer_id=catalogue.customer,
            items=[{"variant_id": catalogue.variant, "quantity": 1, "discount": "150000"}],
            payment_method="cash",
        )

    assert excinfo.value.status_code == 400
    assert excinfo.value.message == (
        "Discount for Digital Thermometer must be between 0 and 100000.00"
    )
    assert await _order_count(database) == 0

    free = await service.create_order(
        customer_id=catalogue.customer,
        items=[{"variant_id": catalogue.variant, "quantity": 1, "discount": "100000"}],
        payment_method="cash",
    )
    assert free["subtotal"] == Decimal("0")
    assert free["tax_amount"] == Decimal("0")
    assert free["total_amount"] == Decimal("30000")


async def _deliver(service, order_id, user_id):
    for status in ("confirmed", "processing", "packed", "shipped", "delivered"):
        await service.update_status(order_id, status, user_id=user_id)


@pytest.mark.anyio
async def test_refunding_a_delivered_order_restocks(service, database, catalogue):
    order = await _place(service, catalogue)
    await _deliver(service, order["id"], catalogue.admin)

    refunded = await service.update_status(order["id"], "refunded", user_id=catalogue.admin)

    assert refunded["status"] == "refunded"
    assert refunded["payment_status"] == "refunded"
    variant = await _variant_stock(database, catalogue.variant)
    assert (variant["stock_quantity"], variant["reserved_quantity"]) == (10, 0)
    central = await _row_stock(database, catalogue.central_row)
    assert (central["quantity"], central["reserved_quantity"]) == (6, 0)


@pytest.mark.anyio
async def test_cancelling_after_shipping_keeps_other_reservations(service, database, catalogue):
    shipped = await _place(service, catalogue)
    for status in ("confirmed", "processing", "packed", "shipped"):
        await service.update_status(shipped["id"], status, user_id=catalogue.admin)
    waiting = await _place(service, catalogue, quantity=1)

    cancelled = await service.update_status(shipped["id"], "cancelled", user_id=catalogue.admin)

    assert cancelled["payment_status"] == "cancelled"
    variant = await _variant_stock(database, catalogue.variant)
    assert (variant["stock_quantity"], variant["reserved_quantity"]) == (9, 1)
    rows = await database.fetch_all(
        "SELECT quantity, reserved_quantity FROM inventory WHERE variant_id = %s",
        (catalogue.variant,),
    )
    assert sum(row["quantity"] for row in rows) == 9
    assert sum(row["reserved_quantity"] for row in rows) == 1

    await service.update_status(waiting["id"], "cancelled", user_id=catalogue.admin)
    variant = await _variant_stock(database, catalogue.variant)
    assert (variant["stock_quantity"], variant["reserved_quantity"]) == (10, 0)


GUEST = {"name": "Minh", "phone": "0901 234 567"}
GUEST_ADDRESS = {"address_line1": "12 Hang Bai", "city": "Ha Noi"}


async def _guest_order(service, ids, **kwargs):
    return await service.create_guest_order(
        customer_info=GUEST,
        shipping_address=GUEST_ADDRESS,
        items=[{"variant_id": ids.variant, "quantity": 1, "price": "1"}],
        **kwargs,
    )


@pytest.mark.anyio
async def test_guest_checkout_keeps_contact_on_the_order(service, database, catalogue):
    order = await _guest_order(service, catalogue)

    assert order["customer_id"] is None
    assert order["sales_channel"] == "online"
    assert order["payment_method"] == "cod"
    assert order["total_amount"] == Decimal("140000")
    assert order["metadata"] == {
        "isGuest": True,
        "customerInfo": GUEST,
        "shippingAddress": GUEST_ADDRESS,
    }
    assert [item["sku"] for item in order["items"]] == ["THERM-01"]
    variant = await _variant_stock(database, catalogue.variant)
    assert (variant["stock_quantity"], variant["reserved_quantity"]) == (9, 1)
    customer = await database.fetch_one(
        "SELECT total_orders FROM customers WHERE id = %s", (catalogue.customer,)
    )
    assert customer["total_orders"] == 0


@pytest.mark.anyio
async def test_guest_checkout_payment_methods(service, database, catalogue):
    with pytest.raises(AppError) as excinfo:
        await _guest_order(service, catalogue, payment_method="cash")

    assert excinfo.value.message == "Payment method cash is not available for guest orders"
    assert await _order_count(database) == 0


@pytest.mark.anyio
async def test_guest_order_tracking_checks_the_phone(service, catalogue):
    order = await _guest_order(service, catalogue)
    registered = await _place(service, catalogue, quantity=1)

    found = await service.track_guest_order(order["order_number"], "0901234567")
    assert found["id"] == order["id"]
    assert [item["quantity"] for item in found["items"]] == [1]

    for number, phone in (
        (order["order_number"], "0909999999"),
        (registered["order_number"], "0901234567"),
        ("ORD000000000000", "0901234567"),
    ):
        with pytest.raises(AppError) as excinfo:
            await service.track_guest_order(number, phone)
        assert excinfo.value.status_code == 404
