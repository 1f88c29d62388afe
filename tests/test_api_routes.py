from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from medshop.core.config import Settings, get_settings
from medshop.core.errors import AppError
from medshop.main import app
from medshop.security.tokens import issue_token

STOREFRONT_SETTINGS = Settings(
    _env_file=None, JWT_SECRET="test-secret", FRONTEND_URL="https://shop.example.vn/"
)


def _auth(role: str, user_id: str = "user-1") -> dict[str, str]:
    token = issue_token(
        {"id": user_id, "email": f"{role}@example.com", "role": role},
        secret=get_settings().jwt_secret,
        expires_in=3600,
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def services(monkeypatch):
    container = SimpleNamespace(
        orders=MagicMock(),
        analytics=MagicMock(),
        payments=MagicMock(settings=STOREFRONT_SETTINGS),
        pos=MagicMock(),
    )
    monkeypatch.setattr(app.state, "services", container, raising=False)
    return container


@pytest.fixture
def client():
    return TestClient(app, follow_redirects=False)


def test_health_reports_status(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["version"] == get_settings().app_version
    assert body["uptime"] >= 0


def test_runtime_stats(client):
    response = client.get("/api/v1/stats")

    assert response.status_code == 200
    body = response.json()
    assert set(body) == {"memory", "uptime", "cpuUsage", "timestamp"}
    assert body["memory"]["rss"] > 0


def test_missing_services_return_503(client, monkeypatch):
    monkeypatch.setattr(app.state, "services", None, raising=False)

    response = client.get("/api/v1/orders/my-orders", headers=_auth("customer"))

    assert response.status_code == 503
    assert response.json() == {"success": False, "message": "Service unavailable"}


def test_orders_require_authentication(client, services):
    response = client.get("/api/v1/orders/my-orders")

    assert response.status_code == 401
    assert response.json() == {"success": False, "message": "Authentication required"}


def test_customer_order_is_placed_online_for_themselves(client, services):
    services.orders.create_order = AsyncMock(return_value={"id": "o1", "status": "pending"})

    response = client.post(
        "/api/v1/orders",
        json={
            "items": [{"variantId": "v1", "quantity": 2, "price": 1, "discount": 5000}],
            "paymentMethod": "cod",
            "customerId": "someone-else",
            "couponCode": "  ",
        },
        headers=_auth("customer", "cust-7"),
    )

    assert response.status_code == 201
    assert response.json() == {
        "success": True,
        "message": "Order created successfully",
        "data": {"id": "o1", "status": "pending"},
    }
    kwargs = services.orders.create_order.await_args.kwargs
    assert kwargs["customer_id"] == "cust-7"
    assert kwargs["sales_channel"] == "online"
    assert kwargs["processed_by"] is None
    assert kwargs["coupon_code"] is None
    assert kwargs["items"] == [{"variant_id": "v1", "quantity": 2}]


def test_staff_order_needs_customer(client, services):
    services.orders.create_order = AsyncMock()

    response = client.post(
        "/api/v1/orders",
        json={"items": [{"variantId": "v1", "quantity": 1}], "paymentMethod": "cash"},
        headers=_auth("staff", "staff-1"),
    )

    assert response.status_code == 400
    assert response.json()["message"] == "customerId is required when staff place an order"
    services.orders.create_order.assert_not_awaited()


def test_staff_order_is_a_counter_sale(client, services):
    services.orders.create_order = AsyncMock(return_value={"id": "o2"})

    response = client.post(
        "/api/v1/orders",
        json={
            "items": [{"variantId": "v1", "quantity": 1, "price": "90000", "discount": "5000"}],
            "paymentMethod": "cash",
            "customerId": "cust-9",
        },
        headers=_auth("staff", "staff-1"),
    )

    assert response.status_code == 201
    kwargs = services.orders.create_order.await_args.kwargs
    assert kwargs["customer_id"] == "cust-9"
    assert kwargs["sales_channel"] == "pos"
    assert kwargs["processed_by"] == "staff-1"
    assert kwargs["items"][0]["price"] == Decimal("90000")
    assert kwargs["items"][0]["discount"] == Decimal("5000")


def test_order_validation_errors(client, services):
    response = client.post(
        "/api/v1/orders",
        json={"items": [], "paymentMethod": "barter"},
        headers=_auth("customer"),
    )

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "Validation Error"
    assert {error["field"] for error in body["errors"]} == {"items", "paymentMethod"}


def test_customer_listing_is_scoped_to_themselves(client, services):
    services.orders.list_orders = AsyncMock(
        return_value={
            "orders": [],
            "pagination": {"page": 1, "limit": 20, "totalCount": 0, "totalPages": 0},
        }
    )

    response = client.get(
        "/api/v1/orders?customerId=other", headers=_auth("customer", "cust-7")
    )

    assert response.status_code == 200
    assert response.json()["pagination"]["totalCount"] == 0
    assert services.orders.list_orders.await_args.kwargs["customer_id"] == "cust-7"


def test_status_update_is_staff_only(client, services):
    services.orders.update_status = AsyncMock()

    response = client.patch(
        "/api/v1/orders/o1/status", json={"status": "confirmed"}, headers=_auth("customer")
    )

    assert response.status_code == 403
    assert response.json()["message"] == "Insufficient permissions"
    services.orders.update_status.assert_not_awaited()


def test_service_errors_keep_their_status(client, services):
    services.orders.update_status = AsyncMock(
        side_effect=AppError("Cannot change status from delivered to processing", 400)
    )

    response = client.patch(
        "/api/v1/orders/o1/status",
        json={"status": "processing"},
        headers=_auth("manager", "mgr-1"),
    )

    assert response.status_code == 400
    assert response.json() == {
        "success": False,
        "message": "Cannot change status from delivered to processing",
    }
    services.orders.update_status.assert_awaited_once_with(
        "o1", "processing", notes=None, user_id="mgr-1"
    )


def test_cancel_without_body(client, services):
    services.orders.cancel_order = AsyncMock(return_value={"id": "o1", "status": "cancelled"})

    response = client.post("/api/v1/orders/o1/cancel", headers=_auth("customer", "cust-7"))

    assert response.status_code == 200
    kwargs = services.orders.cancel_order.await_args.kwargs
    assert kwargs["reason"] is None
    assert kwargs["user"]["id"] == "cust-7"


def test_analytics_requires_manager(client, services):
    response = client.get("/api/v1/analytics/sales/metrics", headers=_auth("staff"))
    assert response.status_code == 403


def test_report_export_streams_csv(client, services):
    services.analytics.export_csv = AsyncMock(return_value="Date,Orders,Revenue,Avg Order Value\n")

    response = client.post(
        "/api/v1/analytics/reports/export",
        json={"reportType": "sales"},
        headers=_auth("manager"),
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    disposition = response.headers["content-disposition"]
    assert disposition.startswith("attachment; filename=sales-report-")
    assert disposition.endswith(".csv")
    assert response.text == "Date,Orders,Revenue,Avg Order Value\n"


def test_report_export_rejects_unknown_type(client, services):
    response = client.post(
        "/api/v1/analytics/reports/export",
        json={"reportType": "payroll"},
        headers=_auth("admin"),
    )
    assert response.status_code == 400
    assert response.json()["errors"][0]["field"] == "reportType"


def test_vnpay_return_redirects_to_result_page(client, services):
    services.payments.verify_callback = AsyncMock(
        return_value={"success": True, "paymentId": "pay-1"}
    )

    response = client.get("/api/v1/payment/callback/vnpay?vnp_TxnRef=pay-1")

    assert response.status_code == 302
    assert response.headers["location"] == "https://shop.example.vn/payment/success?id=pay-1"
    services.payments.verify_callback.assert_awaited_once_with("vnpay", {"vnp_TxnRef": "pay-1"})


def test_vnpay_return_with_bad_signature_goes_to_error_page(client, services):
    services.payments.verify_callback = AsyncMock(side_effect=AppError("Invalid signature", 400))

    response = client.get("/api/v1/payment/callback/vnpay?vnp_TxnRef=pay-1")

    assert response.status_code == 302
    assert response.headers["location"] == "https://shop.example.vn/payment/error"


@pytest.mark.parametrize(
    "outcome, code",
    [
        ({"return_value": {"success": True, "paymentId": "p"}}, "00"),
        ({"return_value": {"success": False, "paymentId": "p"}}, "01"),
        ({"side_effect": AppError("Invalid signature", 400)}, "99"),
    ],
)
def test_vnpay_ipn_response_codes(client, services, outcome, code):
    services.payments.verify_callback = AsyncMock(**outcome)

    response = client.post("/api/v1/payment/ipn/vnpay?vnp_TxnRef=p")

    assert response.status_code == 200
    assert response.json()["RspCode"] == code


def test_momo_ipn_always_acknowledges(client, services):
    services.payments.verify_callback = AsyncMock(side_effect=RuntimeError("boom"))

    response = client.post("/api/v1/payment/ipn/momo", json={"orderId": "o1"})

    assert response.status_code == 204
    assert response.content == b""


def test_unexpected_payment_failure_is_reported_as_500(client, services):
    services.payments.create_intent = AsyncMock(side_effect=RuntimeError("gateway exploded"))

    response = client.post(
        "/api/v1/payment/intent",
        json={"orderId": "o1", "amount": 1000, "provider": "cash"},
        headers=_auth("customer"),
    )

    assert response.status_code == 500
    assert response.json() == {"success": False, "message": "Failed to create payment intent"}


def test_payment_history_is_scoped_for_customers(client, services):
    services.payments.history = AsyncMock(return_value=[])

    response = client.get(
        "/api/v1/payment/history?customerId=other", headers=_auth("customer", "cust-7")
    )

    assert response.status_code == 200
    assert services.payments.history.await_args.kwargs["customer_id"] == "cust-7"


def test_refund_requires_manager(client, services):
    services.payments.refund = AsyncMock()

    response = client.post(
        "/api/v1/payment/refund", json={"paymentId": "p1"}, headers=_auth("customer")
    )

    assert response.status_code == 403
    services.payments.refund.assert_not_awaited()


@pytest.mark.parametrize(
    "role, code", [("customer", 403), ("manager", 403), ("staff", 200), ("admin", 200)]
)
def test_counter_routes_are_for_staff_and_admins(client, services, role, code):
    services.pos.today_orders = AsyncMock(return_value=[])

    response = client.get("/api/v1/pos/orders/today", headers=_auth(role))

    assert response.status_code == code


def test_counter_sale_is_rung_up_by_the_cashier(client, services):
    services.pos.create_sale = AsyncMock(return_value={"id": "o9", "change_amount": "30000.00"})

    response = client.post(
        "/api/v1/pos/orders",
        json={
            "items": [{"variantId": "v1", "quantity": 2, "discount": "10000"}],
            "customerInfo": {"name": "Walk-in", "phone": "0901234567"},
            "receivedAmount": "250000",
            "loyaltyPoints": 5,
            "customerId": "cust-1",
        },
        headers=_auth("staff", "cashier-1"),
    )

    assert response.status_code == 201
    assert response.json()["data"] == {"id": "o9", "change_amount": "30000.00"}
    kwargs = services.pos.create_sale.await_args.kwargs
    assert kwargs["cashier_id"] == "cashier-1"
    assert kwargs["payment_method"] == "cash"
    assert kwargs["received_amount"] == Decimal("250000")
    assert kwargs["loyalty_points"] == 5
    assert kwargs["customer_info"] == {"name": "Walk-in", "phone": "0901234567"}
    assert kwargs["items"][0]["discount"] == Decimal("10000")


def test_counter_sale_rejects_online_only_payment_methods(client, services):
    services.pos.create_sale = AsyncMock()

    response = client.post(
        "/api/v1/pos/orders",
        json={"items": [{"variantId": "v1", "quantity": 1}], "paymentMethod": "cod"},
        headers=_auth("admin"),
    )

    assert response.status_code == 400
    services.pos.create_sale.assert_not_awaited()


def test_counter_product_search_passes_the_query(client, services):
    services.pos.search_products = AsyncMock(return_value=[{"sku": "THERM-01"}])

    response = client.get("/api/v1/pos/products/search?q=therm", headers=_auth("staff"))

    assert response.json()["data"] == [{"sku": "THERM-01"}]
    services.pos.search_products.assert_awaited_once_with("therm")


def test_counter_refund_and_loyalty_quote(client, services):
    services.pos.refund = AsyncMock(return_value={"order_id": "o1"})
    services.pos.quote_loyalty = AsyncMock(return_value={"points_used": 20})

    refund = client.post(
        "/api/v1/pos/refunds",
        json={"orderId": "o1", "reason": "Wrong size"},
        headers=_auth("staff", "cashier-2"),
    )
    quote = client.post(
        "/api/v1/pos/loyalty/apply",
        json={"customerId": "cust-1", "points": 20},
        headers=_auth("staff"),
    )

    assert refund.json()["message"] == "Refund processed successfully"
    services.pos.refund.assert_awaited_once_with("o1", reason="Wrong size", user_id="cashier-2")
    assert quote.json()["data"] == {"points_used": 20}
    services.pos.quote_loyalty.assert_awaited_once_with("cust-1", 20)


def test_guest_checkout_needs_no_account(client, services):
    services.orders.create_guest_order = AsyncMock(return_value={"order_number": "ORD1"})

    response = client.post(
        "/api/v1/guest-orders",
        json={
            "customerInfo": {"name": "Minh", "phone": "0901 234 567"},
            "shippingAddress": {"addressLine1": "12 Hang Bai", "city": "Ha Noi"},
            "items": [{"variantId": "v1", "quantity": 1, "price": 1}],
        },
    )

    assert response.status_code == 201
    kwargs = services.orders.create_guest_order.await_args.kwargs
    assert kwargs["payment_method"] == "cod"
    assert kwargs["items"] == [{"variant_id": "v1", "quantity": 1}]
    assert kwargs["customer_info"] == {"name": "Minh", "phone": "0901 234 567"}
    assert kwargs["shipping_address"] == {"address_line1": "12 Hang Bai", "city": "Ha Noi"}


def test_guest_order_lookup_requires_phone(client, services):
    services.orders.track_guest_order = AsyncMock(return_value={"order_number": "ORD1"})

    missing = client.get("/api/v1/guest-orders/ORD1")
    found = client.get("/api/v1/guest-orders/ORD1?phone=0901234567")

    assert missing.status_code == 400
    assert found.json()["data"] == {"order_number": "ORD1"}
    services.orders.track_guest_order.assert_awaited_once_with("ORD1", "0901234567")
