from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from medshop.core.database import utcnow
from medshop.core.errors import AppError
from medshop.services.analytics import (
    AnalyticsService,
    bucket_start,
    current_month_range,
    customer_segment,
    rows_to_csv,
)
from medshop.services.orders import OrderService


def test_bucket_start_by_period():
    moment = datetime(2026, 10, 15, 18, 45)  # a Thursday
    assert bucket_start(moment, "daily") == date(2026, 10, 15)
    assert bucket_start(moment, "weekly") == date(2026, 10, 12)
    assert bucket_start(moment, "monthly") == date(2026, 10, 1)


def test_current_month_range_covers_whole_month():
    start, end = current_month_range(datetime(2024, 2, 10, 9, 0))
    assert start == datetime(2024, 2, 1)
    assert end == datetime(2024, 2, 29, 23, 59, 59)


@pytest.mark.parametrize(
    "orders, segment",
    [(1, "One-time"), (2, "Regular"), (5, "Regular"), (6, "VIP")],
)
def test_customer_segments(orders, segment):
    assert customer_segment(orders) == segment


def test_rows_to_csv_writes_header_and_rows():
    content = rows_to_csv(
        ["Segment", "Customer Count"],
        [{"Segment": "VIP", "Customer Count": 3}, {"Segment": "One, time", "Customer Count": 1}],
    )
    assert content == 'Segment,Customer Count\nVIP,3\n"One, time",1\n'


@pytest.fixture
def analytics(database):
    return AnalyticsService(database)


@pytest.fixture
async def orders(database, settings, catalogue):
    service = OrderService(database, settings)
    kept = await service.create_order(
        customer_id=catalogue.customer,
        items=[{"variant_id": catalogue.variant, "quantity": 2}],
        payment_method="cod",
    )
    dropped = await service.create_order(
        customer_id=catalogue.customer,
        items=[{"variant_id": catalogue.variant, "quantity": 1}],
        payment_method="cash",
    )
    await service.update_status(dropped["id"], "cancelled", user_id=catalogue.admin)
    return kept, dropped


def _window():
    now = utcnow()
    return now - timedelta(days=1), now + timedelta(days=1)


@pytest.mark.anyio
async def test_sales_metrics_ignore_cancelled_orders(analytics, orders):
    metrics = await analytics.sales_metrics(*_window())

    assert metrics["totalOrders"] == 1
    assert metrics["totalRevenue"] == Decimal("250000")
    assert metrics["averageOrderValue"] == Decimal("250000")
    assert metrics["totalCustomers"] == 1
    assert metrics["returningCustomers"] == 0


@pytest.mark.anyio
async def test_daily_trend_groups_orders(analytics, orders):
    trend = await analytics.sales_trend("daily")

    assert len(trend) == 1
    assert trend[0]["date"] == utcnow().date().isoformat()
    assert trend[0]["orders"] == 1


@pytest.mark.anyio
async def test_unknown_trend_period(analytics):
    with pytest.raises(AppError) as excinfo:
        await analytics.sales_trend("hourly")
    assert excinfo.value.status_code == 400


@pytest.mark.anyio
async def test_status_distribution_counts_closed_orders(analytics, orders):
    rows = await analytics.status_distribution()
    assert {row["status"]: row["count"] for row in rows} == {"pending": 1, "cancelled": 1}


@pytest.mark.anyio
async def test_customer_metrics(analytics, orders):
    metrics = await analytics.customer_metrics(*_window())

    assert metrics["newCustomers"]["new_customers"] == 1
    assert metrics["customerValue"]["max_customer_value"] == Decimal("250000")
    assert metrics["segmentation"] == [
        {"segment": "One-time", "customer_count": 1, "avg_spent": Decimal("250000")}
    ]


@pytest.mark.anyio
async def test_product_metrics_top_products(analytics, orders, catalogue):
    metrics = await analytics.product_metrics()

    (top,) = metrics["topProducts"]
    assert top["variant_id"] == catalogue.variant
    assert top["total_sold"] == 2
    assert top["order_count"] == 1
    assert metrics["lowStockProducts"] == []


@pytest.mark.anyio
async def test_sales_report_rejects_inverted_range(analytics):
    start, end = _window()
    with pytest.raises(AppError) as excinfo:
        await analytics.sales_report(end, start)
    assert excinfo.value.message == "Start date must be before end date"


@pytest.mark.anyio
async def test_sales_export_csv(analytics, orders):
    content = await analytics.export_csv("sales")

    header, row = content.strip().split("\n")
    assert header == "Date,Orders,Revenue,Avg Order Value"
    assert row.startswith(f"{utcnow().date().isoformat()},1,")


@pytest.mark.anyio
async def test_inventory_export_csv(analytics, catalogue):
    content = await analytics.export_csv("inventory")

    lines = content.strip().split("\n")
    assert lines[0] == "Product,SKU,Current Stock,Turnover Rate"
    assert lines[1].startswith("Digital Thermometer,THERM-01,10,")


@pytest.mark.anyio
async def test_unknown_export_type(analytics):
    with pytest.raises(AppError) as excinfo:
        await analytics.export_csv("payroll")
    assert excinfo.value.message == "Invalid report type"
