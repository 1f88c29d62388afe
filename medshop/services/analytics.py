from __future__ import annotations

import calendar
import csv
import statistics
from collections import defaultdict
from datetime import date, datetime, timedelta
from decimal import Decimal
from io import StringIO
from typing import Any, Iterable

from medshop.core.database import Database, utcnow
from medshop.core.errors import AppError
from medshop.repositories import analytics as analytics_repo
from medshop.repositories.rows import money


TREND_PERIODS = ("daily", "weekly", "monthly")
REPORT_TYPES = ("sales", "inventory", "customers")


def current_month_range(now: datetime | None = None) -> tuple[datetime, datetime]:
    now = now or utcnow()
    last_day = calendar.monthrange(now.year, now.month)[1]
    start = datetime(now.year, now.month, 1)
    end = datetime(now.year, now.month, last_day, 23, 59, 59)
    return start, end


def _subtract_months(moment: datetime, months: int) -> datetime:
    month_index = moment.year * 12 + moment.month - 1 - months
    year, month = divmod(month_index, 12)
    day = min(moment.day, calendar.monthrange(year, month + 1)[1])
    return moment.replace(year=year, month=month + 1, day=day)


def bucket_start(moment: datetime, period: str) -> date:
    day = moment.date()
    if period == "weekly":
        return day - timedelta(days=day.weekday())
    if period == "monthly":
        return day.replace(day=1)
    return day


def _average(values: list[Decimal]) -> Decimal:
    if not values:
        return money(Decimal(0))
    return money(sum(values, Decimal(0)) / len(values))


def customer_segment(order_count: int) -> str:
    if order_count <= 1:
        return "One-time"
    if order_count <= 5:
        return "Regular"
    return "VIP"


def rows_to_csv(fieldnames: list[str], rows: Iterable[dict[str, Any]]) -> str:
    output = StringIO()
    writer = csv.DictWriter(output, fieldnames=fieldnames, lineterminator="\n")
    writer.writeheader()
    for row in rows:
        writer.writerow(row)
    return output.getvalue()


class AnalyticsService:
    """Sales, product, customer and inventory reporting.

    Orders that ended up cancelled or refunded are left out of every revenue
    figure. The status distribution is the only view that counts them.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    async def sales_metrics(
        self, start: datetime | None = None, end: datetime | None = None
    ) -> dict[str, Any]:
        if start is None or end is None:
            start, end = current_month_range()
        orders = await analytics_repo.list_orders_between(self.db, start, end)
        totals = [order["total_amount"] for order in orders]
        per_customer: dict[str, int] = defaultdict(int)
        for order in orders:
            if order["customer_id"]:
                per_customer[order["customer_id"]] += 1
        return {
            "totalRevenue": money(sum(totals, Decimal(0))),
            "totalOrders": len(orders),
            "averageOrderValue": _average(totals),
            "totalCustomers": len(per_customer),
            "returningCustomers": sum(1 for count in per_customer.values() if count > 1),
        }

    async def sales_trend(self, period: str = "daily") -> list[dict[str, Any]]:
        if period not in TREND_PERIODS:
            raise AppError(f"Unknown trend period {period}", 400)
        end = utcnow()
        if period == "daily":
            start = end - timedelta(days=30)
        elif period == "weekly":
            start = _subtract_months(end, 3)
        else:
            start = _subtract_months(end, 12)

        buckets: dict[date, list[Decimal]] = defaultdict(list)
        for order in await analytics_repo.list_orders_between(self.db, start, end):
            buckets[bucket_start(order["created_at"], period)].append(order["total_amount"])
        return [
            {
                "date": bucket.isoformat(),
                "orders": len(values),
                "revenue": money(sum(values, Decimal(0))),
                "avg_order_value": _average(values),
            }
            for bucket, values in sorted(buckets.items())
        ]

    async def product_metrics(self) -> dict[str, Any]:
        since = utcnow() - timedelta(days=30)
        sold: dict[str, dict[str, Any]] = {}
        for item in await analytics_repo.list_sold_items_since(self.db, since):
            entry = sold.setdefault(
                item["variant_id"],
                {
                    "variant_id": item["variant_id"],
                    "product_id": item["product_id"],
                    "name": item["product_name"],
                    "sku": item["sku"],
                    "total_sold": 0,
                    "total_revenue": Decimal(0),
                    "orders": set(),
                },
            )
            entry["total_sold"] += item["quantity"]
            entry["total_revenue"] += item["unit_price"] * item["quantity"]
            entry["orders"].add(item["order_id"])

        top_products = []
        for entry in sorted(sold.values(), key=lambda value: value["total_sold"], reverse=True)[:10]:
            orders = entry.pop("orders")
            top_products.append(
                {**entry, "total_revenue": money(entry["total_revenue"]), "order_count": len(orders)}
            )

        stock = await analytics_repo.list_variant_stock(self.db)
        low_stock = []
        for row in stock:
            threshold = row["low_stock_threshold"]
            if row["stock_quantity"] <= threshold * 1.5:
                ratio = row["stock_quantity"] / threshold if threshold else None
                low_stock.append(
                    {
                        "variant_id": row["variant_id"],
                        "product_id": row["product_id"],
                        "name": row["product_name"],
                        "sku": row["sku"],
                        "current_stock": row["stock_quantity"],
                        "low_stock_threshold": threshold,
                        "stock_ratio": round(ratio, 4) if ratio is not None else None,
                    }
                )
        low_stock.sort(key=lambda row: (row["stock_ratio"] is None, row["stock_ratio"] or 0))

        categories: dict[str, dict[str, Any]] = {}
        inventory_value = Decimal(0)
        for row in stock:
            value = row["price"] * row["stock_quantity"]
            inventory_value += value
            if not row["category_id"]:
                continue
            bucket = categories.setdefault(
                row["category_id"],
                {
                    "category": row["category_name"],
                    "products": set(),
                    "total_stock": 0,
                    "inventory_value": Decimal(0),
                },
            )
            bucket["products"].add(row["product_id"])
            bucket["total_stock"] += row["stock_quantity"]
            bucket["inventory_value"] += value

        by_category = [
            {
                "category": bucket["category"],
                "product_count": len(bucket["products"]),
                "total_stock": bucket["total_stock"],
                "inventory_value": money(bucket["inventory_value"]),
            }
            for bucket in categories.values()
        ]
        by_category.sort(key=lambda row: row["inventory_value"], reverse=True)

        return {
            "topProducts": top_products,
            "lowStockProducts": low_stock[:20],
            "productsByCategory": by_category,
            "inventoryValue": money(inventory_value),
        }

    async def customer_metrics(
        self, start: datetime | None = None, end: datetime | None = None
    ) -> dict[str, Any]:
        if start is None or end is None:
            start, end = current_month_range()

        new_customers = await analytics_repo.list_new_customers(self.db, start, end)
        days_to_first = [
            (row["first_order_at"] - row["created_at"]).total_seconds() / 86400
            for row in new_customers
            if row["first_order_at"] and row["created_at"]
        ]

        totals = await analytics_repo.list_customer_totals(self.db)
        values = sorted(row["total_spent"] for row in totals)

        segments: dict[str, list[Decimal]] = defaultdict(list)
        for row in totals:
            segments[customer_segment(row["order_count"])].append(row["total_spent"])

        return {
            "newCustomers": {
                "new_customers": len(new_customers),
                "avg_days_to_first_order": (
                    round(sum(days_to_first) / len(days_to_first), 2) if days_to_first else None
                ),
            },
            "customerValue": {
                "avg_customer_value": _average(values),
                "max_customer_value": values[-1] if values else money(Decimal(0)),
                "median_customer_value": (
                    money(statistics.median(values)) if values else money(Decimal(0))
                ),
            },
            "segmentation": [
                {
                    "segment": segment,
                    "customer_count": len(amounts),
                    "avg_spent": _average(amounts),
                }
                for segment, amounts in segments.items()
            ],
        }

    async def inventory_turnover(self) -> list[dict[str, Any]]:
        since = utcnow() - timedelta(days=90)
        outbound = {
            row["variant_id"]: row["total_out"]
            for row in await analytics_repo.list_outbound_movements_since(self.db, since)
        }
        result = []
        for row in await analytics_repo.list_variant_stock(self.db):
            total_out = outbound.get(row["variant_id"], 0)
            current = row["stock_quantity"]
            # Ninety days of movement annualised over four quarters.
            rate = total_out / current * 4 if current > 0 else 0.0
            result.append(
                {
                    "name": row["product_name"],
                    "sku": row["sku"],
                    "total_sold": total_out,
                    "current_stock": current,
                    "turnover_rate": round(rate, 2),
                }
            )
        result.sort(key=lambda row: row["turnover_rate"], reverse=True)
        return result

    async def revenue_by_channel(self) -> list[dict[str, Any]]:
        end = utcnow()
        channels: dict[str, list[Decimal]] = defaultdict(list)
        for order in await analytics_repo.list_orders_between(self.db, end - timedelta(days=30), end):
            channels[order["sales_channel"] or "online"].append(order["total_amount"])
        rows = [
            {
                "sales_channel": channel,
                "order_count": len(amounts),
                "total_revenue": money(sum(amounts, Decimal(0))),
                "avg_order_value": _average(amounts),
            }
            for channel, amounts in channels.items()
        ]
        rows.sort(key=lambda row: row["total_revenue"], reverse=True)
        return rows

    async def status_distribution(self) -> list[dict[str, Any]]:
        end = utcnow()
        statuses: dict[str, list[Decimal]] = defaultdict(list)
        orders = await analytics_repo.list_orders_between(
            self.db, end - timedelta(days=30), end, include_closed=True
        )
        for order in orders:
            statuses[order["status"]].append(order["total_amount"])
        rows = [
            {"status": status, "count": len(amounts), "total_value": money(sum(amounts, Decimal(0)))}
            for status, amounts in statuses.items()
        ]
        rows.sort(key=lambda row: row["count"], reverse=True)
        return rows

    async def hourly_pattern(self) -> list[dict[str, Any]]:
        end = utcnow()
        hours: dict[int, list[Decimal]] = defaultdict(list)
        for order in await analytics_repo.list_orders_between(self.db, end - timedelta(days=7), end):
            hours[order["created_at"].hour].append(order["total_amount"])
        return [
            {"hour": hour, "order_count": len(amounts), "avg_value": _average(amounts)}
            for hour, amounts in sorted(hours.items())
        ]

    async def sales_report(self, start: datetime, end: datetime) -> dict[str, Any]:
        if start > end:
            raise AppError("Start date must be before end date", 400)
        return {
            "period": {"startDate": start, "endDate": end},
            "summary": await self.sales_metrics(start, end),
            "trend": await self.sales_trend("daily"),
            "products": await self.product_metrics(),
            "customers": await self.customer_metrics(start, end),
            "revenueByChannel": await self.revenue_by_channel(),
            "generatedAt": utcnow(),
        }

    async def inventory_report(self) -> dict[str, Any]:
        products = await self.product_metrics()
        return {
            "totalValue": products["inventoryValue"],
            "lowStockCount": await analytics_repo.count_low_stock_rows(self.db),
            "topProducts": products["topProducts"],
            "lowStockProducts": products["lowStockProducts"],
            "categoryBreakdown": products["productsByCategory"],
            "turnoverRates": await self.inventory_turnover(),
            "generatedAt": utcnow(),
        }

    async def export_csv(self, report_type: str) -> str:
        if report_type == "sales":
            trend = await self.sales_trend("daily")
            return rows_to_csv(
                ["Date", "Orders", "Revenue", "Avg Order Value"],
                (
                    {
                        "Date": row["date"],
                        "Orders": row["orders"],
                        "Revenue": row["revenue"],
                        "Avg Order Value": row["avg_order_value"],
                    }
                    for row in trend
                ),
            )
        if report_type == "inventory":
            turnover = await self.inventory_turnover()
            return rows_to_csv(
                ["Product", "SKU", "Current Stock", "Turnover Rate"],
                (
                    {
                        "Product": row["name"],
                        "SKU": row["sku"],
                        "Current Stock": row["current_stock"],
                        "Turnover Rate": row["turnover_rate"],
                    }
                    for row in turnover
                ),
            )
        if report_type == "customers":
            metrics = await self.customer_metrics()
            return rows_to_csv(
                ["Segment", "Customer Count", "Avg Spent"],
                (
                    {
                        "Segment": row["segment"],
                        "Customer Count": row["customer_count"],
                        "Avg Spent": row["avg_spent"],
                    }
                    for row in metrics["segmentation"]
                ),
            )
        raise AppError("Invalid report type", 400)
