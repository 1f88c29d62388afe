from __future__ import annotations

import time
from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse

from medshop.api.dependencies.auth import require_manager
from medshop.api.dependencies.services import get_analytics_service
from medshop.api.responses import success
from medshop.schemas.analytics import ReportExportRequest, SalesReportRequest
from medshop.services.analytics import AnalyticsService

router = APIRouter(
    prefix="/analytics",
    tags=["Analytics"],
    dependencies=[Depends(require_manager)],
)


@router.get("/sales/metrics")
async def sales_metrics(
    start_date: datetime | None = Query(default=None, alias="startDate"),
    end_date: datetime | None = Query(default=None, alias="endDate"),
    service: AnalyticsService = Depends(get_analytics_service),
) -> dict:
    return success(await service.sales_metrics(start_date, end_date))


@router.get("/sales/trend")
async def sales_trend(
    period: Literal["daily", "weekly", "monthly"] = Query(default="daily"),
    service: AnalyticsService = Depends(get_analytics_service),
) -> dict:
    return success(await service.sales_trend(period))


@router.get("/products/metrics")
async def product_metrics(service: AnalyticsService = Depends(get_analytics_service)) -> dict:
    return success(await service.product_metrics())


@router.get("/customers/metrics")
async def customer_metrics(
    start_date: datetime | None = Query(default=None, alias="startDate"),
    end_date: datetime | None = Query(default=None, alias="endDate"),
    service: AnalyticsService = Depends(get_analytics_service),
) -> dict:
    return success(await service.customer_metrics(start_date, end_date))


@router.get("/inventory/turnover")
async def inventory_turnover(service: AnalyticsService = Depends(get_analytics_service)) -> dict:
    return success(await service.inventory_turnover())


@router.get("/revenue/by-channel")
async def revenue_by_channel(service: AnalyticsService = Depends(get_analytics_service)) -> dict:
    return success(await service.revenue_by_channel())


@router.get("/orders/status-distribution")
async def status_distribution(service: AnalyticsService = Depends(get_analytics_service)) -> dict:
    return success(await service.status_distribution())


@router.get("/orders/hourly-pattern")
async def hourly_pattern(service: AnalyticsService = Depends(get_analytics_service)) -> dict:
    return success(await service.hourly_pattern())


@router.post("/reports/sales")
async def sales_report(
    payload: SalesReportRequest,
    service: AnalyticsService = Depends(get_analytics_service),
) -> dict:
    return success(await service.sales_report(payload.start_date, payload.end_date))


@router.post("/reports/inventory")
async def inventory_report(service: AnalyticsService = Depends(get_analytics_service)) -> dict:
    return success(await service.inventory_report())


@router.post("/reports/export")
async def export_report(
    payload: ReportExportRequest,
    service: AnalyticsService = Depends(get_analytics_service),
) -> StreamingResponse:
    content = await service.export_csv(payload.report_type)
    filename = f"{payload.report_type}-report-{int(time.time() * 1000)}.csv"
    return StreamingResponse(
        iter([content]),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )
