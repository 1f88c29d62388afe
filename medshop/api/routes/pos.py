from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from medshop.api.dependencies.auth import require_roles
from medshop.api.dependencies.services import get_pos_service
from medshop.api.responses import success
from medshop.schemas.pos import LoyaltyQuoteRequest, PosRefundRequest, PosSaleRequest
from medshop.services.pos import PosService

router = APIRouter(prefix="/pos", tags=["POS"])

require_counter = require_roles("staff", "admin")


@router.post("/orders", status_code=status.HTTP_201_CREATED)
async def create_sale(
    payload: PosSaleRequest,
    cashier: dict = Depends(require_counter),
    service: PosService = Depends(get_pos_service),
) -> dict:
    order = await service.create_sale(
        items=[item.model_dump() for item in payload.items],
        cashier_id=cashier["id"],
        customer_id=payload.customer_id,
        payment_method=payload.payment_method,
        received_amount=payload.received_amount,
        loyalty_points=payload.loyalty_points,
        customer_info=payload.customer_info.model_dump() if payload.customer_info else None,
        notes=payload.notes,
    )
    return success(order, message="Order created successfully")


@router.get("/orders/today")
async def today_orders(
    _: dict = Depends(require_counter),
    service: PosService = Depends(get_pos_service),
) -> dict:
    return success(await service.today_orders())


@router.get("/stats/today")
async def today_stats(
    _: dict = Depends(require_counter),
    service: PosService = Depends(get_pos_service),
) -> dict:
    return success(await service.today_stats())


@router.get("/products/search")
async def search_products(
    q: str | None = Query(default=None, max_length=100),
    _: dict = Depends(require_counter),
    service: PosService = Depends(get_pos_service),
) -> dict:
    return success(await service.search_products(q))


@router.post("/refunds")
async def refund_sale(
    payload: PosRefundRequest,
    cashier: dict = Depends(require_counter),
    service: PosService = Depends(get_pos_service),
) -> dict:
    refund = await service.refund(payload.order_id, reason=payload.reason, user_id=cashier["id"])
    return success(refund, message="Refund processed successfully")


@router.post("/loyalty/apply")
async def quote_loyalty(
    payload: LoyaltyQuoteRequest,
    _: dict = Depends(require_counter),
    service: PosService = Depends(get_pos_service),
) -> dict:
    return success(await service.quote_loyalty(payload.customer_id, payload.points))
