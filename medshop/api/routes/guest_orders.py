from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from medshop.api.dependencies.services import get_order_service
from medshop.api.responses import success
from medshop.schemas.orders import GuestOrderRequest
from medshop.services.orders import OrderService

router = APIRouter(prefix="/guest-orders", tags=["Guest Orders"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_guest_order(
    payload: GuestOrderRequest,
    service: OrderService = Depends(get_order_service),
) -> dict:
    order = await service.create_guest_order(
        customer_info=payload.customer_info.model_dump(exclude_none=True),
        shipping_address=payload.shipping_address.model_dump(exclude_none=True),
        items=[item.model_dump() for item in payload.items],
        payment_method=payload.payment_method,
        notes=payload.notes,
    )
    return success(order, message="Order created successfully")


@router.get("/{order_number}")
async def track_guest_order(
    order_number: str,
    phone: str = Query(min_length=8, max_length=20),
    service: OrderService = Depends(get_order_service),
) -> dict:
    return success(await service.track_guest_order(order_number, phone))
