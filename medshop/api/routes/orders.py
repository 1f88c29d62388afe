from __future__ import annotations

from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, Query, status

from medshop.api.dependencies.auth import get_current_user, require_staff
from medshop.api.dependencies.services import get_order_service
from medshop.api.responses import success
from medshop.core.errors import AppError
from medshop.schemas.orders import (
    OrderCancelRequest,
    OrderCreateRequest,
    OrderStatus,
    OrderStatusUpdateRequest,
    PaymentStatus,
)
from medshop.services.orders import STAFF_ROLES, OrderService

router = APIRouter(prefix="/orders", tags=["Orders"])


def _is_staff(user: dict) -> bool:
    return user.get("role") in STAFF_ROLES


@router.get("/my-orders")
async def my_orders(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    status_filter: OrderStatus | None = Query(default=None, alias="status"),
    payment_status: PaymentStatus | None = Query(default=None, alias="paymentStatus"),
    current_user: dict = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
) -> dict:
    result = await service.get_my_orders(
        current_user["id"],
        status=status_filter,
        payment_status=payment_status,
        page=page,
        limit=limit,
    )
    return success(result["orders"], pagination=result["pagination"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_order(
    payload: OrderCreateRequest,
    current_user: dict = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
) -> dict:
    if _is_staff(current_user):
        # Counter sales are placed by staff on behalf of a customer.
        if not payload.customer_id:
            raise AppError("customerId is required when staff place an order", 400)
        customer_id = payload.customer_id
        sales_channel = "pos"
        processed_by = current_user["id"]
        dropped_fields = None
    else:
        customer_id = current_user["id"]
        sales_channel = "online"
        processed_by = None
        # Price and discount overrides are a counter privilege.
        dropped_fields = {"price", "discount"}

    order = await service.create_order(
        customer_id=customer_id,
        items=[item.model_dump(exclude=dropped_fields) for item in payload.items],
        payment_method=payload.payment_method,
        coupon_code=payload.coupon_code,
        shipping_address_id=payload.shipping_address_id,
        billing_address_id=payload.billing_address_id,
        notes=payload.notes,
        metadata=payload.metadata,
        sales_channel=sales_channel,
        processed_by=processed_by,
    )
    return success(order, message="Order created successfully")


@router.get("/statistics")
async def order_statistics(
    date_from: datetime | None = Query(default=None, alias="dateFrom"),
    date_to: datetime | None = Query(default=None, alias="dateTo"),
    current_user: dict = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
) -> dict:
    customer_id = None if _is_staff(current_user) else current_user["id"]
    stats = await service.statistics(
        customer_id=customer_id, date_from=date_from, date_to=date_to
    )
    return success(stats)


@router.get("")
async def list_orders(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    status_filter: OrderStatus | None = Query(default=None, alias="status"),
    payment_status: PaymentStatus | None = Query(default=None, alias="paymentStatus"),
    customer_id: str | None = Query(default=None, alias="customerId"),
    date_from: datetime | None = Query(default=None, alias="dateFrom"),
    date_to: datetime | None = Query(default=None, alias="dateTo"),
    search: str | None = Query(default=None, max_length=100),
    sort_by: str = Query(default="created_at", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query(default="desc", alias="sortOrder"),
    current_user: dict = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
) -> dict:
    if not _is_staff(current_user):
        customer_id = current_user["id"]
    result = await service.list_orders(
        customer_id=customer_id,
        status=status_filter,
        payment_status=payment_status,
        date_from=date_from,
        date_to=date_to,
        search=search,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return success(result["orders"], pagination=result["pagination"])


@router.get("/{order_id}")
async def get_order(
    order_id: str,
    current_user: dict = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
) -> dict:
    return success(await service.get_order(order_id, user=current_user))


@router.get("/{order_id}/history")
async def order_history(
    order_id: str,
    _: dict = Depends(require_staff),
    service: OrderService = Depends(get_order_service),
) -> dict:
    return success(await service.get_history(order_id))


@router.post("/{order_id}/cancel")
async def cancel_order(
    order_id: str,
    payload: OrderCancelRequest | None = None,
    current_user: dict = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
) -> dict:
    order = await service.cancel_order(
        order_id,
        reason=payload.reason if payload else None,
        user=current_user,
    )
    return success(order, message="Order cancelled successfully")


@router.patch("/{order_id}/status")
async def update_order_status(
    order_id: str,
    payload: OrderStatusUpdateRequest,
    current_user: dict = Depends(require_staff),
    service: OrderService = Depends(get_order_service),
) -> dict:
    order = await service.update_status(
        order_id,
        payload.status,
        notes=payload.notes,
        user_id=current_user["id"],
    )
    return success(order, message="Order status updated successfully")
