from __future__ import annotations

from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

OrderStatus = Literal[
    "pending",
    "confirmed",
    "processing",
    "packed",
    "shipped",
    "delivered",
    "cancelled",
    "refunded",
]
PaymentStatus = Literal["pending", "paid", "failed", "refunded", "cancelled"]
PaymentMethod = Literal["cash", "card", "bank_transfer", "e_wallet", "cod", "vnpay", "momo"]


class OrderItemRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    variant_id: str = Field(alias="variantId", min_length=1)
    quantity: int = Field(ge=1)
    price: Optional[Decimal] = Field(default=None, ge=0)
    discount: Decimal = Field(default=Decimal(0), ge=0)


class OrderCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    items: list[OrderItemRequest] = Field(min_length=1)
    payment_method: PaymentMethod = Field(alias="paymentMethod")
    customer_id: Optional[str] = Field(default=None, alias="customerId")
    shipping_address_id: Optional[str] = Field(default=None, alias="shippingAddressId")
    billing_address_id: Optional[str] = Field(default=None, alias="billingAddressId")
    coupon_code: Optional[str] = Field(default=None, alias="couponCode", max_length=50)
    notes: Optional[str] = Field(default=None, max_length=2000)
    metadata: Optional[dict[str, Any]] = None

    @field_validator("coupon_code", "notes")
    @classmethod
    def _strip(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None


class OrderStatusUpdateRequest(BaseModel):
    status: OrderStatus
    notes: Optional[str] = Field(default=None, max_length=2000)


class OrderCancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=2000)


GuestPaymentMethod = Literal["cod", "bank_transfer", "vnpay", "momo"]


class GuestCustomerInfo(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    phone: str = Field(min_length=8, max_length=20, pattern=r"^\+?[0-9 .-]+$")
    email: Optional[EmailStr] = None


class GuestShippingAddress(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    address_line1: str = Field(alias="addressLine1", min_length=1, max_length=255)
    address_line2: Optional[str] = Field(default=None, alias="addressLine2", max_length=255)
    ward: Optional[str] = Field(default=None, max_length=100)
    district: Optional[str] = Field(default=None, max_length=100)
    city: str = Field(min_length=1, max_length=100)


class GuestOrderItemRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    variant_id: str = Field(alias="variantId", min_length=1)
    quantity: int = Field(ge=1)


class GuestOrderRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    customer_info: GuestCustomerInfo = Field(alias="customerInfo")
    shipping_address: GuestShippingAddress = Field(alias="shippingAddress")
    items: list[GuestOrderItemRequest] = Field(min_length=1)
    payment_method: GuestPaymentMethod = Field(default="cod", alias="paymentMethod")
    notes: Optional[str] = Field(default=None, max_length=2000)
