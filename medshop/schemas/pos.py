from __future__ import annotations

from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from medshop.schemas.orders import OrderItemRequest

CounterPaymentMethod = Literal["cash", "card", "bank_transfer", "e_wallet"]


class CounterCustomer(BaseModel):
    name: Optional[str] = Field(default=None, max_length=200)
    phone: Optional[str] = Field(default=None, max_length=20)


class PosSaleRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    items: list[OrderItemRequest] = Field(min_length=1)
    customer_id: Optional[str] = Field(default=None, alias="customerId")
    customer_info: Optional[CounterCustomer] = Field(default=None, alias="customerInfo")
    payment_method: CounterPaymentMethod = Field(default="cash", alias="paymentMethod")
    received_amount: Optional[Decimal] = Field(default=None, alias="receivedAmount", ge=0)
    loyalty_points: int = Field(default=0, alias="loyaltyPoints", ge=0)
    notes: Optional[str] = Field(default=None, max_length=2000)


class PosRefundRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(alias="orderId", min_length=1)
    reason: Optional[str] = Field(default=None, max_length=2000)


class LoyaltyQuoteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    customer_id: str = Field(alias="customerId", min_length=1)
    points: int = Field(ge=1)
