from __future__ import annotations

from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PaymentIntentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(alias="orderId", min_length=1)
    amount: Decimal = Field(gt=0)
    currency: str = Field(default="VND", min_length=3, max_length=3)
    provider: str = Field(default="vnpay", min_length=1)


class CardDetails(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    number: str = Field(min_length=1)
    exp_month: int = Field(alias="expMonth", ge=1, le=12)
    exp_year: int = Field(alias="expYear", ge=2000)
    cvv: str = Field(min_length=1)
    holder_name: Optional[str] = Field(default=None, alias="holderName")


class CardPaymentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(alias="orderId", min_length=1)
    amount: Decimal = Field(gt=0)
    card: CardDetails


class BankTransferRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(alias="orderId", min_length=1)
    amount: Decimal = Field(gt=0)
    bank_code: str = Field(alias="bankCode", min_length=2, max_length=20)

    @field_validator("bank_code")
    @classmethod
    def _upper(cls, value: str) -> str:
        return value.strip().upper()


class WalletPaymentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(alias="orderId", min_length=1)
    amount: Decimal = Field(gt=0)
    wallet: Literal["momo", "zalopay"]


class RefundRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    payment_id: str = Field(alias="paymentId", min_length=1)
    amount: Optional[Decimal] = Field(default=None, gt=0)
    reason: Optional[str] = Field(default=None, max_length=2000)
