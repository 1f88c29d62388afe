from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import RedirectResponse

from medshop.api.dependencies.auth import get_current_user, require_manager
from medshop.api.dependencies.services import get_payment_service
from medshop.api.responses import success
from medshop.core.errors import AppError
from medshop.core.logging import log_error, log_info
from medshop.schemas.payments import (
    BankTransferRequest,
    CardPaymentRequest,
    PaymentIntentRequest,
    RefundRequest,
    WalletPaymentRequest,
)
from medshop.services.orders import STAFF_ROLES
from medshop.services.payments import PaymentService

router = APIRouter(prefix="/payment", tags=["Payments"])


@asynccontextmanager
async def _failure_message(message: str) -> AsyncIterator[None]:
    """Report unexpected errors as a 500 carrying ``message``.

    ``AppError`` already carries a client-facing message and passes through.
    """
    try:
        yield
    except AppError:
        raise
    except Exception as exc:
        log_error(message, error=repr(exc))
        raise AppError(message, 500) from exc


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "127.0.0.1"


def _payment_page(
    service: PaymentService, outcome: str, payment_id: str | None = None
) -> RedirectResponse:
    url = f"{service.settings.frontend_url.rstrip('/')}/payment/{outcome}"
    if payment_id:
        url = f"{url}?id={payment_id}"
    return RedirectResponse(url, status_code=status.HTTP_302_FOUND)


@router.get("/methods")
async def payment_methods(service: PaymentService = Depends(get_payment_service)) -> dict:
    return success(service.available_methods())


@router.post("/intent")
async def create_payment_intent(
    payload: PaymentIntentRequest,
    request: Request,
    _: dict = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
) -> dict:
    async with _failure_message("Failed to create payment intent"):
        intent = await service.create_intent(
            payload.order_id,
            payload.amount,
            currency=payload.currency.upper(),
            provider=payload.provider,
            client_ip=_client_ip(request),
        )
    return success(intent)


@router.post("/card")
async def card_payment(
    payload: CardPaymentRequest,
    _: dict = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
) -> dict:
    async with _failure_message("Failed to process card payment"):
        result = await service.process_card_payment(
            payload.order_id,
            payload.amount,
            number=payload.card.number,
            exp_month=payload.card.exp_month,
            exp_year=payload.card.exp_year,
            cvv=payload.card.cvv,
            holder_name=payload.card.holder_name,
        )
    return success(result, message="Payment completed")


@router.post("/bank-transfer")
async def bank_transfer(
    payload: BankTransferRequest,
    _: dict = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
) -> dict:
    async with _failure_message("Failed to process bank transfer"):
        result = await service.process_bank_transfer(
            payload.order_id, payload.amount, bank_code=payload.bank_code
        )
    return success(result)


@router.post("/wallet")
async def wallet_payment(
    payload: WalletPaymentRequest,
    _: dict = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
) -> dict:
    async with _failure_message("Failed to process wallet payment"):
        result = await service.process_wallet_payment(
            payload.order_id, payload.amount, wallet=payload.wallet
        )
    return success(result)


@router.get("/callback/vnpay")
async def vnpay_callback(
    request: Request,
    service: PaymentService = Depends(get_payment_service),
) -> RedirectResponse:
    try:
        result = await service.verify_callback("vnpay", dict(request.query_params))
    except Exception as exc:
        log_error("VNPay callback failed", error=repr(exc))
        return _payment_page(service, "error")
    outcome = "success" if result["success"] else "failed"
    return _payment_page(service, outcome, result.get("paymentId"))


@router.post("/callback/momo")
async def momo_callback(
    request: Request,
    service: PaymentService = Depends(get_payment_service),
) -> RedirectResponse:
    try:
        params = await request.json()
        result = await service.verify_callback("momo", params)
    except Exception as exc:
        log_error("MoMo callback failed", error=repr(exc))
        return _payment_page(service, "error")
    outcome = "success" if result["success"] else "failed"
    return _payment_page(service, outcome, result.get("paymentId"))


@router.post("/ipn/vnpay")
async def vnpay_ipn(
    request: Request,
    service: PaymentService = Depends(get_payment_service),
) -> dict:
    try:
        result = await service.verify_callback("vnpay", dict(request.query_params))
    except Exception as exc:
        log_error("VNPay IPN error", error=repr(exc))
        return {"RspCode": "99", "Message": "Unknown error"}
    if result["success"]:
        return {"RspCode": "00", "Message": "Success"}
    return {"RspCode": "01", "Message": "Failed"}


@router.post("/ipn/momo", status_code=status.HTTP_204_NO_CONTENT)
async def momo_ipn(
    request: Request,
    service: PaymentService = Depends(get_payment_service),
) -> Response:
    # The gateway expects 204 whatever the outcome.
    try:
        params = await request.json()
        await service.verify_callback("momo", params)
    except Exception as exc:
        log_error("MoMo IPN error", error=repr(exc))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/refund")
async def refund_payment(
    payload: RefundRequest,
    _: dict = Depends(require_manager),
    service: PaymentService = Depends(get_payment_service),
) -> dict:
    async with _failure_message("Failed to process refund"):
        result = await service.refund(
            payload.payment_id, amount=payload.amount, reason=payload.reason
        )
    return success(result)


@router.get("/history")
async def payment_history(
    order_id: str | None = Query(default=None, alias="orderId"),
    customer_id: str | None = Query(default=None, alias="customerId"),
    status_filter: str | None = Query(default=None, alias="status"),
    provider: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=100),
    current_user: dict = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
) -> dict:
    if current_user.get("role") not in STAFF_ROLES:
        customer_id = current_user["id"]
    async with _failure_message("Failed to fetch payment history"):
        history = await service.history(
            order_id=order_id,
            customer_id=customer_id,
            status=status_filter,
            provider=provider,
            limit=limit,
        )
    return success(history)


@router.post("/webhook/stripe")
async def stripe_webhook(request: Request) -> dict[str, Any]:
    log_info(
        "Stripe webhook received",
        has_signature=bool(request.headers.get("stripe-signature")),
    )
    return {"received": True}
