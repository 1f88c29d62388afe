"""Payment intents, gateway signatures and refunds.

VNPay and MoMo requests are signed locally; MoMo additionally requires a
server-to-server call made with ``httpx``. Stripe and ZaloPay are represented
by placeholder intents until their SDKs are wired in.
"""
from __future__ import annotations

import asyncio
import base64
import hashlib
import hmac
import random
import secrets
import string
import time
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Mapping
from urllib.parse import urlencode
from zoneinfo import ZoneInfo

import httpx

from medshop.core.config import Settings
from medshop.core.database import Database, utcnow
from medshop.core.errors import AppError
from medshop.core.logging import log_error, log_info, log_warning
from medshop.repositories import orders as order_repo
from medshop.repositories import payments as payment_repo
from medshop.repositories.rows import coerce_decimal, money, new_id


VNPAY_SANDBOX_URL = "https://sandbox.vnpayment.vn/paymentv2/vpcpay.html"
VNPAY_PRODUCTION_URL = "https://pay.vnpay.vn/vpcpay.html"
MOMO_SANDBOX_URL = "https://test-payment.momo.vn/v2/gateway/api/create"
MOMO_PRODUCTION_URL = "https://payment.momo.vn/v2/gateway/api/create"
VNPAY_TIMEZONE = ZoneInfo("Asia/Ho_Chi_Minh")

BANK_ACCOUNT_NAME = "Medical Electronics Ltd"
BANK_ACCOUNTS = {
    "VCB": "1234567890123",
    "TCB": "9876543210987",
    "ACB": "1111222233334",
    "VPB": "5555666677778",
}
DEFAULT_BANK_ACCOUNT = "0000000000000"

SIGNED_PROVIDERS = ("stripe", "vnpay", "momo")
UNSIGNED_PROVIDERS = ("zalopay", "bank_transfer", "cash")
REFUNDABLE_PROVIDERS = ("stripe", "vnpay", "momo")
WALLET_PROVIDERS = ("momo", "zalopay")

MOMO_IPN_FIELDS = (
    "accessKey",
    "amount",
    "extraData",
    "message",
    "orderId",
    "orderInfo",
    "orderType",
    "partnerCode",
    "payType",
    "requestId",
    "responseTime",
    "resultCode",
    "transId",
)

PaymentSimulator = Callable[[dict[str, Any]], Awaitable[bool]]

_BASE36 = string.digits + string.ascii_uppercase


def _base36(number: int) -> str:
    if number == 0:
        return "0"
    digits: list[str] = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def generate_transfer_reference() -> str:
    suffix = "".join(secrets.choice(_BASE36) for _ in range(4))
    return f"ME{_base36(int(time.time() * 1000))}{suffix}"


def bank_account_for(bank_code: str) -> str:
    return BANK_ACCOUNTS.get(bank_code.upper(), DEFAULT_BANK_ACCOUNT)


def vnpay_sign(params: Mapping[str, Any], secret_key: str) -> str:
    """HMAC-SHA512 over the key-sorted, form-encoded parameters."""
    sign_data = urlencode(sorted((key, str(value)) for key, value in params.items()))
    return hmac.new(secret_key.encode(), sign_data.encode(), hashlib.sha512).hexdigest()


def momo_sign(fields: Mapping[str, Any], secret_key: str) -> str:
    raw = "&".join(f"{key}={fields.get(key, '')}" for key in sorted(fields))
    return hmac.new(secret_key.encode(), raw.encode(), hashlib.sha256).hexdigest()


def format_vnpay_date(moment: datetime) -> str:
    return moment.strftime("%Y%m%d%H%M%S")


def placeholder_qr_code(data: str) -> str:
    return "data:image/png;base64," + base64.b64encode(data.encode()).decode()


def validate_card(
    *, number: str, exp_month: int, exp_year: int, cvv: str, today: datetime | None = None
) -> None:
    digits = "".join(number.split())
    if not digits.isdigit() or not 13 <= len(digits) <= 19:
        raise AppError("Invalid card number", 400)
    today = today or utcnow()
    if exp_year < today.year or (exp_year == today.year and exp_month < today.month):
        raise AppError("Card has expired", 400)
    if not cvv.isdigit() or len(cvv) not in (3, 4):
        raise AppError("Invalid CVV", 400)


class PaymentService:
    def __init__(
        self,
        db: Database,
        settings: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        simulator: PaymentSimulator | None = None,
    ) -> None:
        self.db = db
        self.settings = settings
        self._transport = transport
        self._simulator = simulator or self._simulate_processing

    def is_configured(self, provider: str) -> bool:
        if provider == "stripe":
            return bool(self.settings.stripe_api_key)
        if provider == "vnpay":
            return bool(self.settings.vnpay_merchant_id)
        if provider == "momo":
            return bool(self.settings.momo_partner_code)
        return provider in UNSIGNED_PROVIDERS

    def _ensure_provider(self, provider: str) -> None:
        if provider not in SIGNED_PROVIDERS + UNSIGNED_PROVIDERS:
            raise AppError(f"Unsupported payment provider: {provider}", 400)
        if not self.is_configured(provider):
            raise AppError(f"Payment provider {provider} is not configured", 400)

    async def _simulate_processing(self, intent: dict[str, Any]) -> bool:
        await asyncio.sleep(self.settings.payment_simulation_delay)
        return random.random() > 0.1

    async def create_intent(
        self,
        order_id: str,
        amount: Decimal,
        *,
        currency: str = "VND",
        provider: str = "vnpay",
        client_ip: str = "127.0.0.1",
    ) -> dict[str, Any]:
        self._ensure_provider(provider)
        amount = money(coerce_decimal(amount))
        if amount <= 0:
            raise AppError("Amount must be positive", 400)
        if not await order_repo.get_order(self.db, order_id):
            raise AppError("Order not found", 404)

        payment_id = new_id()
        await payment_repo.insert_payment(
            self.db,
            payment_id=payment_id,
            order_id=order_id,
            provider=provider,
            amount=amount,
            currency=currency,
            metadata=None,
            created_at=utcnow(),
        )
        intent = {
            "id": payment_id,
            "orderId": order_id,
            "amount": amount,
            "currency": currency,
            "status": "pending",
            "provider": provider,
        }
        log_info("Payment intent created", payment_id=payment_id, order_id=order_id, provider=provider)

        if provider == "vnpay":
            return self._vnpay_intent(intent, client_ip)
        if provider == "momo":
            return await self._momo_intent(intent)
        if provider == "stripe":
            return self._stripe_intent(intent)
        if provider == "zalopay":
            return {
                **intent,
                "paymentUrl": f"https://zalopay.vn/payment/{payment_id}",
                "qrCode": placeholder_qr_code(f"zalopay://payment/{payment_id}"),
            }
        return intent

    def _vnpay_intent(self, intent: dict[str, Any], client_ip: str) -> dict[str, Any]:
        settings = self.settings
        base_url = VNPAY_PRODUCTION_URL if settings.is_production else VNPAY_SANDBOX_URL
        params = {
            "vnp_Version": "2.1.0",
            "vnp_Command": "pay",
            "vnp_TmnCode": settings.vnpay_merchant_id,
            "vnp_Amount": int(intent["amount"] * 100),
            "vnp_CurrCode": intent["currency"],
            "vnp_TxnRef": intent["id"],
            "vnp_OrderInfo": f"Payment for order {intent['orderId']}",
            "vnp_OrderType": "other",
            "vnp_Locale": "vn",
            "vnp_ReturnUrl": settings.vnpay_return_url,
            "vnp_IpAddr": client_ip,
            "vnp_CreateDate": format_vnpay_date(datetime.now(VNPAY_TIMEZONE)),
        }
        signed = sorted((key, str(value)) for key, value in params.items())
        signed.append(("vnp_SecureHash", vnpay_sign(params, settings.vnpay_secret_key or "")))
        payment_url = f"{base_url}?{urlencode(signed)}"
        return {**intent, "paymentUrl": payment_url, "qrCode": placeholder_qr_code(payment_url)}

    async def _momo_intent(self, intent: dict[str, Any]) -> dict[str, Any]:
        settings = self.settings
        endpoint = MOMO_PRODUCTION_URL if settings.is_production else MOMO_SANDBOX_URL
        fields = {
            "accessKey": settings.momo_access_key or "",
            "amount": str(int(intent["amount"])),
            "extraData": "",
            "ipnUrl": settings.momo_ipn_url,
            "orderId": intent["orderId"],
            "orderInfo": f"Payment for order {intent['orderId']}",
            "partnerCode": settings.momo_partner_code,
            "redirectUrl": settings.momo_redirect_url,
            "requestId": new_id(),
            "requestType": "captureWallet",
        }
        body = {
            key: value for key, value in fields.items() if key != "accessKey"
        }
        body.update(
            {
                "partnerName": "Medical Electronics",
                "storeId": "MedicalElectronics",
                "lang": "vi",
                "signature": momo_sign(fields, settings.momo_secret_key or ""),
            }
        )

        try:
            async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
                response = await client.post(endpoint, json=body)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as exc:
            log_error("MoMo payment request failed", payment_id=intent["id"], error=str(exc))
            await payment_repo.update_payment_status(
                self.db, intent["id"], status="failed", when=utcnow(), error_message=str(exc)
            )
            raise AppError("MoMo payment request failed", 502) from exc

        return {
            **intent,
            "paymentUrl": data.get("payUrl"),
            "qrCode": data.get("qrCodeUrl"),
            "deeplink": data.get("deeplink"),
        }

    def _stripe_intent(self, intent: dict[str, Any]) -> dict[str, Any]:
        return {
            **intent,
            "clientSecret": f"pi_{intent['id']}_secret_{new_id()}",
            "publishableKey": self.settings.stripe_api_key,
        }

    async def process_card_payment(
        self,
        order_id: str,
        amount: Decimal,
        *,
        number: str,
        exp_month: int,
        exp_year: int,
        cvv: str,
        holder_name: str | None = None,
    ) -> dict[str, Any]:
        validate_card(number=number, exp_month=exp_month, exp_year=exp_year, cvv=cvv)
        intent = await self.create_intent(order_id, amount, provider="stripe")

        if not await self._simulator(intent):
            await payment_repo.update_payment_status(
                self.db,
                intent["id"],
                status="failed",
                when=utcnow(),
                error_message="Payment processing failed",
            )
            log_warning("Card payment declined", payment_id=intent["id"], order_id=order_id)
            raise AppError("Payment processing failed", 402)

        await self._complete(intent["id"], order_id)
        return {**intent, "status": "completed"}

    async def _complete(self, payment_id: str, order_id: str, reference: str | None = None) -> None:
        now = utcnow()
        async with self.db.transaction() as session:
            await payment_repo.update_payment_status(
                session, payment_id, status="completed", when=now, provider_reference=reference
            )
            await order_repo.mark_paid(session, order_id, now)
        log_info("Payment completed", payment_id=payment_id, order_id=order_id)

    async def process_bank_transfer(
        self, order_id: str, amount: Decimal, *, bank_code: str
    ) -> dict[str, Any]:
        intent = await self.create_intent(order_id, amount, provider="bank_transfer")
        reference = generate_transfer_reference()
        account_number = bank_account_for(bank_code)
        await payment_repo.insert_bank_transfer(
            self.db,
            transfer_id=new_id(),
            payment_id=intent["id"],
            bank_code=bank_code.upper(),
            account_number=account_number,
            account_name=BANK_ACCOUNT_NAME,
            reference_code=reference,
            amount=intent["amount"],
            created_at=utcnow(),
        )
        return {
            **intent,
            "reference": reference,
            "bankDetails": {
                "bankCode": bank_code.upper(),
                "accountNumber": account_number,
                "accountName": BANK_ACCOUNT_NAME,
                "amount": intent["amount"],
                "reference": reference,
                "message": f"Payment for order {order_id}",
            },
        }

    async def process_wallet_payment(
        self, order_id: str, amount: Decimal, *, wallet: str
    ) -> dict[str, Any]:
        provider = wallet if wallet in WALLET_PROVIDERS else "zalopay"
        return await self.create_intent(order_id, amount, provider=provider)

    async def verify_callback(self, provider: str, params: Mapping[str, Any]) -> dict[str, Any]:
        if provider == "vnpay":
            return await self._verify_vnpay(params)
        if provider == "momo":
            return await self._verify_momo(params)
        raise AppError(f"Unsupported provider: {provider}", 400)

    async def _verify_vnpay(self, params: Mapping[str, Any]) -> dict[str, Any]:
        if not self.is_configured("vnpay"):
            raise AppError("VNPay not configured", 400)
        received = str(params.get("vnp_SecureHash", ""))
        signed = {
            key: value
            for key, value in params.items()
            if key not in ("vnp_SecureHash", "vnp_SecureHashType")
        }
        expected = vnpay_sign(signed, self.settings.vnpay_secret_key or "")
        if not hmac.compare_digest(received.lower(), expected):
            raise AppError("Invalid signature", 400)

        payment_id = str(params.get("vnp_TxnRef", ""))
        payment = await payment_repo.get_payment(self.db, payment_id)
        if not payment:
            raise AppError("Payment not found", 404)

        if params.get("vnp_ResponseCode") == "00":
            await self._complete(payment_id, payment["order_id"], params.get("vnp_TransactionNo"))
            return {"success": True, "paymentId": payment_id, "orderId": payment["order_id"]}

        await payment_repo.update_payment_status(
            self.db, payment_id, status="failed", when=utcnow(), error_message="Payment failed"
        )
        return {"success": False, "paymentId": payment_id, "error": "Payment failed"}

    async def _verify_momo(self, params: Mapping[str, Any]) -> dict[str, Any]:
        if not self.is_configured("momo"):
            raise AppError("MoMo not configured", 400)
        fields = {key: params.get(key, "") for key in MOMO_IPN_FIELDS}
        fields["accessKey"] = self.settings.momo_access_key or ""
        expected = momo_sign(fields, self.settings.momo_secret_key or "")
        if not hmac.compare_digest(str(params.get("signature", "")), expected):
            raise AppError("Invalid signature", 400)

        order_id = str(params.get("orderId", ""))
        payment = await payment_repo.get_latest_order_payment(self.db, order_id)
        if not payment:
            raise AppError("Payment not found", 404)

        if str(params.get("resultCode")) == "0":
            transaction_id = str(params.get("transId", "")) or None
            await self._complete(payment["id"], order_id, transaction_id)
            return {"success": True, "paymentId": payment["id"], "transactionId": transaction_id}

        message = str(params.get("message") or "Payment failed")
        await payment_repo.update_payment_status(
            self.db, payment["id"], status="failed", when=utcnow(), error_message=message
        )
        return {"success": False, "paymentId": payment["id"], "error": message}

    def _provider_refund(self, payment: dict[str, Any], amount: Decimal) -> str | None:
        # TODO: call the Stripe, VNPay and MoMo refund APIs once merchant refund access is provisioned.
        return f"RF{new_id().replace('-', '')[:16].upper()}"

    async def refund(
        self,
        payment_id: str,
        *,
        amount: Decimal | None = None,
        reason: str | None = None,
    ) -> dict[str, Any]:
        refund_id = new_id()
        async with self.db.transaction() as session:
            payment = await payment_repo.get_payment(session, payment_id, for_update=True)
            if not payment:
                raise AppError("Payment not found", 404)
            if payment["provider"] not in REFUNDABLE_PROVIDERS:
                raise AppError(f"Refund not supported for provider: {payment['provider']}", 400)
            if payment["status"] != "completed":
                raise AppError("Only completed payments can be refunded", 400)

            already_refunded = await payment_repo.refunded_total(session, payment_id)
            refundable = money(payment["amount"] - already_refunded)
            refund_amount = money(coerce_decimal(amount)) if amount is not None else refundable
            if refund_amount <= 0 or refund_amount > refundable:
                raise AppError(
                    f"Refund amount must be positive and not exceed the refundable balance of {refundable}",
                    400,
                )

            await payment_repo.insert_refund(
                session,
                refund_id=refund_id,
                payment_id=payment_id,
                amount=refund_amount,
                reason=reason,
                created_at=utcnow(),
            )
            provider_reference = self._provider_refund(payment, refund_amount)
            await payment_repo.update_refund(
                session,
                refund_id,
                status="completed" if provider_reference else "failed",
                provider_reference=provider_reference,
                when=utcnow(),
            )

        log_info(
            "Refund processed",
            payment_id=payment_id,
            refund_id=refund_id,
            amount=refund_amount,
        )
        return {
            "success": provider_reference is not None,
            "refundId": refund_id,
            "paymentId": payment_id,
            "amount": refund_amount,
            "providerReference": provider_reference,
        }

    def available_methods(self) -> list[dict[str, Any]]:
        methods: list[dict[str, Any]] = []
        if self.is_configured("stripe"):
            methods.append(
                {"id": "card", "name": "Credit/Debit Card", "icon": "credit_card", "enabled": True}
            )
        if self.is_configured("vnpay"):
            methods.append(
                {"id": "vnpay", "name": "VNPay", "icon": "account_balance", "enabled": True}
            )
        if self.is_configured("momo"):
            methods.append(
                {
                    "id": "momo",
                    "name": "MoMo Wallet",
                    "icon": "account_balance_wallet",
                    "enabled": True,
                }
            )
        methods.append({"id": "cash", "name": "Cash", "icon": "payments", "enabled": True})
        methods.append(
            {"id": "bank_transfer", "name": "Bank Transfer", "icon": "account_balance", "enabled": True}
        )
        return methods

    async def history(
        self,
        *,
        order_id: str | None = None,
        customer_id: str | None = None,
        status: str | None = None,
        provider: str | None = None,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        return await payment_repo.list_payments(
            self.db,
            order_id=order_id,
            customer_id=customer_id,
            status=status,
            provider=provider,
            limit=max(1, min(limit, 100)),
        )
