from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from medshop.core.database import Database, Session
from medshop.repositories.rows import coerce_decimal, dump_json, normalise

Executor = Database | Session


def _normalise_payment(row: dict[str, Any] | None) -> dict[str, Any] | None:
    return normalise(
        row,
        money_fields=("amount",),
        datetimes=("completed_at", "created_at", "updated_at"),
        json_fields=("metadata",),
    )


async def insert_payment(
    db: Executor,
    *,
    payment_id: str,
    order_id: str,
    provider: str,
    amount: Decimal,
    currency: str,
    metadata: dict[str, Any] | None,
    created_at: datetime,
) -> None:
    await db.execute(
        """
        INSERT INTO payment_transactions (
            id, order_id, provider, amount, currency, status, metadata, created_at, updated_at
        ) VALUES (%s, %s, %s, %s, %s, 'pending', %s, %s, %s)
        """,
        (
            payment_id,
            order_id,
            provider,
            amount,
            currency,
            dump_json(metadata),
            created_at,
            created_at,
        ),
    )


async def get_payment(
    db: Executor, payment_id: str, *, for_update: bool = False
) -> dict[str, Any] | None:
    lock = db.lock_clause if for_update else ""
    row = await db.fetch_one(
        f"SELECT * FROM payment_transactions WHERE id = %s{lock}", (payment_id,)
    )
    return _normalise_payment(row)


async def list_order_payments(db: Executor, order_id: str) -> list[dict[str, Any]]:
    rows = await db.fetch_all(
        "SELECT * FROM payment_transactions WHERE order_id = %s ORDER BY created_at DESC",
        (order_id,),
    )
    return [_normalise_payment(row) for row in rows]


async def update_payment_status(
    db: Executor,
    payment_id: str,
    *,
    status: str,
    when: datetime,
    provider_reference: str | None = None,
    error_message: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> int:
    assignments = ["status = %s", "updated_at = %s"]
    params: list[Any] = [status, when]
    if status == "completed":
        assignments.append("completed_at = %s")
        params.append(when)
    if provider_reference is not None:
        assignments.append("provider_reference = %s")
        params.append(provider_reference)
    if error_message is not None:
        assignments.append("error_message = %s")
        params.append(error_message)
    if metadata is not None:
        assignments.append("metadata = %s")
        params.append(dump_json(metadata))
    params.append(payment_id)
    return await db.execute(
        f"UPDATE payment_transactions SET {', '.join(assignments)} WHERE id = %s",
        params,
    )


async def list_payments(
    db: Executor,
    *,
    order_id: str | None,
    customer_id: str | None,
    status: str | None,
    provider: str | None,
    limit: int,
) -> list[dict[str, Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    if order_id:
        clauses.append("pt.order_id = %s")
        params.append(order_id)
    if customer_id:
        clauses.append("o.customer_id = %s")
        params.append(customer_id)
    if status:
        clauses.append("pt.status = %s")
        params.append(status)
    if provider:
        clauses.append("pt.provider = %s")
        params.append(provider)
    where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
    rows = await db.fetch_all(
        f"""
        SELECT pt.*, o.order_number, o.customer_id
        FROM payment_transactions pt
        JOIN orders o ON o.id = pt.order_id
        {where}
        ORDER BY pt.created_at DESC
        LIMIT %s
        """,
        (*params, limit),
    )
    return [_normalise_payment(row) for row in rows]


async def insert_refund(
    db: Executor,
    *,
    refund_id: str,
    payment_id: str,
    amount: Decimal,
    reason: str | None,
    created_at: datetime,
) -> None:
    await db.execute(
        """
        INSERT INTO payment_refunds (id, payment_id, amount, reason, status, created_at, updated_at)
        VALUES (%s, %s, %s, %s, 'pending', %s, %s)
        """,
        (refund_id, payment_id, amount, reason, created_at, created_at),
    )


async def update_refund(
    db: Executor,
    refund_id: str,
    *,
    status: str,
    provider_reference: str | None,
    when: datetime,
) -> int:
    return await db.execute(
        """
        UPDATE payment_refunds
        SET status = %s, provider_reference = %s, updated_at = %s
        WHERE id = %s
        """,
        (status, provider_reference, when, refund_id),
    )


async def refunded_total(db: Executor, payment_id: str) -> Decimal:
    """Sum of the completed refunds already issued against a payment."""
    row = await db.fetch_one(
        """
        SELECT COALESCE(SUM(amount), 0) AS total
        FROM payment_refunds
        WHERE payment_id = %s AND status = 'completed'
        """,
        (payment_id,),
    )
    return coerce_decimal(row["total"] if row else 0)


async def insert_bank_transfer(
    db: Executor,
    *,
    transfer_id: str,
    payment_id: str,
    bank_code: str,
    account_number: str,
    account_name: str,
    reference_code: str,
    amount: Decimal,
    created_at: datetime,
) -> None:
    await db.execute(
        """
        INSERT INTO bank_transfers (
            id, payment_id, bank_code, account_number, account_name, reference_code,
            amount, status, created_at
        ) VALUES (%s, %s, %s, %s, %s, %s, %s, 'pending', %s)
        """,
        (
            transfer_id,
            payment_id,
            bank_code,
            account_number,
            account_name,
            reference_code,
            amount,
            created_at,
        ),
    )


async def get_latest_order_payment(db: Executor, order_id: str) -> dict[str, Any] | None:
    row = await db.fetch_one(
        """
        SELECT * FROM payment_transactions
        WHERE order_id = %s
        ORDER BY created_at DESC
        LIMIT 1
        """,
        (order_id,),
    )
    return _normalise_payment(row)
