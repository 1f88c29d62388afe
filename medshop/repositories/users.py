from __future__ import annotations

from datetime import datetime
from typing import Any

from medshop.core.database import Database, Session
from medshop.repositories.rows import normalise

Executor = Database | Session

_USER_COLUMNS = """
    id, email, password_hash, first_name, last_name, phone, role, status,
    last_login, created_at, updated_at
"""


def _normalise_user(row: dict[str, Any] | None) -> dict[str, Any] | None:
    return normalise(row, datetimes=("last_login", "created_at", "updated_at"))


async def get_user_by_id(db: Executor, user_id: str) -> dict[str, Any] | None:
    row = await db.fetch_one(
        f"SELECT {_USER_COLUMNS} FROM users WHERE id = %s",
        (user_id,),
    )
    return _normalise_user(row)


async def get_user_by_email(db: Executor, email: str) -> dict[str, Any] | None:
    row = await db.fetch_one(
        f"SELECT {_USER_COLUMNS} FROM users WHERE LOWER(email) = LOWER(%s)",
        (email,),
    )
    return _normalise_user(row)


async def create_user(
    db: Executor,
    *,
    user_id: str,
    email: str,
    password_hash: str,
    first_name: str | None,
    last_name: str | None,
    phone: str | None,
    role: str = "customer",
    status: str = "active",
    created_at: datetime,
) -> None:
    await db.execute(
        """
        INSERT INTO users (
            id, email, password_hash, first_name, last_name, phone, role, status,
            created_at, updated_at
        ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """,
        (
            user_id,
            email,
            password_hash,
            first_name,
            last_name,
            phone,
            role,
            status,
            created_at,
            created_at,
        ),
    )


async def update_last_login(db: Executor, user_id: str, when: datetime) -> None:
    await db.execute(
        "UPDATE users SET last_login = %s, updated_at = %s WHERE id = %s",
        (when, when, user_id),
    )


async def update_password(db: Executor, user_id: str, password_hash: str, when: datetime) -> None:
    await db.execute(
        "UPDATE users SET password_hash = %s, updated_at = %s WHERE id = %s",
        (password_hash, when, user_id),
    )


def public_user(user: dict[str, Any]) -> dict[str, Any]:
    """Strip credential columns before a user leaves the service layer."""
    return {key: value for key, value in user.items() if key != "password_hash"}
