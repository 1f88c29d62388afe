from __future__ import annotations

import asyncio
import time
from typing import Any

from medshop.core.config import Settings
from medshop.core.database import Database, utcnow
from medshop.core.errors import AppError
from medshop.core.logging import log_info, log_warning
from medshop.repositories import customers as customer_repo
from medshop.repositories import users as user_repo
from medshop.repositories.rows import new_id
from medshop.security.passwords import hash_password, verify_password
from medshop.security.tokens import ACCESS_TOKEN, REFRESH_TOKEN, decode_token, issue_token
from medshop.services.cache import CacheService


def _refresh_key(user_id: str) -> str:
    return f"refresh_token:{user_id}"


def _token_user(user: dict[str, Any]) -> dict[str, Any]:
    return {"id": user["id"], "email": user["email"], "role": user["role"]}


class AuthService:
    """Registration, credential checks and JWT issuance.

    Refresh tokens are single-use: the latest one issued for a user is kept in
    the cache and every refresh rotates it.
    """

    def __init__(self, db: Database, cache: CacheService, settings: Settings) -> None:
        self.db = db
        self.cache = cache
        self.settings = settings

    async def _issue_tokens(self, user: dict[str, Any]) -> dict[str, str]:
        access_token = issue_token(
            user,
            secret=self.settings.jwt_secret,
            expires_in=self.settings.jwt_access_expiry,
            token_type=ACCESS_TOKEN,
        )
        refresh_token = issue_token(
            user,
            secret=self.settings.jwt_secret,
            expires_in=self.settings.jwt_refresh_expiry,
            token_type=REFRESH_TOKEN,
        )
        await self.cache.set(
            _refresh_key(str(user["id"])),
            refresh_token,
            ttl=self.settings.jwt_refresh_expiry,
        )
        return {"accessToken": access_token, "refreshToken": refresh_token}

    async def _hash(self, password: str) -> str:
        return await asyncio.to_thread(hash_password, password, self.settings.bcrypt_rounds)

    async def register(
        self,
        *,
        email: str,
        password: str,
        first_name: str | None = None,
        last_name: str | None = None,
        phone: str | None = None,
    ) -> dict[str, Any]:
        password_hash = await self._hash(password)
        user_id = new_id()
        now = utcnow()
        async with self.db.transaction() as session:
            if await user_repo.get_user_by_email(session, email):
                raise AppError("Email already registered", 400)
            await user_repo.create_user(
                session,
                user_id=user_id,
                email=email,
                password_hash=password_hash,
                first_name=first_name,
                last_name=last_name,
                phone=phone,
                role="customer",
                status="active",
                created_at=now,
            )
            await customer_repo.create_customer(
                session,
                customer_id=user_id,
                customer_code=f"CUST{int(time.time() * 1000)}",
                created_at=now,
            )

        user = {"id": user_id, "email": email, "role": "customer"}
        tokens = await self._issue_tokens(user)
        log_info("User registered", user_id=user_id)
        return {"user": user, **tokens}

    async def login(self, *, email: str, password: str) -> dict[str, Any]:
        user = await user_repo.get_user_by_email(self.db, email)
        if not user:
            raise AppError("Invalid credentials", 401)
        if user.get("status") != "active":
            raise AppError("Account is not active", 401)
        valid = await asyncio.to_thread(verify_password, password, user.get("password_hash"))
        if not valid:
            log_warning("Failed login attempt", user_id=user["id"])
            raise AppError("Invalid credentials", 401)

        tokens = await self._issue_tokens(user)
        await user_repo.update_last_login(self.db, user["id"], utcnow())
        return {"user": _token_user(user), **tokens}

    async def refresh_token(self, refresh_token: str) -> dict[str, str]:
        claims = decode_token(
            refresh_token,
            secret=self.settings.jwt_secret,
            expected_type=REFRESH_TOKEN,
            expired_message="Refresh token expired",
        )
        user_id = str(claims["userId"])
        stored = await self.cache.get(_refresh_key(user_id))
        if stored != refresh_token:
            raise AppError("Invalid refresh token", 401)

        user = await user_repo.get_user_by_id(self.db, user_id)
        if not user or user.get("status") != "active":
            raise AppError("User not found or inactive", 401)
        return await self._issue_tokens(user)

    async def logout(self, user_id: str) -> dict[str, str]:
        await self.cache.delete(_refresh_key(user_id))
        return {"message": "Logged out successfully"}

    async def change_password(
        self, user_id: str, *, old_password: str, new_password: str
    ) -> dict[str, str]:
        user = await user_repo.get_user_by_id(self.db, user_id)
        if not user:
            raise AppError("User not found", 404)
        valid = await asyncio.to_thread(verify_password, old_password, user.get("password_hash"))
        if not valid:
            raise AppError("Invalid old password", 401)

        password_hash = await self._hash(new_password)
        await user_repo.update_password(self.db, user_id, password_hash, utcnow())
        await self.cache.delete(_refresh_key(user_id))
        log_info("Password changed", user_id=user_id)
        return {"message": "Password changed successfully"}

    async def profile(self, user_id: str) -> dict[str, Any]:
        user = await user_repo.get_user_by_id(self.db, user_id)
        if not user:
            raise AppError("User not found", 404)
        profile = user_repo.public_user(user)
        if user.get("role") == "customer":
            customer = await customer_repo.get_customer(self.db, user_id)
            if customer:
                profile["customer"] = {
                    "customerCode": customer["customer_code"],
                    "loyaltyPoints": customer["loyalty_points"],
                    "totalSpent": customer["total_spent"],
                    "totalOrders": customer["total_orders"],
                }
        return profile
