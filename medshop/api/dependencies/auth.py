from __future__ import annotations

from typing import Any, Awaitable, Callable

from fastapi import Depends, Request

from medshop.core.config import get_settings
from medshop.core.errors import AppError
from medshop.security.tokens import ACCESS_TOKEN, decode_token


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_optional_user(request: Request) -> dict[str, Any] | None:
    token = _bearer_token(request)
    if token is None:
        return None
    claims = decode_token(token, secret=get_settings().jwt_secret, expected_type=ACCESS_TOKEN)
    user = {"id": str(claims["userId"]), "email": claims.get("email"), "role": claims.get("role")}
    request.state.user = user
    return user


async def get_current_user(
    user: dict[str, Any] | None = Depends(get_optional_user),
) -> dict[str, Any]:
    if user is None:
        raise AppError("Authentication required", 401)
    return user


def require_roles(*roles: str) -> Callable[..., Awaitable[dict[str, Any]]]:
    """Dependency factory admitting only users whose role is in ``roles``."""
    allowed = frozenset(roles)

    async def dependency(
        user: dict[str, Any] | None = Depends(get_optional_user),
    ) -> dict[str, Any]:
        if user is None:
            raise AppError("Authentication required", 401)
        if user.get("role") not in allowed:
            raise AppError("Insufficient permissions", 403)
        return user

    return dependency


require_staff = require_roles("admin", "manager", "staff")
require_manager = require_roles("admin", "manager")
require_admin = require_roles("admin")
