"""Signed bearer tokens for API clients."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

import jwt

from medshop.core.errors import AppError


ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"
_ALGORITHM = "HS256"


def _claims_for(user: dict[str, Any], token_type: str) -> dict[str, Any]:
    return {
        "userId": str(user["id"]),
        "email": user.get("email"),
        "role": user.get("role"),
        "type": token_type,
    }


def issue_token(
    user: dict[str, Any],
    *,
    secret: str,
    expires_in: int,
    token_type: str = ACCESS_TOKEN,
) -> str:
    now = datetime.now(timezone.utc)
    payload = _claims_for(user, token_type)
    payload["iat"] = now
    payload["exp"] = now + timedelta(seconds=expires_in)
    payload["jti"] = uuid4().hex
    return jwt.encode(payload, secret, algorithm=_ALGORITHM)


def decode_token(
    token: str,
    *,
    secret: str,
    expected_type: str = ACCESS_TOKEN,
    expired_message: str = "Token expired",
) -> dict[str, Any]:
    """Decode and validate a token, raising ``AppError`` with a 401 on failure."""
    try:
        claims = jwt.decode(token, secret, algorithms=[_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AppError(expired_message, 401) from None
    except jwt.PyJWTError:
        raise AppError("Invalid token", 401) from None

    # Tokens minted before the type claim existed are treated as access tokens.
    if claims.get("type", ACCESS_TOKEN) != expected_type or not claims.get("userId"):
        raise AppError("Invalid token", 401)
    return claims
