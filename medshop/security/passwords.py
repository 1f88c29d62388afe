from __future__ import annotations

import base64
from hashlib import sha256

import bcrypt


_BCRYPT_SHA256_PREFIX = "bcrypt_sha256$"
# Prefix for hashes produced by SHA-256 pre-hashing then bcrypt.


def _prehash(password: str) -> bytes:
    # base64 keeps the digest free of NUL bytes and under bcrypt's 72 byte limit.
    return base64.b64encode(sha256(password.encode("utf-8")).digest())


def hash_password(password: str, rounds: int = 10) -> str:
    hashed = bcrypt.hashpw(_prehash(password), bcrypt.gensalt(rounds=rounds))
    return f"{_BCRYPT_SHA256_PREFIX}{hashed.decode()}"


def verify_password(password: str, hashed: str | None) -> bool:
    if not hashed:
        return False

    if hashed.startswith(_BCRYPT_SHA256_PREFIX):
        stored = hashed[len(_BCRYPT_SHA256_PREFIX) :].encode()
        try:
            return bcrypt.checkpw(_prehash(password), stored)
        except ValueError:
            return False

    # Plain bcrypt hashes imported from the previous backend.
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode())
    except ValueError:
        return False
