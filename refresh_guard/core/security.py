# refresh_guard/core/security.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from jose import jwt
from passlib.context import CryptContext

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


# -------------------------
# Password hashing
# -------------------------
def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


# -------------------------
# JWT helpers (pure)
# -------------------------
def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # SQLite round-trips tz-aware datetimes as naive. Treat naive values as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def encode_token(claims: dict[str, Any], secret: str, algorithm: str) -> str:
    return jwt.encode(claims, secret, algorithm=algorithm)


def decode_token(token: str, secret: str, algorithm: str, *, verify_exp: bool = True) -> dict[str, Any]:
    """
    Returns the verified payload or raises jose's JWTError / ExpiredSignatureError.
    Keep this "pure" - callers translate jose errors into domain errors.
    """
    return jwt.decode(
        token,
        secret,
        algorithms=[algorithm],
        options={"verify_exp": verify_exp, "verify_aud": False},
    )


def exp_claim_to_datetime(token: str) -> datetime:
    """Read `exp` back from a freshly signed token (seconds since epoch)."""
    claims = jwt.get_unverified_claims(token)
    return datetime.fromtimestamp(int(claims["exp"]), tz=timezone.utc)
