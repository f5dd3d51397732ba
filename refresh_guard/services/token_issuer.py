from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Sequence

from jose import ExpiredSignatureError, JWTError

from refresh_guard.core.config import TokenSettings
from refresh_guard.core.errors import ExpiredTokenError, InvalidTokenError
from refresh_guard.core.security import decode_token, encode_token, exp_claim_to_datetime, now_utc
from refresh_guard.services.token_store import RefreshTokenRecord, TokenStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssuedRefreshToken:
    token: str
    id: str
    expires_at: datetime


@dataclass(frozen=True)
class RefreshClaims:
    owner_id: str
    token_id: str


@dataclass(frozen=True)
class AccessClaims:
    subject_id: str
    email: str
    roles: tuple[str, ...]
    issued_at: datetime
    expires_at: datetime


def new_token_id() -> str:
    return str(uuid.uuid4())


class TokenIssuer:
    """
    Mints access tokens (stateless) and refresh tokens (persisted through the
    injected store). Access and refresh tokens are signed with different
    secrets so one can never be presented as the other.
    """

    def __init__(self, token_settings: TokenSettings, store: TokenStore):
        self.settings = token_settings
        self.store = store

    # -------------------------
    # Access tokens
    # -------------------------
    def issue_access_token(self, subject_id: str, email: str, roles: Sequence[str]) -> str:
        now = now_utc()
        exp = now + self.settings.access_ttl
        payload = {
            "sub": str(subject_id),
            "email": email,
            "roles": list(roles),
            "iat": int(now.timestamp()),
            "exp": int(exp.timestamp()),
        }
        return encode_token(payload, self.settings.access_secret, self.settings.algorithm)

    def decode_access_token(self, token: str) -> AccessClaims:
        try:
            payload = decode_token(token, self.settings.access_secret, self.settings.algorithm)
        except ExpiredSignatureError:
            raise ExpiredTokenError("Access token expired")
        except JWTError:
            raise InvalidTokenError("Invalid access token")

        sub = payload.get("sub")
        email = payload.get("email")
        roles = payload.get("roles")
        exp = payload.get("exp")
        if not sub or not isinstance(email, str) or not isinstance(roles, list) or not isinstance(exp, int):
            raise InvalidTokenError("Invalid access token")

        return AccessClaims(
            subject_id=str(sub),
            email=email,
            roles=tuple(str(r) for r in roles),
            issued_at=datetime.fromtimestamp(int(payload.get("iat") or 0), tz=timezone.utc),
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
        )

    # -------------------------
    # Refresh tokens
    # -------------------------
    def issue_refresh_token(self, owner_id: str) -> IssuedRefreshToken:
        token_id = new_token_id()
        now = now_utc()
        exp = now + self.settings.refresh_ttl
        payload = {
            "sub": str(owner_id),
            "jti": token_id,
            "iat": int(now.timestamp()),
            "exp": int(exp.timestamp()),
        }
        token = encode_token(payload, self.settings.refresh_secret, self.settings.algorithm)

        # Stored expiry comes from the signed claim so both always agree.
        expires_at = exp_claim_to_datetime(token)
        self.store.create(
            RefreshTokenRecord(
                id=token_id,
                owner_id=str(owner_id),
                issued_at=now,
                expires_at=expires_at,
            )
        )
        logger.info("Issued refresh token jti=%s owner=%s", token_id, owner_id)
        return IssuedRefreshToken(token=token, id=token_id, expires_at=expires_at)

    def decode_refresh_token(self, token: str) -> RefreshClaims:
        """
        Verify signature and algorithm only. Expiry is judged against the
        stored record so that a replayed, revoked token is still recognised
        as reuse after it lapses.
        """
        try:
            payload = decode_token(
                token,
                self.settings.refresh_secret,
                self.settings.algorithm,
                verify_exp=False,
            )
        except JWTError:
            raise InvalidTokenError()

        sub = payload.get("sub")
        jti = payload.get("jti")
        if not sub or not isinstance(jti, str) or not jti:
            raise InvalidTokenError()
        return RefreshClaims(owner_id=str(sub), token_id=jti)
