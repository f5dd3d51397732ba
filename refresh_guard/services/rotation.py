# refresh_guard/services/rotation.py
"""
Refresh token rotation with reuse detection.

Per chain, a refresh token moves ACTIVE -> ROTATED (revoked, successor linked)
or ACTIVE -> REVOKED (logout / reuse response). EXPIRED is never stored; it is
derived by comparing `expires_at` with the clock at read time.

The engine holds no locks. The store's conditional `revoke` is the single
test-and-set that decides which of two concurrent presentations of the same
token wins; the loser is handled exactly like a replay of a stolen token.

Steps run in the order revoke old -> create successor -> link, so a crash in
between leaves a revoked token without successor: the subject has to log in
again, but no second live chain can exist.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, NoReturn

from refresh_guard.core.errors import ExpiredTokenError, InvalidTokenError, TokenReuseError
from refresh_guard.core.security import now_utc
from refresh_guard.services.token_issuer import IssuedRefreshToken, TokenIssuer
from refresh_guard.services.token_store import TokenStore
from refresh_guard.services.users import Subject, SubjectDirectory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RotationResult:
    access_token: str
    refresh_token: IssuedRefreshToken


class RotationEngine:
    def __init__(
        self,
        issuer: TokenIssuer,
        store: TokenStore,
        directory: SubjectDirectory,
        *,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.issuer = issuer
        self.store = store
        self.directory = directory
        self.clock = clock

    def login(self, subject: Subject) -> RotationResult:
        """Start a new refresh chain for a subject whose credentials were verified."""
        refresh = self.issuer.issue_refresh_token(subject.id)
        access = self.issuer.issue_access_token(subject.id, subject.email, subject.roles)
        return RotationResult(access_token=access, refresh_token=refresh)

    def rotate(self, presented_token: str) -> RotationResult:
        claims = self.issuer.decode_refresh_token(presented_token)

        record = self.store.find_by_id(claims.token_id)
        if record is None:
            raise InvalidTokenError()
        if record.owner_id != claims.owner_id:
            # Signed by us but not matching our row: treat as forged, touch nothing.
            raise InvalidTokenError()
        if record.is_revoked:
            self._reuse_detected(record.owner_id, record.id)
        if record.is_expired(self.clock()):
            logger.info("Expired refresh token presented jti=%s owner=%s", record.id, record.owner_id)
            raise ExpiredTokenError()

        if not self.store.revoke(record.id):
            # A concurrent rotation revoked it between our read and our write.
            self._reuse_detected(record.owner_id, record.id)

        subject = self.directory.find_by_id(record.owner_id)
        if subject is None or not subject.is_active:
            revoked = self.store.revoke_all_for_owner(record.owner_id)
            logger.warning(
                "Refresh for unknown or inactive subject owner=%s; revoked %d tokens",
                record.owner_id,
                revoked,
            )
            raise InvalidTokenError("Subject is not active")

        successor = self.issuer.issue_refresh_token(record.owner_id)
        if not self.store.link_successor(record.id, successor.id):
            logger.warning("Could not link jti=%s to successor jti=%s", record.id, successor.id)

        # Claims come from the directory, not the old token, so role changes apply now.
        access = self.issuer.issue_access_token(subject.id, subject.email, subject.roles)

        logger.info("Rotated refresh token jti=%s -> jti=%s owner=%s", record.id, successor.id, record.owner_id)
        return RotationResult(access_token=access, refresh_token=successor)

    def logout(self, owner_id: str) -> int:
        revoked = self.store.revoke_all_for_owner(owner_id)
        logger.info("Logout owner=%s revoked=%d", owner_id, revoked)
        return revoked

    def _reuse_detected(self, owner_id: str, token_id: str) -> NoReturn:
        revoked = self.store.revoke_all_for_owner(owner_id)
        logger.warning(
            "Refresh token reuse detected jti=%s owner=%s; revoked %d tokens",
            token_id,
            owner_id,
            revoked,
        )
        raise TokenReuseError(owner_id, revoked_count=revoked)
