from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Request, Response
from sqlalchemy import insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased

from refresh_guard.core.config import settings
from refresh_guard.core.errors import ConflictError
from refresh_guard.core.security import as_utc, now_utc
from refresh_guard.models.refresh_token import RefreshToken
from refresh_guard.services.token_store import RefreshTokenRecord

logger = logging.getLogger(__name__)


def _to_record(rt: RefreshToken) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        id=rt.id,
        owner_id=rt.owner_id,
        issued_at=as_utc(rt.issued_at),
        expires_at=as_utc(rt.expires_at),
        revoked_at=as_utc(rt.revoked_at) if rt.revoked_at is not None else None,
        replaced_by_id=rt.replaced_by_id,
    )


def _owner_of(token_id: str):
    # Aliased so the subquery is not correlated to the row being updated.
    other = aliased(RefreshToken)
    return select(other.owner_id).where(other.id == token_id).scalar_subquery()


class SqlAlchemyTokenStore:
    """
    Refresh token store on the `refresh_tokens` table.

    Every mutation is one conditional UPDATE/INSERT followed by a commit, so
    concurrent requests race on row locks inside the database instead of on
    Python state. `revoke` relies on `WHERE revoked_at IS NULL` to act as a
    compare-and-set: under read-committed, the loser of two concurrent UPDATEs
    re-evaluates the predicate and matches zero rows.
    """

    def __init__(self, db: Session):
        self.db = db

    def create(self, record: RefreshTokenRecord) -> None:
        # Core insert so a duplicate id surfaces as IntegrityError, not an identity-map clash.
        try:
            self.db.execute(
                insert(RefreshToken).values(
                    id=record.id,
                    owner_id=record.owner_id,
                    issued_at=record.issued_at,
                    expires_at=record.expires_at,
                    revoked_at=record.revoked_at,
                    replaced_by_id=record.replaced_by_id,
                )
            )
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            # Only a taken primary key is a conflict; FK failures (unknown owner) propagate.
            if self.find_by_id(record.id) is not None:
                raise ConflictError(f"Refresh token id already exists: {record.id}") from exc
            raise

    def find_by_id(self, token_id: str) -> Optional[RefreshTokenRecord]:
        rt = (
            self.db.query(RefreshToken)
            .filter(RefreshToken.id == token_id)
            .populate_existing()
            .first()
        )
        return _to_record(rt) if rt else None

    def revoke(self, token_id: str, replaced_by_id: Optional[str] = None) -> bool:
        query = self.db.query(RefreshToken).filter(
            RefreshToken.id == token_id,
            RefreshToken.revoked_at.is_(None),
        )
        values: dict = {RefreshToken.revoked_at: now_utc()}
        if replaced_by_id is not None:
            query = query.filter(RefreshToken.owner_id == _owner_of(replaced_by_id))
            values[RefreshToken.replaced_by_id] = replaced_by_id

        updated = query.update(values, synchronize_session=False)
        self.db.commit()
        return updated == 1

    def link_successor(self, token_id: str, successor_id: str) -> bool:
        updated = (
            self.db.query(RefreshToken)
            .filter(
                RefreshToken.id == token_id,
                RefreshToken.replaced_by_id.is_(None),
                RefreshToken.owner_id == _owner_of(successor_id),
            )
            .update({RefreshToken.replaced_by_id: successor_id}, synchronize_session=False)
        )
        self.db.commit()
        return updated == 1

    def revoke_all_for_owner(self, owner_id: str) -> int:
        updated = (
            self.db.query(RefreshToken)
            .filter(RefreshToken.owner_id == owner_id, RefreshToken.revoked_at.is_(None))
            .update({RefreshToken.revoked_at: now_utc()}, synchronize_session=False)
        )
        self.db.commit()
        return int(updated or 0)

    def list_for_owner(self, owner_id: str) -> list[RefreshTokenRecord]:
        rows = (
            self.db.query(RefreshToken)
            .filter(RefreshToken.owner_id == owner_id)
            .order_by(RefreshToken.issued_at.asc(), RefreshToken.id.asc())
            .populate_existing()
            .all()
        )
        return [_to_record(rt) for rt in rows]

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        cutoff = now or now_utc()
        expired = aliased(RefreshToken)
        expired_ids = select(expired.id).where(expired.expires_at <= cutoff)

        # Same effect as ON DELETE SET NULL, which SQLite skips without the FK pragma.
        (
            self.db.query(RefreshToken)
            .filter(RefreshToken.replaced_by_id.in_(expired_ids))
            .update({RefreshToken.replaced_by_id: None}, synchronize_session=False)
        )
        deleted = (
            self.db.query(RefreshToken)
            .filter(RefreshToken.expires_at <= cutoff)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        logger.info("Purged %d expired refresh tokens", deleted)
        return int(deleted or 0)


# -----------------------------
# Cookie helpers
# -----------------------------
def cookie_name() -> str:
    return str(getattr(settings, "REFRESH_COOKIE_NAME", "refresh_token")).strip() or "refresh_token"


def cookie_path() -> str:
    # Keep refresh cookie scoped to auth endpoints by default
    return str(getattr(settings, "REFRESH_COOKIE_PATH", "/auth")).strip() or "/auth"


def cookie_samesite() -> str:
    """
    "lax" for same-site dev
    "none" ONLY if you truly need cross-site cookies (requires HTTPS + Secure=True)
    """
    v = str(getattr(settings, "REFRESH_COOKIE_SAMESITE", "lax")).lower().strip()
    if v not in {"lax", "strict", "none"}:
        return "lax"
    return v


def cookie_secure() -> bool:
    # Browsers drop SameSite=None cookies that are not Secure.
    return settings.is_prod or bool(settings.REFRESH_COOKIE_SECURE) or cookie_samesite() == "none"


def set_refresh_cookie(resp: Response, raw_refresh_token: str, max_age: timedelta) -> None:
    resp.set_cookie(
        key=cookie_name(),
        value=raw_refresh_token,
        httponly=True,
        secure=cookie_secure(),
        samesite=cookie_samesite(),
        max_age=int(max_age.total_seconds()),
        path=cookie_path(),
        domain=settings.REFRESH_COOKIE_DOMAIN,
    )


def clear_refresh_cookie(resp: Response) -> None:
    resp.delete_cookie(
        key=cookie_name(),
        path=cookie_path(),
        domain=settings.REFRESH_COOKIE_DOMAIN,
    )


def read_refresh_cookie(req: Request) -> str | None:
    val = req.cookies.get(cookie_name())
    if not val:
        return None
    val = val.strip()
    return val or None
