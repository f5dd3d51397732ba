# refresh_guard/services/token_store.py
"""
Refresh token persistence.

`TokenStore` is the seam the rotation engine depends on. Every mutation is a
single atomic operation; `revoke` in particular is a compare-and-set on
`revoked_at` and reports whether this call performed the transition.

Implementations:
- InMemoryTokenStore (here): lock-guarded dict, used for tests and local tools
- SqlAlchemyTokenStore (refresh_guard.services.refresh_tokens): conditional UPDATEs
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional, Protocol

from refresh_guard.core.errors import ConflictError
from refresh_guard.core.security import now_utc


@dataclass(frozen=True)
class RefreshTokenRecord:
    id: str
    owner_id: str
    issued_at: datetime
    expires_at: datetime
    revoked_at: Optional[datetime] = None
    replaced_by_id: Optional[str] = None

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def is_active(self, now: datetime) -> bool:
        return not self.is_revoked and not self.is_expired(now)


class TokenStore(Protocol):
    def create(self, record: RefreshTokenRecord) -> None:
        """Insert a new record. Raises ConflictError if the id exists."""
        ...

    def find_by_id(self, token_id: str) -> Optional[RefreshTokenRecord]:
        """Look up a record regardless of revocation state."""
        ...

    def revoke(self, token_id: str, replaced_by_id: Optional[str] = None) -> bool:
        """Set revoked_at if it is still null. True only if this call did it."""
        ...

    def link_successor(self, token_id: str, successor_id: str) -> bool:
        """Set replaced_by_id once, and only to a record of the same owner."""
        ...

    def revoke_all_for_owner(self, owner_id: str) -> int:
        """Revoke every non-revoked record of the owner. Returns the count."""
        ...

    def list_for_owner(self, owner_id: str) -> list[RefreshTokenRecord]:
        ...

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Hard-delete records whose expiry has passed. Returns the count."""
        ...


class InMemoryTokenStore:
    def __init__(self) -> None:
        self._records: dict[str, RefreshTokenRecord] = {}
        self._lock = threading.RLock()

    def create(self, record: RefreshTokenRecord) -> None:
        with self._lock:
            if record.id in self._records:
                raise ConflictError(f"Refresh token id already exists: {record.id}")
            self._records[record.id] = record

    def find_by_id(self, token_id: str) -> Optional[RefreshTokenRecord]:
        with self._lock:
            return self._records.get(token_id)

    def revoke(self, token_id: str, replaced_by_id: Optional[str] = None) -> bool:
        with self._lock:
            record = self._records.get(token_id)
            if record is None or record.revoked_at is not None:
                return False
            if replaced_by_id is not None and not self._same_owner(record, replaced_by_id):
                return False
            self._records[token_id] = replace(record, revoked_at=now_utc(), replaced_by_id=replaced_by_id)
            return True

    def link_successor(self, token_id: str, successor_id: str) -> bool:
        with self._lock:
            record = self._records.get(token_id)
            if record is None or record.replaced_by_id is not None:
                return False
            if not self._same_owner(record, successor_id):
                return False
            self._records[token_id] = replace(record, replaced_by_id=successor_id)
            return True

    def revoke_all_for_owner(self, owner_id: str) -> int:
        with self._lock:
            now = now_utc()
            count = 0
            for token_id, record in list(self._records.items()):
                if record.owner_id == owner_id and record.revoked_at is None:
                    self._records[token_id] = replace(record, revoked_at=now)
                    count += 1
            return count

    def list_for_owner(self, owner_id: str) -> list[RefreshTokenRecord]:
        with self._lock:
            records = [r for r in self._records.values() if r.owner_id == owner_id]
        return sorted(records, key=lambda r: r.issued_at)

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        cutoff = now or now_utc()
        with self._lock:
            expired = [token_id for token_id, r in self._records.items() if r.expires_at <= cutoff]
            for token_id in expired:
                del self._records[token_id]
            # Mirror ON DELETE SET NULL for chain links into purged rows
            for token_id, record in list(self._records.items()):
                if record.replaced_by_id in expired:
                    self._records[token_id] = replace(record, replaced_by_id=None)
            return len(expired)

    def _same_owner(self, record: RefreshTokenRecord, other_id: str) -> bool:
        other = self._records.get(other_id)
        return other is not None and other.owner_id == record.owner_id
