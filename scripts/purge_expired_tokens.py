"""
Purge expired refresh tokens.

What it does:
- Deletes refresh_tokens rows whose expires_at is at or before the cutoff
- Clears replaced_by_id links that pointed at the deleted rows

Revoked-but-unexpired rows are kept: they are the tombstones reuse detection
depends on. Safe to run repeatedly (e.g. nightly from cron):

    python scripts/purge_expired_tokens.py
    python scripts/purge_expired_tokens.py --before 2026-01-01T00:00:00+00:00
"""

from __future__ import annotations

import argparse
from datetime import datetime
from typing import Callable, Sequence

from sqlalchemy.orm import Session

from refresh_guard.core.database import SessionLocal
from refresh_guard.core.security import as_utc, now_utc
from refresh_guard.services.refresh_tokens import SqlAlchemyTokenStore


def parse_cutoff(value: str | None) -> datetime:
    if not value:
        return now_utc()
    return as_utc(datetime.fromisoformat(value))


def main(
    argv: Sequence[str] | None = None,
    session_factory: Callable[[], Session] = SessionLocal,
) -> int:
    parser = argparse.ArgumentParser(description="Delete expired refresh tokens.")
    parser.add_argument("--before", help="ISO-8601 cutoff; defaults to now (UTC).")
    args = parser.parse_args(argv)

    try:
        cutoff = parse_cutoff(args.before)
    except ValueError:
        print(f"Refusing to run: --before is not an ISO-8601 datetime (got {args.before!r})")
        return 2

    with session_factory() as db:
        purged = SqlAlchemyTokenStore(db).purge_expired(cutoff)

    print(f"Purged {purged} expired refresh tokens (cutoff={cutoff.isoformat()})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
