# refresh_guard/services/users.py
"""
User lookups for the auth flow.

Responsibilities:
- Subject directory used by rotation to re-derive current email/roles
- Registration with a normalized, unique email
- Password authentication for login
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from refresh_guard.core.security import hash_password, now_utc, verify_password
from refresh_guard.models.user import DEFAULT_ROLES, User

logger = logging.getLogger(__name__)


class EmailAlreadyRegisteredError(Exception):
    pass


@dataclass(frozen=True)
class Subject:
    id: str
    email: str
    roles: tuple[str, ...]
    is_active: bool = True


class SubjectDirectory(Protocol):
    def find_by_id(self, subject_id: str) -> Optional[Subject]:
        ...


def to_subject(user: User) -> Subject:
    return Subject(
        id=str(user.id),
        email=user.email,
        roles=tuple(user.roles or ()),
        is_active=bool(user.is_active),
    )


class SqlAlchemySubjectDirectory:
    def __init__(self, db: Session):
        self.db = db

    def find_by_id(self, subject_id: str) -> Optional[Subject]:
        user = self.db.query(User).filter(User.id == str(subject_id)).populate_existing().first()
        return to_subject(user) if user else None


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    """Look up a user by email address."""
    return db.query(User).filter(User.email == normalize_email(email)).first()


def register_user(
    db: Session,
    email: str,
    password: str,
    *,
    roles: Sequence[str] | None = None,
) -> User:
    """
    Create an active user with a hashed password.

    Raises:
        EmailAlreadyRegisteredError: If the normalized email is taken
    """
    normalized_email = normalize_email(email)
    if get_user_by_email(db, normalized_email):
        raise EmailAlreadyRegisteredError(normalized_email)

    user = User(
        email=normalized_email,
        password_hash=hash_password(password),
        roles=list(roles or DEFAULT_ROLES),
        is_active=True,
        last_login_at=now_utc(),
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError as exc:
        # Lost a race with a concurrent registration of the same email
        db.rollback()
        raise EmailAlreadyRegisteredError(normalized_email) from exc
    db.refresh(user)

    logger.info("Registered user id=%s", user.id)
    return user


def authenticate_user(db: Session, email: str, password: str) -> Optional[User]:
    """Return the active user matching the credentials, or None."""
    user = get_user_by_email(db, email)
    if not user or not user.is_active:
        return None
    if not verify_password(password, user.password_hash):
        return None

    user.last_login_at = now_utc()
    db.add(user)
    db.commit()
    db.refresh(user)
    return user
