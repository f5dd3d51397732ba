# refresh_guard/dependencies/auth.py
from __future__ import annotations

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from refresh_guard.core.config import TokenSettings, require_token_secrets
from refresh_guard.core.database import get_db
from refresh_guard.core.errors import AuthenticationError
from refresh_guard.services.refresh_tokens import SqlAlchemyTokenStore
from refresh_guard.services.rotation import RotationEngine
from refresh_guard.services.token_issuer import TokenIssuer
from refresh_guard.services.token_store import TokenStore
from refresh_guard.services.users import SqlAlchemySubjectDirectory, Subject

bearer_scheme = HTTPBearer(auto_error=False)


# -----------------------------
# Component wiring
# -----------------------------
def get_token_settings() -> TokenSettings:
    return require_token_secrets()


def get_token_store(db: Session = Depends(get_db)) -> TokenStore:
    return SqlAlchemyTokenStore(db)


def get_token_issuer(
    token_settings: TokenSettings = Depends(get_token_settings),
    store: TokenStore = Depends(get_token_store),
) -> TokenIssuer:
    return TokenIssuer(token_settings, store)


def get_rotation_engine(
    issuer: TokenIssuer = Depends(get_token_issuer),
    store: TokenStore = Depends(get_token_store),
    db: Session = Depends(get_db),
) -> RotationEngine:
    return RotationEngine(issuer, store, SqlAlchemySubjectDirectory(db))


# -----------------------------
# Bearer access token
# -----------------------------
def _unauthorized(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_subject(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    issuer: TokenIssuer = Depends(get_token_issuer),
    db: Session = Depends(get_db),
) -> Subject:
    """
    Validates:
      - Authorization: Bearer <token>
      - token signature + exp
      - subject exists + is_active
    Returns:
      - Subject with the directory's current email/roles
    """
    if not creds or creds.scheme.lower() != "bearer":
        raise _unauthorized("Missing Authorization header")

    try:
        claims = issuer.decode_access_token(creds.credentials)
    except AuthenticationError:
        raise _unauthorized("Invalid or expired token")

    subject = SqlAlchemySubjectDirectory(db).find_by_id(claims.subject_id)
    if not subject:
        raise _unauthorized("User not found")
    if not subject.is_active:
        raise _unauthorized("User is inactive")

    return subject
