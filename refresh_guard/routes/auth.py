# refresh_guard/routes/auth.py
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from refresh_guard.core.database import get_db
from refresh_guard.core.errors import AuthenticationError
from refresh_guard.core.password_policy import ensure_strong_password
from refresh_guard.dependencies.auth import bearer_scheme, get_rotation_engine
from refresh_guard.schemas.auth import LoginIn, MessageOut, RegisterIn, TokenOut
from refresh_guard.services.refresh_tokens import (
    clear_refresh_cookie,
    read_refresh_cookie,
    set_refresh_cookie,
)
from refresh_guard.services.rotation import RotationEngine, RotationResult
from refresh_guard.services.users import (
    EmailAlreadyRegisteredError,
    authenticate_user,
    register_user,
    to_subject,
)

router = APIRouter(prefix="/auth", tags=["auth"])


def auth_error_response(exc: AuthenticationError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": "UNAUTHORIZED", "message": exc.message, "details": {"code": exc.code}},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _token_response(response: Response, engine: RotationEngine, result: RotationResult) -> dict:
    set_refresh_cookie(response, result.refresh_token.token, engine.issuer.settings.refresh_ttl)
    return {"access_token": result.access_token, "token_type": "bearer"}


# -----------------------------
# Routes
# -----------------------------
@router.post("/register", response_model=TokenOut, status_code=status.HTTP_201_CREATED)
def register(
    payload: RegisterIn,
    response: Response,
    db: Session = Depends(get_db),
    engine: RotationEngine = Depends(get_rotation_engine),
):
    ensure_strong_password(payload.password, email=payload.email)

    try:
        user = register_user(db, payload.email, payload.password)
    except EmailAlreadyRegisteredError:
        raise HTTPException(status_code=409, detail="Email already registered")

    return _token_response(response, engine, engine.login(to_subject(user)))


@router.post("/login", response_model=TokenOut)
def login(
    payload: LoginIn,
    response: Response,
    db: Session = Depends(get_db),
    engine: RotationEngine = Depends(get_rotation_engine),
):
    user = authenticate_user(db, payload.email, payload.password)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid email or password")

    return _token_response(response, engine, engine.login(to_subject(user)))


@router.post("/refresh", response_model=TokenOut)
def refresh(
    request: Request,
    response: Response,
    engine: RotationEngine = Depends(get_rotation_engine),
):
    """
    Rotate refresh tokens via HttpOnly cookie:
      - read refresh token from cookie
      - revoke it (conditionally) and issue a successor
      - reuse of a revoked token revokes every session of the owner
      - return new access token
    """
    raw = read_refresh_cookie(request)
    if not raw:
        raise HTTPException(status_code=401, detail="Missing refresh token")

    try:
        result = engine.rotate(raw)
    except AuthenticationError as exc:
        error_response = auth_error_response(exc)
        clear_refresh_cookie(error_response)
        return error_response

    return _token_response(response, engine, result)


@router.post("/logout", response_model=MessageOut)
def logout(
    request: Request,
    response: Response,
    creds: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    engine: RotationEngine = Depends(get_rotation_engine),
):
    """
    Revoke every refresh token of the caller and clear the cookie. The owner
    comes from a valid bearer access token, else from a signature-valid
    refresh cookie. Always succeeds.
    """
    owner_id: str | None = None
    if creds and creds.scheme.lower() == "bearer":
        try:
            owner_id = engine.issuer.decode_access_token(creds.credentials).subject_id
        except AuthenticationError:
            owner_id = None

    raw = read_refresh_cookie(request)
    if owner_id is None and raw:
        try:
            owner_id = engine.issuer.decode_refresh_token(raw).owner_id
        except AuthenticationError:
            owner_id = None

    if owner_id is not None:
        engine.logout(owner_id)

    clear_refresh_cookie(response)
    return {"message": "Logged out"}
