# refresh_guard/core/errors.py
from __future__ import annotations


class ConfigurationError(RuntimeError):
    """Raised at startup when required settings are missing or unsafe."""

    pass


# ---------------------------------------------------------------------------
# Authentication failures (all surface as 401)
# ---------------------------------------------------------------------------


class AuthenticationError(Exception):
    """Base class for token failures returned to the client as 401."""

    status_code = 401
    code = "UNAUTHORIZED"
    default_message = "Could not validate credentials"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidTokenError(AuthenticationError):
    """Signature, algorithm or payload check failed, or the token id is unknown."""

    code = "INVALID_TOKEN"
    default_message = "Invalid refresh token"


class ExpiredTokenError(AuthenticationError):
    """Signature is valid but the token has lapsed."""

    code = "TOKEN_EXPIRED"
    default_message = "Refresh token expired"


class TokenReuseError(AuthenticationError):
    """
    An already-revoked refresh token was presented. Raised only after every
    refresh token of the owner has been revoked.
    """

    code = "TOKEN_REUSE_DETECTED"
    default_message = "Refresh token reuse detected"

    def __init__(self, owner_id: str, revoked_count: int = 0, message: str | None = None) -> None:
        super().__init__(message)
        self.owner_id = owner_id
        self.revoked_count = revoked_count


class ConflictError(AuthenticationError):
    """A store insert collided with an existing id."""

    code = "CONFLICT"
    default_message = "Conflicting token record"
