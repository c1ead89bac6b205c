"""
auth/errors.py -- Typed failures raised by the token/session engine.

Every error carries a stable machine code, the user-facing message, and the
HTTP status the api/ layer should answer with. Messages are deliberately
generic: InvalidCredentials never says which half of the credential was
wrong, and TokenRevoked reads exactly like TokenInvalid so a caller cannot
tell a forged token from one that was already rotated away.

Layer rule: no imports from api/. Only stdlib.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for all authentication and authorization failures."""

    code: str = "auth_error"
    message: str = "Authentication failed"
    status_code: int = 401

    def __init__(self, message: str | None = None, *, status_code: int | None = None) -> None:
        if message is not None:
            self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class InvalidCredentials(AuthError):
    code = "invalid_credentials"
    message = "Invalid email or password"


class TokenRequired(AuthError):
    code = "token_required"
    message = "Access token is required"


class TokenExpired(AuthError):
    """Signature checked out but the clock is past the embedded expiry."""

    code = "token_expired"
    message = "Session expired. Please login again."


class TokenInvalid(AuthError):
    """Bad signature, wrong type discriminator, or unparseable token."""

    code = "token_invalid"
    message = "Invalid or expired token"


class TokenRevoked(TokenInvalid):
    """Structurally valid refresh token with no matching server-side record.

    Subclasses TokenInvalid and keeps its code and message so the outward
    response is identical. Only the logs see the difference.
    """


class Unauthorized(AuthError):
    code = "unauthorized"
    message = "Access denied. Admin privileges required."


class AlreadyAuthenticated(AuthError):
    code = "already_authenticated"
    message = "User already authenticated"
    status_code = 400


class NotFound(AuthError):
    code = "not_found"
    message = "User not found"
    status_code = 404


class Misconfigured(AuthError):
    """Required key material or admin credential missing. Fatal at startup."""

    code = "misconfigured"
    message = "Authentication system misconfigured"
    status_code = 500


REFRESH_TOKEN_REQUIRED = "Refresh token is required"
