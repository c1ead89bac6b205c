"""
auth/tokens.py -- JWT issue/verify, bearer extraction, and refresh cookie helpers.

Security design decisions:
  JWT: python-jose with HS256. Access and refresh tokens are signed with two
       different keys and carry sub (identity id), email, role, a "type"
       discriminator, iat, exp, and a random jti. The jti keeps two tokens
       minted in the same second for the same identity distinct, so every
       refresh record is unique.

  Verification raises typed errors instead of returning None: callers must
  be able to tell "session expired" from "invalid token". The type claim is
  checked after the signature, so an access token is rejected where a
  refresh token is expected even if both happened to share a key.

  Keys: sourced from core.config.Settings. TokenCodec refuses to start with a
       missing key or with identical access/refresh keys.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import Misconfigured, TokenExpired, TokenInvalid
from auth.models import Identity, TokenPair, TokenType

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("admingate.auth.tokens")

_ALGORITHM = "HS256"
_BEARER_PREFIX = "Bearer "
_REQUIRED_CLAIMS = ("sub", "email", "role", "type", "iat", "exp")

# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def issue_token(
    token_type: TokenType,
    claims: dict[str, Any],
    secret_key: str,
    ttl_seconds: int,
    issued_at: datetime | None = None,
) -> str:
    """Encode a signed JWT of the given type.

    exp is iat + ttl_seconds. issued_at defaults to now; tests pass an
    earlier instant to mint tokens that are already expired.
    """
    now = issued_at or datetime.now(timezone.utc)
    iat = int(now.timestamp())
    payload = {
        **claims,
        "type": TokenType(token_type).value,
        "iat": iat,
        "exp": iat + ttl_seconds,
        "jti": secrets.token_hex(16),
    }
    return jwt.encode(payload, secret_key, algorithm=_ALGORITHM)


def verify_token(token: str, expected_type: TokenType, secret_key: str) -> dict[str, Any]:
    """Verify signature, expiry, and type. Return the claims dict.

    Raises:
        TokenExpired: signature valid, exp in the past.
        TokenInvalid: anything else -- bad signature, garbage input, missing
                      claims, or a type claim other than expected_type.
    """
    if not isinstance(token, str) or not token:
        raise TokenInvalid()
    try:
        payload = jwt.decode(token, secret_key, algorithms=[_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise TokenExpired() from exc
    except JWTError as exc:
        raise TokenInvalid() from exc
    if any(claim not in payload for claim in _REQUIRED_CLAIMS):
        raise TokenInvalid()
    if payload["type"] != TokenType(expected_type).value:
        logger.debug("Token type mismatch: expected %s, got %r", expected_type, payload["type"])
        raise TokenInvalid()
    return payload


def extract_bearer(carrier: str | None) -> str | None:
    """Return the token from an "Authorization: Bearer <token>" value, or None.

    Never raises. A missing prefix or an empty token both yield None.
    """
    if not isinstance(carrier, str) or not carrier.startswith(_BEARER_PREFIX):
        return None
    token = carrier[len(_BEARER_PREFIX) :].strip()
    return token or None


def get_token_expiry(token: str) -> datetime | None:
    """Return the exp claim as an aware datetime without verifying the token.

    Display-only: the result says nothing about whether the token is valid.
    """
    try:
        exp = jwt.get_unverified_claims(token).get("exp")
    except JWTError:
        return None
    if not isinstance(exp, (int, float)):
        return None
    return datetime.fromtimestamp(exp, tz=timezone.utc)


def is_expiring_soon(token: str, within_seconds: int = 120) -> bool:
    """True if the token expires within within_seconds, or has no readable exp."""
    expiry = get_token_expiry(token)
    if expiry is None:
        return True
    return expiry <= datetime.now(timezone.utc) + timedelta(seconds=within_seconds)


# ---------------------------------------------------------------------------
# Codec bound to configured keys and TTLs
# ---------------------------------------------------------------------------


class TokenCodec:
    """Stateless signer/verifier bound to the access and refresh keys.

    Usage:
        codec = TokenCodec.from_settings(get_settings())
        pair = codec.issue_pair(identity)
        claims = codec.verify_access(pair.access_token)
    """

    def __init__(self, access_secret: str, refresh_secret: str, access_ttl: int, refresh_ttl: int) -> None:
        if not access_secret or not refresh_secret:
            raise Misconfigured("Token signing keys are not configured")
        if access_secret == refresh_secret:
            raise Misconfigured("Access and refresh tokens must use different signing keys")
        self._access_secret = access_secret
        self._refresh_secret = refresh_secret
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenCodec:
        return cls(
            access_secret=settings.jwt_secret,
            refresh_secret=settings.jwt_refresh_secret,
            access_ttl=settings.access_token_expire_seconds,
            refresh_ttl=settings.refresh_token_expire_seconds,
        )

    def issue_access(self, identity: Identity, issued_at: datetime | None = None) -> str:
        return issue_token(
            TokenType.ACCESS, _identity_claims(identity), self._access_secret, self.access_ttl, issued_at
        )

    def issue_refresh(self, identity: Identity, issued_at: datetime | None = None) -> str:
        return issue_token(
            TokenType.REFRESH, _identity_claims(identity), self._refresh_secret, self.refresh_ttl, issued_at
        )

    def issue_pair(self, identity: Identity, issued_at: datetime | None = None) -> TokenPair:
        return TokenPair(
            access_token=self.issue_access(identity, issued_at),
            refresh_token=self.issue_refresh(identity, issued_at),
        )

    def verify_access(self, token: str) -> dict[str, Any]:
        return verify_token(token, TokenType.ACCESS, self._access_secret)

    def verify_refresh(self, token: str) -> dict[str, Any]:
        return verify_token(token, TokenType.REFRESH, self._refresh_secret)


def _identity_claims(identity: Identity) -> dict[str, Any]:
    return {"sub": str(identity.id), "email": identity.email, "role": identity.role}


def identity_id_from_claims(claims: dict[str, Any]) -> int:
    """Return the numeric identity id from a verified payload.

    Raises TokenInvalid if sub is not an integer string -- a signed token
    with a malformed subject is still not a token this service issued.
    """
    try:
        return int(claims["sub"])
    except (KeyError, TypeError, ValueError) as exc:
        raise TokenInvalid() from exc


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_refresh_cookie(response, token: str, settings: Settings) -> None:
    """Write the refresh token as an httpOnly cookie on the response.

    httponly=True: scripts cannot read the cookie.
    samesite="strict": never sent on cross-site requests.
    secure: HTTPS-only when Settings.secure_cookies (default: production).
    max_age: matches the refresh-token TTL so cookie and token expire together.
    """
    response.set_cookie(
        settings.refresh_cookie_name,
        value=token,
        httponly=True,
        samesite="strict",
        secure=bool(settings.secure_cookies),
        max_age=settings.refresh_token_expire_seconds,
    )


def clear_refresh_cookie(response, settings: Settings) -> None:
    """Expire the refresh-token cookie on the client."""
    response.delete_cookie(
        settings.refresh_cookie_name,
        httponly=True,
        samesite="strict",
        secure=bool(settings.secure_cookies),
    )
