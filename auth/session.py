"""
auth/session.py -- Login, refresh-token rotation, logout, and profile lookup.

SessionManager is the state machine over (Identity, refresh-token record set).
It owns no state itself: every transition is a write through IdentityStore,
and every token comes from TokenCodec.

Security design decisions:
  [S1] Email enumeration: a login for any address other than the configured
       admin email runs bcrypt against a dummy digest and fails with the same
       InvalidCredentials as a wrong password. Response body and bcrypt cost
       are identical in both cases.

  [S2] Bootstrap: the admin identity is created from ADMIN_PASSWORD only
       when no identity with the admin email exists yet. It is not an
       account-creation endpoint. Two first logins racing each other both
       try to insert; the loser's IntegrityError means "already created",
       and it re-reads the row.

  [S3] Rotate, don't append: a refresh token is single-use. The store swaps
       the old record for the new one in one conditional transaction; a
       second use of the old token finds no record and fails with
       TokenRevoked, which reads exactly like TokenInvalid outward.

  [S4] Expiry is re-checked at use time (codec exp check plus a created_at
       window in the conditional delete). The periodic purge is an
       optimization only.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from auth.errors import InvalidCredentials, Misconfigured, NotFound, TokenRevoked, Unauthorized
from auth.models import Identity, IdentityProfile, RefreshTokenRecord, Role
from auth.passwords import hash_password, make_dummy_hash, verify_password
from auth.store import IdentityStore, normalize_email
from auth.tokens import TokenCodec, identity_id_from_claims

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("admingate.auth.session")


@dataclass(frozen=True)
class SessionResult:
    """Outcome of login or rotate: the sanitized identity plus a fresh pair."""

    user: IdentityProfile
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class SessionInfo:
    """One active refresh session, without the token string."""

    id: int
    created_at: datetime
    expires_at: datetime


class SessionManager:
    def __init__(self, store: IdentityStore, codec: TokenCodec, settings: Settings) -> None:
        if not settings.admin_email or not settings.admin_password:
            logger.error("Admin credentials not configured (ADMIN_EMAIL / ADMIN_PASSWORD)")
            raise Misconfigured()
        self.store = store
        self.codec = codec
        self._admin_email = normalize_email(settings.admin_email)
        self._admin_password = settings.admin_password
        self._rounds = settings.bcrypt_rounds
        # Same cost as real digests, computed once so the first rejected
        # login is not measurably slower than later ones [S1].
        self._dummy_hash = make_dummy_hash(self._rounds)

    @property
    def refresh_ttl(self) -> int:
        return self.codec.refresh_ttl

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, email: str, password: str, client_address: str | None = None) -> SessionResult:
        """Authenticate the admin and open a new session.

        Raises InvalidCredentials for every failure mode, including an
        inactive account.
        """
        email = normalize_email(email)
        if email != self._admin_email:
            verify_password(password, self._dummy_hash)  # [S1]
            logger.warning("Invalid login attempt (unknown email) email=%s ip=%s", email, client_address)
            raise InvalidCredentials()

        identity = self.store.get_by_email(email)
        if identity is None:
            identity = self._bootstrap_admin()

        if not verify_password(password, identity.hashed_password or self._dummy_hash):
            logger.warning("Invalid login attempt (wrong password) email=%s ip=%s", email, client_address)
            raise InvalidCredentials()
        if not identity.is_active:
            logger.warning("Login refused for inactive identity id=%s ip=%s", identity.id, client_address)
            raise InvalidCredentials()

        pair = self.codec.issue_pair(identity)
        self.store.add_refresh_token(identity.id, pair.refresh_token)
        self.store.update_last_login(identity.id)
        identity = self.store.get_by_id(identity.id) or identity

        logger.info("Login succeeded id=%s email=%s ip=%s", identity.id, identity.email, client_address)
        return SessionResult(
            user=IdentityProfile.from_identity(identity),
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
        )

    def _bootstrap_admin(self) -> Identity:
        """Create the admin identity from configured credentials [S2]."""
        digest = hash_password(self._admin_password, rounds=self._rounds)
        try:
            identity = self.store.create_identity(self._admin_email, digest, Role.ADMIN.value)
            logger.info("Bootstrapped admin identity id=%s email=%s", identity.id, identity.email)
            return identity
        except IntegrityError:
            existing = self.store.get_by_email(self._admin_email)
            if existing is None:
                raise
            return existing

    # ------------------------------------------------------------------
    # Rotation
    # ------------------------------------------------------------------

    def rotate(self, refresh_token: str, client_address: str | None = None) -> SessionResult:
        """Exchange a refresh token for a new pair. The old token dies [S3].

        Raises:
            TokenExpired:  refresh token past its exp.
            TokenInvalid:  bad signature, wrong type, or malformed.
            Unauthorized:  identity gone or deactivated.
            TokenRevoked:  no live record for this token (reused, logged out,
                           swept, or forged with a leaked key).
        """
        claims = self.codec.verify_refresh(refresh_token)
        identity_id = identity_id_from_claims(claims)

        identity = self.store.get_by_id(identity_id)
        if identity is None or not identity.is_active:
            logger.warning("Refresh refused: identity id=%s missing or inactive ip=%s", identity_id, client_address)
            raise Unauthorized()

        pair = self.codec.issue_pair(identity)
        not_before = time.time() - self.refresh_ttl  # [S4]
        if not self.store.rotate_refresh_token(identity.id, refresh_token, pair.refresh_token, not_before):
            logger.warning("Refresh token reuse or revoked token id=%s ip=%s", identity.id, client_address)
            raise TokenRevoked()

        logger.info("Token refreshed id=%s email=%s", identity.id, identity.email)
        return SessionResult(
            user=IdentityProfile.from_identity(identity),
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
        )

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    def logout(self, refresh_token: str | None, identity_id: int | None = None) -> bool:
        """Drop one refresh session. Idempotent: a missing record is fine.

        Returns True if a record was actually removed.
        """
        removed = False
        if refresh_token:
            removed = self.store.remove_refresh_token(refresh_token, identity_id)
        logger.info("Logout id=%s removed=%s", identity_id, removed)
        return removed

    def logout_all(self, identity_id: int) -> int:
        """Drop every refresh session for the identity. Returns how many.

        Access tokens already issued stay valid until their own short expiry.
        """
        count = self.store.remove_all_refresh_tokens(identity_id)
        logger.info("Logout from all devices id=%s sessions=%d", identity_id, count)
        return count

    # ------------------------------------------------------------------
    # Queries and maintenance
    # ------------------------------------------------------------------

    def get_profile(self, identity_id: int) -> IdentityProfile:
        identity = self.store.get_by_id(identity_id)
        if identity is None or not identity.is_active:
            logger.warning("Profile lookup failed id=%s", identity_id)
            raise NotFound()
        return IdentityProfile.from_identity(identity)

    def list_sessions(self, identity_id: int) -> list[SessionInfo]:
        """Active refresh sessions for an identity, newest first."""
        not_before = time.time() - self.refresh_ttl
        records = self.store.list_refresh_tokens(identity_id, not_before=not_before)
        return [self._session_info(r) for r in reversed(records)]

    def cleanup_expired_tokens(self) -> int:
        """Sweep records past the refresh TTL. Returns rows removed."""
        removed = self.store.purge_expired_refresh_tokens(self.refresh_ttl)
        logger.info("Expired refresh tokens cleaned up count=%d", removed)
        return removed

    def _session_info(self, record: RefreshTokenRecord) -> SessionInfo:
        return SessionInfo(
            id=record.id,
            created_at=datetime.fromtimestamp(record.created_at, tz=timezone.utc),
            expires_at=datetime.fromtimestamp(record.created_at + self.refresh_ttl, tz=timezone.utc),
        )
