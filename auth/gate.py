"""
auth/gate.py -- Per-request authentication and authorization decision pipeline.

Transport-agnostic: the gate sees only the raw Authorization carrier string
and the client address. auth/dependencies.py adapts it to FastAPI.

Pipeline (each step may short-circuit to REJECTED):

  UNAUTHENTICATED -> TOKEN_EXTRACTED -> TOKEN_VERIFIED -> IDENTITY_LOADED -> AUTHORIZED

  extract   no "Bearer <token>"        -> TokenRequired (or pass-through if optional)
  verify    expired                    -> TokenExpired ("session expired")
            bad signature / wrong type -> TokenInvalid
  load      identity missing/inactive  -> Unauthorized, even with a valid token
  authorize role not in required set   -> Unauthorized (403), generic message

Each decision is computed from the presented token and a fresh store read.
Nothing is cached between requests.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from auth.errors import AlreadyAuthenticated, AuthError, TokenExpired, TokenInvalid, TokenRequired, Unauthorized
from auth.models import Identity
from auth.store import IdentityStore
from auth.tokens import TokenCodec, extract_bearer, identity_id_from_claims

logger = logging.getLogger("admingate.auth.gate")


class GateState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    TOKEN_EXTRACTED = "token_extracted"
    TOKEN_VERIFIED = "token_verified"
    IDENTITY_LOADED = "identity_loaded"
    AUTHORIZED = "authorized"
    REJECTED = "rejected"


@dataclass
class GateDecision:
    """Where the pipeline stopped and why.

    state is the outcome: AUTHORIZED, REJECTED, or UNAUTHENTICATED for an
    optional-mode pass-through. stage is the last step the request passed,
    so a REJECTED decision still says how far it got (TOKEN_VERIFIED means
    the token was good but the identity was not).

    allowed is True for AUTHORIZED, and for UNAUTHENTICATED pass-through in
    optional mode (identity is None then).
    """

    state: GateState
    stage: GateState = GateState.UNAUTHENTICATED
    identity: Identity | None = None
    token: str | None = None
    error: AuthError | None = None

    @property
    def allowed(self) -> bool:
        return self.error is None


class RequestGate:
    def __init__(self, store: IdentityStore, codec: TokenCodec) -> None:
        self.store = store
        self.codec = codec

    def evaluate(
        self,
        carrier: str | None,
        *,
        required: bool = True,
        roles: Iterable[str] = (),
        client_address: str | None = None,
    ) -> GateDecision:
        """Run the full pipeline and return the decision. Never raises AuthError."""
        token = extract_bearer(carrier)
        if token is None:
            if not required:
                return GateDecision(GateState.UNAUTHENTICATED)
            return self._reject(TokenRequired(), GateState.UNAUTHENTICATED, client_address)

        try:
            claims = self.codec.verify_access(token)
            identity_id = identity_id_from_claims(claims)
        except (TokenExpired, TokenInvalid) as exc:
            if not required:
                return GateDecision(GateState.UNAUTHENTICATED, stage=GateState.TOKEN_EXTRACTED)
            return self._reject(exc, GateState.TOKEN_EXTRACTED, client_address, token=token)

        identity = self.store.get_by_id(identity_id)
        if identity is None or not identity.is_active:
            if not required:
                return GateDecision(GateState.UNAUTHENTICATED, stage=GateState.TOKEN_VERIFIED)
            logger.warning("Token for missing or inactive identity id=%s ip=%s", identity_id, client_address)
            return self._reject(Unauthorized(), GateState.TOKEN_VERIFIED, client_address, token=token)

        required_roles = {str(getattr(r, "value", r)) for r in roles}
        if required_roles and identity.role not in required_roles:
            logger.warning(
                "Authorization failed id=%s role=%s required=%s ip=%s",
                identity.id,
                identity.role,
                sorted(required_roles),
                client_address,
            )
            return self._reject(
                Unauthorized(status_code=403),
                GateState.IDENTITY_LOADED,
                client_address,
                token=token,
                identity=identity,
            )

        return GateDecision(GateState.AUTHORIZED, stage=GateState.AUTHORIZED, identity=identity, token=token)

    def authenticate(
        self,
        carrier: str | None,
        *,
        roles: Iterable[str] = (),
        client_address: str | None = None,
    ) -> Identity:
        """Return the authorized identity or raise the rejecting AuthError."""
        decision = self.evaluate(carrier, required=True, roles=roles, client_address=client_address)
        if decision.error is not None:
            raise decision.error
        return decision.identity

    def try_authenticate(self, carrier: str | None, client_address: str | None = None) -> Identity | None:
        """Optional-auth variant. Any failure yields None."""
        return self.evaluate(carrier, required=False, client_address=client_address).identity

    def reject_if_authenticated(self, carrier: str | None) -> None:
        """Raise AlreadyAuthenticated if carrier holds a valid, unexpired access token.

        Only the token is checked; the identity is not loaded.
        """
        token = extract_bearer(carrier)
        if token is None:
            return
        try:
            self.codec.verify_access(token)
        except (TokenExpired, TokenInvalid):
            return
        raise AlreadyAuthenticated()

    def _reject(
        self,
        error: AuthError,
        stage: GateState,
        client_address: str | None,
        token: str | None = None,
        identity: Identity | None = None,
    ) -> GateDecision:
        logger.info("Authentication rejected code=%s stage=%s ip=%s", error.code, stage.value, client_address)
        return GateDecision(GateState.REJECTED, stage=stage, identity=identity, token=token, error=error)
