"""
auth/dependencies.py -- FastAPI Depends() helpers around RequestGate.

Access tokens travel in "Authorization: Bearer <token>". The gate and the
session manager live on app.state (wired by the lifespan in api/main.py).

authenticate()         -- mandatory; raises the gate's AuthError
optional_auth()        -- soft variant; returns None on any failure
authorize(*roles)      -- factory; authenticate + role check (empty = any identity)
require_admin          -- authorize(Role.ADMIN)
reject_authenticated() -- for endpoints (login) unreachable with a live access token

AuthError is turned into the response envelope by the exception handler in
api/main.py.

Layer rule: no imports from api/. fastapi is allowed here because this
module is part of the dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Request

from auth.gate import RequestGate
from auth.models import Identity, Role


def _gate(request: Request) -> RequestGate:
    return request.app.state.gate


def client_address(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def authenticate(request: Request) -> Identity:
    """Require a valid access token for an active identity.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(identity: Identity = Depends(authenticate)): ...
    """
    identity = _gate(request).authenticate(
        request.headers.get("Authorization"),
        client_address=client_address(request),
    )
    request.state.identity = identity
    return identity


def optional_auth(request: Request) -> Identity | None:
    """Attach the identity if the request carries a good token, else None. Never raises."""
    identity = _gate(request).try_authenticate(
        request.headers.get("Authorization"),
        client_address=client_address(request),
    )
    request.state.identity = identity
    return identity


def authorize(*roles: str) -> Callable[[Request], Identity]:
    """Build a dependency that requires one of roles (any identity if none given)."""

    def dependency(request: Request) -> Identity:
        identity = _gate(request).authenticate(
            request.headers.get("Authorization"),
            roles=roles,
            client_address=client_address(request),
        )
        request.state.identity = identity
        return identity

    return dependency


require_admin = authorize(Role.ADMIN)


def reject_authenticated(request: Request) -> None:
    """Raise AlreadyAuthenticated when a still-valid access token is presented."""
    _gate(request).reject_if_authenticated(request.headers.get("Authorization"))
