"""
api/routes/v1/auth.py -- Authentication and session endpoints.

Routes (mounted under /api):
  POST /auth/login              -- password login; sets refresh cookie
  POST /auth/refresh            -- rotate refresh cookie; new access token
  POST /auth/logout             -- drop this session; always 200
  POST /auth/logout-all         -- drop every session (requires auth)
  GET  /auth/profile            -- current identity (requires auth)
  GET  /auth/validate           -- token check + expiry info (requires auth)
  GET  /auth/status             -- is the caller authenticated? (public)
  GET  /auth/sessions           -- active refresh sessions (admin)
  POST /auth/sessions/cleanup   -- sweep expired refresh records (admin)

Security:
  [R1] POST /login is rate-limited per IP (LOGIN_RATE_LIMIT) and rejects
       callers already holding a valid access token.
  [R2] Refresh tokens only ever travel in the httpOnly cookie, never in a
       response body.
  [R3] Any refresh failure clears the cookie. A rejected refresh token is
       never retriable; the client has to log in again.
  [R4] Logout answers success even if server-side bookkeeping fails -- the
       cookie is gone either way, which is what the caller asked for.
  [R5] Cache-Control: no-store on responses that carry tokens.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from api.limiter import auth_limit, limiter, login_limit
from api.models import (
    MSG_LOGIN,
    MSG_LOGOUT,
    MSG_LOGOUT_ALL,
    MSG_SERVER_ERROR,
    MSG_TOKEN_REFRESHED,
    CleanupData,
    ErrorResponse,
    LoginRequest,
    ProfileData,
    SessionData,
    SessionListData,
    SessionRecordResponse,
    StatusData,
    SuccessResponse,
    UserResponse,
    ValidateData,
    envelope,
)
from auth.dependencies import authenticate, client_address, optional_auth, reject_authenticated, require_admin
from auth.errors import REFRESH_TOKEN_REQUIRED, AuthError
from auth.models import Identity, IdentityProfile
from auth.session import SessionManager, SessionResult
from auth.tokens import (
    clear_refresh_cookie,
    extract_bearer,
    get_token_expiry,
    is_expiring_soon,
    set_refresh_cookie,
)
from core.config import Settings

logger = logging.getLogger("admingate.api.auth")

# Auth policy:
# - POST /auth/login:            public, but NOT with a live access token (reject_authenticated)
# - POST /auth/refresh:          public -- the refresh cookie is the credential
# - POST /auth/logout:           optional auth -- works with an expired access token
# - POST /auth/logout-all:       requires auth (authenticate)
# - GET  /auth/profile:          requires auth (authenticate)
# - GET  /auth/validate:         requires auth (authenticate)
# - GET  /auth/status:           optional auth
# - GET  /auth/sessions:         requires admin (require_admin)
# - POST /auth/sessions/cleanup: requires admin (require_admin)
router = APIRouter()


def _sessions(request: Request) -> SessionManager:
    return request.app.state.sessions


def _settings(request: Request) -> Settings:
    return request.app.state.settings


def _session_response(request: Request, result: SessionResult, message: str) -> JSONResponse:
    resp = JSONResponse(
        status_code=200,
        content=envelope(
            SuccessResponse(
                message=message,
                data=SessionData(user=UserResponse.from_profile(result.user), access_token=result.access_token),
            )
        ),
    )
    set_refresh_cookie(resp, result.refresh_token, _settings(request))
    resp.headers["Cache-Control"] = "no-store"  # [R5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/login", dependencies=[Depends(reject_authenticated)])
@limiter.limit(login_limit)  # [R1] below @router: FastAPI must register the wrapper
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate the admin with email and password.

    Wrong email and wrong password produce the same 401 body.
    """
    result = _sessions(request).login(body.email, body.password, client_address(request))
    return _session_response(request, result, MSG_LOGIN)


@router.post("/auth/refresh")
@limiter.limit(auth_limit)
def refresh(request: Request) -> JSONResponse:
    """Exchange the refresh cookie for a new access token and a new cookie."""
    settings = _settings(request)
    token = request.cookies.get(settings.refresh_cookie_name)
    if not token:
        return JSONResponse(
            status_code=401,
            content=envelope(ErrorResponse(error=REFRESH_TOKEN_REQUIRED)),
        )
    try:
        result = _sessions(request).rotate(token, client_address(request))
    except AuthError as exc:
        logger.warning("Token refresh failed code=%s ip=%s", exc.code, client_address(request))
        resp = JSONResponse(status_code=exc.status_code, content=envelope(ErrorResponse(error=exc.message)))
        clear_refresh_cookie(resp, settings)  # [R3]
        return resp
    except SQLAlchemyError:
        logger.exception("Token refresh bookkeeping failed ip=%s", client_address(request))
        resp = JSONResponse(status_code=500, content=envelope(ErrorResponse(error=MSG_SERVER_ERROR)))
        clear_refresh_cookie(resp, settings)
        return resp
    return _session_response(request, result, MSG_TOKEN_REFRESHED)


@router.post("/auth/logout")
def logout(request: Request, identity: Identity | None = Depends(optional_auth)) -> JSONResponse:
    """Drop the session behind the refresh cookie and clear the cookie."""
    settings = _settings(request)
    token = request.cookies.get(settings.refresh_cookie_name)
    identity_id = identity.id if identity else None
    try:
        _sessions(request).logout(token, identity_id)
    except SQLAlchemyError:
        # [R4] outward result stays success
        logger.exception("Logout bookkeeping failed id=%s ip=%s", identity_id, client_address(request))
    resp = JSONResponse(content=envelope(SuccessResponse(message=MSG_LOGOUT)))
    clear_refresh_cookie(resp, settings)
    return resp


@router.get("/auth/status")
def status(identity: Identity | None = Depends(optional_auth)) -> dict:
    """Report whether the caller holds a good access token. Never 401s."""
    user = UserResponse.from_profile(IdentityProfile.from_identity(identity)) if identity else None
    return envelope(SuccessResponse(data=StatusData(is_authenticated=identity is not None, user=user)))


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout-all")
def logout_all(request: Request, identity: Identity = Depends(authenticate)) -> JSONResponse:
    """Invalidate every refresh session for the caller."""
    _sessions(request).logout_all(identity.id)
    resp = JSONResponse(content=envelope(SuccessResponse(message=MSG_LOGOUT_ALL)))
    clear_refresh_cookie(resp, _settings(request))
    return resp


@router.get("/auth/profile")
def profile(request: Request, identity: Identity = Depends(authenticate)) -> dict:
    user = _sessions(request).get_profile(identity.id)
    return envelope(SuccessResponse(data=ProfileData(user=UserResponse.from_profile(user))))


@router.get("/auth/validate")
def validate(request: Request, identity: Identity = Depends(authenticate)) -> dict:
    """Confirm the presented access token and report when it expires.

    expiringSoon lets clients refresh ahead of time instead of waiting for a 401.
    """
    token = extract_bearer(request.headers.get("Authorization"))
    return envelope(
        SuccessResponse(
            data=ValidateData(
                user=UserResponse.from_profile(IdentityProfile.from_identity(identity)),
                expires_at=get_token_expiry(token),
                expiring_soon=is_expiring_soon(token),
            )
        )
    )


# ---------------------------------------------------------------------------
# Session administration (admin only)
# ---------------------------------------------------------------------------


@router.get("/auth/sessions")
def list_sessions(request: Request, identity: Identity = Depends(require_admin)) -> dict:
    """List the caller's active refresh sessions. Token strings are never returned."""
    sessions = _sessions(request).list_sessions(identity.id)
    records = [SessionRecordResponse(id=s.id, created_at=s.created_at, expires_at=s.expires_at) for s in sessions]
    return envelope(SuccessResponse(data=SessionListData(sessions=records, count=len(records))))


@router.post("/auth/sessions/cleanup")
def cleanup_sessions(request: Request, identity: Identity = Depends(require_admin)) -> dict:
    """Sweep refresh records past their TTL now instead of waiting for the purge task."""
    removed = _sessions(request).cleanup_expired_tokens()
    return envelope(SuccessResponse(data=CleanupData(removed=removed)))

