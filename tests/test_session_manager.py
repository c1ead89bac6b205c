"""Unit tests for auth/session.py -- SessionManager login, rotation, logout.

Covers:
- login bootstraps the admin once and issues a pair with the configured TTLs
- wrong email and wrong password fail identically
- inactive identities cannot log in or refresh
- rotation is single-use, including under concurrent callers
- expired and revoked refresh tokens are told apart
- logout / logout_all / list_sessions / cleanup_expired_tokens
"""

import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from auth.errors import (
    InvalidCredentials,
    Misconfigured,
    NotFound,
    TokenExpired,
    TokenInvalid,
    TokenRevoked,
    Unauthorized,
)
from auth.session import SessionManager
from auth.store import IdentityStore
from auth.tokens import TokenCodec

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "correct-secret"
ACCESS_TTL = 900
REFRESH_TTL = 7 * 24 * 60 * 60

# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


def test_first_login_bootstraps_admin(sessions, store):
    assert store.get_by_email(ADMIN_EMAIL) is None
    result = sessions.login(ADMIN_EMAIL, ADMIN_PASSWORD)
    identity = store.get_by_email(ADMIN_EMAIL)
    assert identity is not None
    assert result.user.id == identity.id
    assert result.user.role == "admin"
    assert result.user.last_login_at is not None
    assert identity.hashed_password != ADMIN_PASSWORD


def test_bootstrap_happens_once(sessions, store):
    first = sessions.login(ADMIN_EMAIL, ADMIN_PASSWORD)
    second = sessions.login(" Admin@Example.COM", ADMIN_PASSWORD)
    assert first.user.id == second.user.id


def test_login_issues_pair_with_configured_ttls(sessions, codec, store):
    result = sessions.login(ADMIN_EMAIL, ADMIN_PASSWORD)
    access = codec.verify_access(result.access_token)
    refresh = codec.verify_refresh(result.refresh_token)
    assert access["exp"] - access["iat"] == ACCESS_TTL
    assert refresh["exp"] - refresh["iat"] == REFRESH_TTL
    assert access["sub"] == str(result.user.id)
    assert [r.token for r in store.list_refresh_tokens(result.user.id)] == [result.refresh_token]


def test_profile_has_no_password_digest(sessions):
    result = sessions.login(ADMIN_EMAIL, ADMIN_PASSWORD)
    assert not hasattr(result.user, "hashed_password")


def test_wrong_email_and_wrong_password_fail_identically(sessions, admin):
    with pytest.raises(InvalidCredentials) as wrong_email:
        sessions.login("intruder@example.com", ADMIN_PASSWORD)
    with pytest.raises(InvalidCredentials) as wrong_password:
        sessions.login(ADMIN_EMAIL, "wrong-secret")
    assert type(wrong_email.value) is type(wrong_password.value)
    assert wrong_email.value.message == wrong_password.value.message == "Invalid email or password"
    assert wrong_email.value.status_code == wrong_password.value.status_code == 401


def test_short_wrong_password_is_invalid_credentials(sessions, admin):
    with pytest.raises(InvalidCredentials):
        sessions.login(ADMIN_EMAIL, "wrong")


def test_wrong_email_creates_no_identity(sessions, store):
    with pytest.raises(InvalidCredentials):
        sessions.login("intruder@example.com", ADMIN_PASSWORD)
    assert store.get_by_email("intruder@example.com") is None
    assert store.get_by_email(ADMIN_EMAIL) is None


def test_inactive_identity_cannot_login(sessions, store, admin):
    store.update_identity(admin.id, is_active=False)
    with pytest.raises(InvalidCredentials):
        sessions.login(ADMIN_EMAIL, ADMIN_PASSWORD)
    assert store.count_refresh_tokens(admin.id) == 0


def test_missing_admin_credentials_is_misconfigured(store, codec, settings):
    with pytest.raises(Misconfigured):
        SessionManager(store, codec, settings.model_copy(update={"admin_password": ""}))


# ---------------------------------------------------------------------------
# Rotation
# ---------------------------------------------------------------------------


def test_rotate_issues_new_pair_and_consumes_old(sessions, store):
    first = sessions.login(ADMIN_EMAIL, ADMIN_PASSWORD)
    second = sessions.rotate(first.refresh_token)
    assert second.refresh_token != first.refresh_token
    assert second.access_token != first.access_token
    assert [r.token for r in store.list_refresh_tokens(first.user.id)] == [second.refresh_token]


def test_rotated_token_cannot_be_reused(sessions):
    first = sessions.login(ADMIN_EMAIL, ADMIN_PASSWORD)
    sessions.rotate(first.refresh_token)
    with pytest.raises(TokenRevoked) as exc_info:
        sessions.rotate(first.refresh_token)
    assert exc_info.value.message == TokenInvalid.message


def test_rotate_rejects_access_token(sessions):
    result = sessions.login(ADMIN_EMAIL, ADMIN_PASSWORD)
    with pytest.raises(TokenInvalid):
        sessions.rotate(result.access_token)


def test_rotate_expired_token_reports_expiry(sessions, codec, store, admin):
    past = datetime.now(timezone.utc) - timedelta(seconds=REFRESH_TTL + 1)
    stale = codec.issue_refresh(admin, issued_at=past)
    store.add_refresh_token(admin.id, stale, created_at=past.timestamp())
    with pytest.raises(TokenExpired) as exc_info:
        sessions.rotate(stale)
    assert exc_info.value.message == "Session expired. Please login again."


def test_rotate_token_without_record_is_revoked(sessions, codec, admin):
    """A validly signed token that was never recorded is refused."""
    unrecorded = codec.issue_refresh(admin)
    with pytest.raises(TokenRevoked):
        sessions.rotate(unrecorded)


def test_rotate_for_inactive_identity_is_unauthorized(sessions, store):
    result = sessions.login(ADMIN_EMAIL, ADMIN_PASSWORD)
    store.update_identity(result.user.id, is_active=False)
    with pytest.raises(Unauthorized):
        sessions.rotate(result.refresh_token)


def test_concurrent_rotation_has_one_winner(tmp_path, settings):
    """Four callers presenting the same refresh token: one wins, the rest see TokenRevoked."""
    file_store = IdentityStore(f"sqlite:///{tmp_path / 'auth.db'}")
    manager = SessionManager(file_store, TokenCodec.from_settings(settings), settings)
    token = manager.login(ADMIN_EMAIL, ADMIN_PASSWORD).refresh_token

    barrier = threading.Barrier(4)
    wins, losses = [], []

    def attempt():
        barrier.wait()
        try:
            wins.append(manager.rotate(token))
        except TokenRevoked as exc:
            losses.append(exc)

    threads = [threading.Thread(target=attempt) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    try:
        assert len(wins) == 1
        assert len(losses) == 3
        identity_id = wins[0].user.id
        assert [r.token for r in file_store.list_refresh_tokens(identity_id)] == [wins[0].refresh_token]
    finally:
        file_store.close()


# ---------------------------------------------------------------------------
# Logout
# ---------------------------------------------------------------------------


def test_logout_removes_record_and_is_idempotent(sessions, store):
    result = sessions.login(ADMIN_EMAIL, ADMIN_PASSWORD)
    assert sessions.logout(result.refresh_token, result.user.id) is True
    assert sessions.logout(result.refresh_token, result.user.id) is False
    assert sessions.logout(None) is False
    with pytest.raises(TokenRevoked):
        sessions.rotate(result.refresh_token)


def test_logout_without_identity_uses_token_alone(sessions, store):
    result = sessions.login(ADMIN_EMAIL, ADMIN_PASSWORD)
    assert sessions.logout(result.refresh_token) is True
    assert store.count_refresh_tokens(result.user.id) == 0


def test_logout_only_drops_one_session(sessions, store):
    first = sessions.login(ADMIN_EMAIL, ADMIN_PASSWORD)
    second = sessions.login(ADMIN_EMAIL, ADMIN_PASSWORD)
    sessions.logout(first.refresh_token, first.user.id)
    assert [r.token for r in store.list_refresh_tokens(first.user.id)] == [second.refresh_token]


def test_logout_all_kills_every_refresh_token(sessions):
    first = sessions.login(ADMIN_EMAIL, ADMIN_PASSWORD)
    second = sessions.login(ADMIN_EMAIL, ADMIN_PASSWORD)
    assert sessions.logout_all(first.user.id) == 2
    for token in (first.refresh_token, second.refresh_token):
        with pytest.raises(TokenRevoked):
            sessions.rotate(token)


# ---------------------------------------------------------------------------
# Queries and maintenance
# ---------------------------------------------------------------------------


def test_get_profile(sessions, admin):
    profile = sessions.get_profile(admin.id)
    assert profile.email == ADMIN_EMAIL


def test_get_profile_missing_identity(sessions):
    with pytest.raises(NotFound):
        sessions.get_profile(12345)


def test_list_sessions_newest_first(sessions, store, admin):
    now = time.time()
    store.add_refresh_token(admin.id, "older", created_at=now - 100)
    store.add_refresh_token(admin.id, "newer", created_at=now)
    store.add_refresh_token(admin.id, "expired", created_at=now - REFRESH_TTL - 10)
    listed = sessions.list_sessions(admin.id)
    assert len(listed) == 2
    assert listed[0].created_at > listed[1].created_at
    assert listed[0].expires_at - listed[0].created_at == timedelta(seconds=REFRESH_TTL)


def test_cleanup_expired_tokens(sessions, store, admin):
    now = time.time()
    store.add_refresh_token(admin.id, "expired", created_at=now - REFRESH_TTL - 10)
    store.add_refresh_token(admin.id, "live", created_at=now)
    assert sessions.cleanup_expired_tokens() == 1
    assert [r.token for r in store.list_refresh_tokens(admin.id)] == ["live"]
