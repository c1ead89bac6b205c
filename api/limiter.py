"""
api/limiter.py -- Shared slowapi rate limiter instance.

Imported by api/main.py (mounted as middleware, default API-wide limit) and
api/routes/v1/auth.py (stricter per-route limits with @limiter.limit()).

One shared instance means one in-memory counter store. Thresholds come from
Settings so each deployment tunes them; RATE_LIMIT_ENABLED=false turns the
limiter off entirely (local development, tests).
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

_settings = get_settings()

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
    enabled=_settings.rate_limit_enabled,
    default_limits=[_settings.api_rate_limit],
)


def login_limit() -> str:
    return get_settings().login_rate_limit


def auth_limit() -> str:
    return get_settings().auth_rate_limit
