"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for AdminGate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_secret -> JWT_SECRET). Type coercion and validation are built in.

  @model_validator(mode="after"): Cross-field policy. Dev mode (DEBUG=true)
      generates missing signing keys with a warning; production mode refuses
      to start without them.

Security notes:
  [K1] JWT_SECRET and JWT_REFRESH_SECRET shorter than 32 chars are rejected.
       HS256 signing relies on key entropy -- a short key weakens every token.

  [K2] The two secrets must differ. An access token must never verify under
       the refresh key, independent of the "type" claim check.

  [K3] ADMIN_PASSWORD is limited to 72 bytes. bcrypt rejects longer inputs,
       which would make the bootstrap login fail at runtime instead of startup.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("admingate.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'admingate_auth.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    environment: Literal["development", "test", "production"] = "production"
    log_level: str = "INFO"
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Token signing -- empty string is the "not configured" sentinel
    # ------------------------------------------------------------------

    jwt_secret: str = ""
    jwt_refresh_secret: str = ""
    access_token_expire_seconds: int = Field(default=15 * 60, gt=0)
    refresh_token_expire_seconds: int = Field(default=7 * 24 * 60 * 60, gt=0)

    # ------------------------------------------------------------------
    # Admin identity (bootstrapped on first login)
    # ------------------------------------------------------------------

    admin_email: str = "admin@example.com"
    admin_password: str = ""
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)

    # ------------------------------------------------------------------
    # Refresh-token cookie
    # ------------------------------------------------------------------

    refresh_cookie_name: str = "refreshToken"
    # None means "derive from environment" -- Secure only in production.
    secure_cookies: Optional[bool] = None

    # ------------------------------------------------------------------
    # Rate limiting -- thresholds are deployment configuration
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    login_rate_limit: str = "10 per 5 minutes"
    auth_rate_limit: str = "50 per 2 minutes"
    api_rate_limit: str = "1000 per 15 minutes"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    cors_origins: list[str] = ["http://localhost:3000"]
    allowed_hosts: list[str] = ["*"]

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    session_purge_interval_seconds: int = Field(default=6 * 60 * 60, gt=0)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("admin_email")
    @classmethod
    def normalize_admin_email(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("admin_password")
    @classmethod
    def check_admin_password_length(cls, value: str) -> str:
        if len(value.encode("utf-8")) > 72:  # [K3]
            raise ValueError("ADMIN_PASSWORD must be at most 72 bytes (bcrypt limit).")
        return value

    @model_validator(mode="after")
    def validate_signing_keys(self) -> "Settings":
        """Enforce signing-key policy [K1] [K2].

        Dev mode (DEBUG=true): auto-generate missing keys with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if either
            key is missing.
        """
        for field_name in ("jwt_secret", "jwt_refresh_secret"):
            value = getattr(self, field_name)
            if not value:
                if self.debug:
                    setattr(self, field_name, secrets.token_hex(32))
                    logger.warning(
                        "Using auto-generated %s. Sessions will not persist across restarts.",
                        field_name.upper(),
                    )
                else:
                    raise ValueError(
                        f"{field_name.upper()} is required in production mode. "
                        "Set it in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
            elif len(value) < 32:
                raise ValueError(f"{field_name.upper()} must be at least 32 characters.")
        if self.jwt_secret == self.jwt_refresh_secret:
            raise ValueError("JWT_SECRET and JWT_REFRESH_SECRET must be different.")
        if self.secure_cookies is None:
            self.secure_cookies = self.environment == "production"
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
