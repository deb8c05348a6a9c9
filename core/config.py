"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for ShareNote happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY, admin_user_ids -> ADMIN_USER_IDS).

  @model_validator(mode="after"): Applies the signing-key policy once every
      field has been resolved.

Security notes:
  [K1] A missing SECRET_KEY falls back to a fixed development key so a fresh
       checkout starts without configuration. Every deployment MUST override
       it: anyone who knows the default can mint session tokens. A warning is
       logged on every startup while the default is active.

  [K2] An explicitly configured SECRET_KEY shorter than 32 chars is rejected
       outright. JWT signing relies on key entropy.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
notes/, or kv/.
"""

import logging
from functools import lru_cache
from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("sharenote.config")

# Fixed development signing key [K1]. Public by definition -- never rely on it.
DEV_SECRET_KEY = "sharenote-development-signing-key-change-me"


def _split_csv(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. List-valued settings are stored as
    comma-separated strings and exposed through parsed properties, so operators
    can write ADMIN_USER_IDS=abc,def instead of JSON.
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
    secret_key: str = ""

    # ------------------------------------------------------------------
    # Sessions and passwords
    # ------------------------------------------------------------------

    # None means "secure in production": resolved to (not debug) below.
    secure_cookies: Optional[bool] = None
    token_expire_seconds: int = 7 * 24 * 3600
    note_access_expire_seconds: int = 3600
    bcrypt_rounds: int = 12

    # ------------------------------------------------------------------
    # Key-value store
    # ------------------------------------------------------------------

    # sqlite:///... selects the SQL-backed store, redis://... the Redis store.
    store_url: str = "sqlite:///./sharenote_kv.db"
    store_timeout_seconds: float = 5.0

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    admin_user_ids: str = ""

    # ------------------------------------------------------------------
    # Email delivery (empty SMTP_HOST = log-only development mailer)
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_starttls: bool = True
    email_from: str = "noreply@example.com"
    email_from_name: str = "ShareNote"

    # ------------------------------------------------------------------
    # External collaborators
    # ------------------------------------------------------------------

    moderation_api_url: str = "https://api.yaohud.cn/api/v5/weijin"
    moderation_api_key: str = ""
    local_banned_terms: str = ""
    quote_api_url: str = "https://cn.apihz.cn/api/yiyan/api.php"
    quote_api_key: str = ""
    collaborator_timeout_seconds: float = 10.0

    # ------------------------------------------------------------------
    # HTTP surface
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    login_rate_limit: str = "10/minute"
    verification_rate_limit: str = "5/minute"
    allowed_hosts: str = "localhost,127.0.0.1,*.localhost"
    cors_origins: str = "http://localhost,http://localhost:3000,http://127.0.0.1"

    # ------------------------------------------------------------------
    # Parsed views
    # ------------------------------------------------------------------

    @property
    def admin_ids(self) -> frozenset[str]:
        return frozenset(_split_csv(self.admin_user_ids))

    @property
    def banned_terms(self) -> list[str]:
        return _split_csv(self.local_banned_terms)

    @property
    def allowed_host_list(self) -> list[str]:
        return _split_csv(self.allowed_hosts)

    @property
    def cors_origin_list(self) -> list[str]:
        return _split_csv(self.cors_origins)

    @property
    def cookies_secure(self) -> bool:
        if self.secure_cookies is None:
            return not self.debug
        return self.secure_cookies

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Apply the signing-key policy [K1][K2].

        Missing key: fall back to DEV_SECRET_KEY and warn loudly. Sessions
            signed with it survive restarts but are forgeable by anyone who
            has read this file.

        Explicit key: must be at least 32 characters.
        """
        if not self.secret_key:
            self.secret_key = DEV_SECRET_KEY
            logger.warning(
                "WARNING: SECRET_KEY is not set; using the built-in development key. "
                "Set SECRET_KEY before deploying."
            )
        elif len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
