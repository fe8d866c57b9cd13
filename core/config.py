"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the auth service happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. database_url -> DATABASE_URL). Type coercion and validation are
      built in.

What is NOT configurable here:
  The token namespace (aud/iss) and the 1-hour token lifetime are constants in
  auth/tokens.py. The issuer and every verifier must agree on them, so they
  are not allowed to drift per deployment.

  Signing keys and the session secret live in the database (settings table),
  written by `python main.py keys generate`. They are never read from env.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authservice.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'authservice.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
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
    log_level: str = "INFO"
    # SQLite for standalone use; point at the Wiki.js Postgres database
    # (postgresql+psycopg2://...) to share its users and signing keys.
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Cookie (deployment concerns -- HttpOnly and SameSite are fixed)
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    # ".example.com" to share the jwt cookie across subdomains.
    cookie_domain: Optional[str] = None

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    allowed_hosts: list[str] = ["*"]
    cors_origins: list[str] = []

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_deployment(self) -> "Settings":
        """Reject an empty DATABASE_URL; warn about plain-HTTP cookies in production.

        An empty URL would make SQLAlchemy fail much later with a confusing
        error. Insecure cookies are legitimate behind a TLS-terminating proxy
        on localhost, so that case is a warning, not an error.
        """
        if not self.database_url.strip():
            raise ValueError("DATABASE_URL must not be empty.")
        if not self.debug and not self.secure_cookies:
            logger.warning("SECURE_COOKIES is off -- the jwt cookie will also be sent over plain HTTP.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
