"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for AppGate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): dev mode generates a session secret with a
      warning, production mode refuses to start without one.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or notify/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("appgate.config")

_DATA_DIR = Path(__file__).resolve().parent.parent / "data"
_DEFAULT_DB_URL = f"sqlite:///{_DATA_DIR / 'appgate.db'}"
_DEFAULT_CATALOG = Path(__file__).resolve().parent / "apps.json"


def _split_csv(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


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
    # Empty string is the sentinel for "not configured".
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL
    apps_catalog_path: str = str(_DEFAULT_CATALOG)
    public_base_url: str = "http://localhost:8000"

    # ------------------------------------------------------------------
    # Sessions and cookies
    # ------------------------------------------------------------------

    session_cookie: str = "appgate.sid"
    session_max_age: int = 7 * 24 * 3600
    secure_cookies: bool = False
    cookie_domain: str = ""
    cors_allow_origins: str = ""
    allowed_hosts: str = "*"

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    reset_rate_limit: str = "5/minute"

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    temporary_password_length: int = 16
    # Bootstrap admin. Both empty means no seeding at startup.
    admin_email: str = ""
    admin_password: str = ""

    # ------------------------------------------------------------------
    # Mail
    # ------------------------------------------------------------------

    mail_enabled: bool = False
    mail_host: str = "localhost"
    mail_port: int = 587
    mail_use_tls: bool = False
    mail_start_tls: bool = True
    mail_username: str = ""
    mail_password: str = ""
    mail_from: str = "AppGate <no-reply@localhost>"
    mail_admin_recipients: str = ""
    mail_timeout: float = 10.0

    @property
    def cors_origins(self) -> list[str]:
        return _split_csv(self.cors_allow_origins)

    @property
    def admin_recipients(self) -> list[str]:
        return _split_csv(self.mail_admin_recipients)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy used for session cookie signing.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Sessions will not survive restart.

        Production mode: refuse to start if SECRET_KEY is missing, since
            every restart would silently sign everybody out.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Sessions will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if self.temporary_password_length < 12:
            raise ValueError("TEMPORARY_PASSWORD_LENGTH must be at least 12.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
