"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for authgate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. cookie_secure -> COOKIE_SECURE). Type coercion and validation are
      built in.

  @model_validator(mode="after"): Cross-field checks that must hold before the
      server starts: reCAPTCHA needs both keys, LDAP needs a URL, TLS needs
      readable cert and key files, and the cookie lifetime must be positive.

Layer rule: core/ may not import from api/ or auth/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authgate.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'authgate.db'}"


def _check_readable(path: str, label: str) -> None:
    try:
        with open(path, "rb"):
            pass
    except OSError as e:
        raise ValueError(f"{label} at '{path}' does not exist or is not readable: {e}") from e


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
    db_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Server
    # ------------------------------------------------------------------

    listen_address: str = "127.0.0.1"
    listen_port: int = 17397
    # Domain attribute of issued cookies and the TOTP issuer name.
    domain: str = "localhost"

    tls_enabled: bool = False
    tls_listen_port: int = 17760
    tls_cert_path: str = ""
    tls_key_path: str = ""

    # ------------------------------------------------------------------
    # Cookies
    # ------------------------------------------------------------------

    cookie_name: str = "Authgate-Token"
    cookie_lifetime_days: int = 7
    cookie_secure: bool = False

    # ------------------------------------------------------------------
    # Login protection
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"

    recaptcha_enabled: bool = False
    recaptcha_site_key: str = ""
    recaptcha_secret_key: str = ""

    # ------------------------------------------------------------------
    # Directory login
    # ------------------------------------------------------------------

    # Usernames with no local account are checked by binding as
    # CN=<username>,ou=<LDAP_ORGANIZATIONAL_UNIT>,<LDAP_DOMAIN_COMPONENTS>.
    ldap_enabled: bool = False
    ldap_url: str = ""
    ldap_organizational_unit: str = "users"
    ldap_domain_components: str = ""

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_settings(self) -> "Settings":
        if self.cookie_lifetime_days <= 0:
            raise ValueError("COOKIE_LIFETIME_DAYS must be a positive number of days.")
        if self.recaptcha_enabled and not (self.recaptcha_site_key and self.recaptcha_secret_key):
            raise ValueError("RECAPTCHA_ENABLED requires RECAPTCHA_SITE_KEY and RECAPTCHA_SECRET_KEY.")
        if self.ldap_enabled and not self.ldap_url:
            raise ValueError("LDAP_ENABLED requires LDAP_URL.")
        if self.tls_enabled:
            _check_readable(self.tls_cert_path, "TLS certificate")
            _check_readable(self.tls_key_path, "TLS key")
        if not self.cookie_secure and not self.debug:
            logger.warning("COOKIE_SECURE is off -- session cookies will be sent over plain HTTP.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
