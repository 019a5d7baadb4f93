"""
tests/test_config.py -- Settings defaults and startup validation.

Covers:
  - defaults match the documented ports, cookie name and lifetime
  - environment variables override defaults
  - model_validator rejects inconsistent configuration (reCAPTCHA, LDAP, TLS)
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from core.config import Settings


def test_defaults(monkeypatch) -> None:
    for var in ("LISTEN_PORT", "DOMAIN", "COOKIE_NAME", "COOKIE_LIFETIME_DAYS"):
        monkeypatch.delenv(var, raising=False)
    s = Settings(_env_file=None)
    assert s.listen_address == "127.0.0.1"
    assert s.listen_port == 17397
    assert s.tls_listen_port == 17760
    assert s.domain == "localhost"
    assert s.cookie_name == "Authgate-Token"
    assert s.cookie_lifetime_days == 7
    assert s.recaptcha_enabled is False


def test_environment_overrides(monkeypatch) -> None:
    monkeypatch.setenv("DOMAIN", "example.test")
    monkeypatch.setenv("COOKIE_SECURE", "true")
    monkeypatch.setenv("LISTEN_PORT", "8080")
    s = Settings(_env_file=None)
    assert s.domain == "example.test"
    assert s.cookie_secure is True
    assert s.listen_port == 8080


def test_lifetime_must_be_positive() -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, cookie_lifetime_days=0)


def test_recaptcha_needs_both_keys() -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, recaptcha_enabled=True, recaptcha_site_key="only-site")


def test_tls_needs_readable_files(tmp_path) -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, tls_enabled=True, tls_cert_path=str(tmp_path / "missing.pem"))


def test_tls_with_files(tmp_path) -> None:
    cert = tmp_path / "cert.pem"
    key = tmp_path / "key.pem"
    cert.write_text("cert")
    key.write_text("key")
    s = Settings(_env_file=None, tls_enabled=True, tls_cert_path=str(cert), tls_key_path=str(key))
    assert s.tls_enabled is True


def test_default_database_lives_next_to_the_code(monkeypatch) -> None:
    monkeypatch.delenv("DB_URL", raising=False)
    s = Settings(_env_file=None)
    assert s.db_url.startswith("sqlite:///")
    assert s.db_url.endswith("authgate.db")


def test_ldap_needs_url() -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, ldap_enabled=True)


def test_ldap_settings() -> None:
    s = Settings(
        _env_file=None,
        ldap_enabled=True,
        ldap_url="ldap://ldap.example.test",
        ldap_domain_components="dc=example,dc=test",
    )
    assert s.ldap_organizational_unit == "users"
    assert s.ldap_domain_components == "dc=example,dc=test"
