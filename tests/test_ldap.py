"""Unit tests for auth/ldap.py -- the directory simple-bind check.

ldap3's Connection is replaced with a recording fake, so no server is
needed. Covers the bind DN layout, accepted and rejected binds, transport
failures, and the empty-password refusal.
"""

from __future__ import annotations

import logging

import pytest
from ldap3.core.exceptions import LDAPSocketOpenError

from auth.ldap import LDAPDirectory


class FakeConnection:
    """Stands in for ldap3.Connection; accepts one fixed password."""

    instances: list["FakeConnection"] = []
    accepted_password = "directory-pass"
    fail_with: Exception | None = None

    def __init__(self, server, user=None, password=None, **kwargs) -> None:
        self.server = server
        self.user = user
        self.password = password
        self.bound = False
        self.unbound = False
        FakeConnection.instances.append(self)

    def bind(self) -> bool:
        if FakeConnection.fail_with is not None:
            raise FakeConnection.fail_with
        self.bound = self.password == FakeConnection.accepted_password
        return self.bound

    def unbind(self) -> bool:
        self.unbound = True
        self.bound = False
        return True


@pytest.fixture
def directory(monkeypatch) -> LDAPDirectory:
    FakeConnection.instances = []
    FakeConnection.fail_with = None
    monkeypatch.setattr("auth.ldap.Connection", FakeConnection)
    return LDAPDirectory("ldap://ldap.example.test", "users", "dc=example,dc=test")


def test_user_dn_layout(directory: LDAPDirectory) -> None:
    assert directory.user_dn("carol") == "CN=carol,ou=users,dc=example,dc=test"


def test_user_dn_escapes_special_characters(directory: LDAPDirectory) -> None:
    assert directory.user_dn("a,b").startswith("CN=a\\,b,ou=users")


def test_accepted_bind(directory: LDAPDirectory) -> None:
    assert directory.bind("carol", "directory-pass") is True
    conn = FakeConnection.instances[-1]
    assert conn.user == "CN=carol,ou=users,dc=example,dc=test"
    assert conn.unbound is True


def test_rejected_bind(directory: LDAPDirectory) -> None:
    assert directory.bind("carol", "wrong") is False
    assert FakeConnection.instances[-1].unbound is False


def test_unreachable_server_is_a_failed_check(directory: LDAPDirectory, caplog) -> None:
    FakeConnection.fail_with = LDAPSocketOpenError("unable to open socket")
    with caplog.at_level(logging.WARNING, logger="authgate.auth"):
        assert directory.bind("carol", "directory-pass") is False
    assert "LDAP bind request" in caplog.text


@pytest.mark.parametrize("username, password", [("carol", ""), ("", "directory-pass")])
def test_empty_credentials_never_reach_the_server(directory: LDAPDirectory, username: str, password: str) -> None:
    assert directory.bind(username, password) is False
    assert FakeConnection.instances == []
