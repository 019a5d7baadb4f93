"""
auth/ldap.py -- Directory (LDAP) password check by simple bind.

Used only when LDAP_ENABLED is set, and only for usernames that have no
local account. A successful bind as CN=<username>,ou=<OU>,<DCs> is the whole
check: no search, no group lookup, no attributes read.

Any transport or protocol error counts as a failed check. An empty password
is refused before connecting, since many servers accept it as an
unauthenticated bind.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging

from ldap3 import NONE, Connection, Server
from ldap3.core.exceptions import LDAPException
from ldap3.utils.dn import escape_rdn

logger = logging.getLogger("authgate.auth")


class LDAPDirectory:
    """Checks username/password pairs against one LDAP server.

    Usage:
        directory = LDAPDirectory("ldap://ldap.example.test", "users", "dc=example,dc=test")
        directory.bind("alice", "secret")   # True / False
    """

    def __init__(self, url: str, organizational_unit: str, domain_components: str, timeout: int = 10) -> None:
        self.url = url
        self.organizational_unit = organizational_unit
        self.domain_components = domain_components
        self.timeout = timeout

    def user_dn(self, username: str) -> str:
        return f"CN={escape_rdn(username)},ou={self.organizational_unit},{self.domain_components}"

    def bind(self, username: str, password: str) -> bool:
        """Return True if the server accepts a simple bind with these credentials."""
        if not username or not password:
            return False
        conn = None
        try:
            server = Server(self.url, connect_timeout=self.timeout, get_info=NONE)
            conn = Connection(server, user=self.user_dn(username), password=password, receive_timeout=self.timeout)
            return bool(conn.bind())
        except LDAPException as e:
            logger.warning("LDAP bind request to %s failed: %s", self.url, e)
            return False
        finally:
            if conn is not None and conn.bound:
                conn.unbind()
