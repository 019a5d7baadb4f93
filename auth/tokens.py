"""
auth/tokens.py -- The session cookie wire format.

The cookie value carries a username hint next to the plaintext secret:

    $username=<username>,$value=<secret>

The username lets verification scan only that user's sessions instead of
every session in the store. No escaping is performed: <username> runs up to
the first comma and <secret> is the rest of the string. Usernames are
validated at creation time (auth.accounts) so they never contain a comma.
"""

from __future__ import annotations

import re

from auth.errors import TokenSyntaxError

_TOKEN_RE = re.compile(r"\$username=([^,]*),\$value=(.*)", re.DOTALL)


def encode_token(username: str, secret: str) -> str:
    return f"$username={username},$value={secret}"


def decode_token(token: str) -> tuple[str, str]:
    """Return (username, secret) from a cookie value.

    Raises TokenSyntaxError if the value does not have the two-field shape.
    """
    match = _TOKEN_RE.fullmatch(token)
    if match is None:
        raise TokenSyntaxError("cookie value is not a valid session token")
    return match.group(1), match.group(2)
