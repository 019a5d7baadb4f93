"""
auth/recaptcha.py -- Google reCAPTCHA v3 token verification.

Only called from POST /login when RECAPTCHA_ENABLED is set. Any transport
error, non-JSON body or unsuccessful verdict counts as a failed check.
"""

from __future__ import annotations

import logging

import requests

logger = logging.getLogger("authgate.auth")

SITEVERIFY_URL = "https://www.google.com/recaptcha/api/siteverify"

# Module-level session shared across calls for connection pooling.
_session = requests.Session()
_session.max_redirects = 3


def verify_recaptcha(secret_key: str, token: str, remote_ip: str | None = None) -> bool:
    """Return True if Google confirms the reCAPTCHA token."""
    data = {"secret": secret_key, "response": token}
    if remote_ip:
        data["remoteip"] = remote_ip
    try:
        resp = _session.post(SITEVERIFY_URL, data=data, timeout=10)
        resp.raise_for_status()
        verdict = resp.json()
    except (requests.RequestException, ValueError) as e:
        logger.warning("reCAPTCHA verification request failed: %s", e)
        return False
    return bool(verdict.get("success", False))
