"""
api/routes/gateway.py -- The endpoints nginx and the login page talk to.

Routes:
  GET  /auth     -- auth_request subrequest target: 200 if the cookie verifies, else 401
  GET  /login    -- redirect to ?callback= when already logged in, else login form data
  POST /login    -- password (+ TOTP, + reCAPTCHA) login; sets the session cookie
                    (falls back to an LDAP bind for usernames with no local account)
  GET  /logout   -- revokes the current session and expires the cookie
  GET  /whoami   -- {"username": ...} for the current session

Security:
  Every authentication failure is the same bare 401. Whether the user exists,
  the password was wrong, the TOTP code was wrong, or the session expired is
  written to the auth log only.
  POST /login is rate-limited per client IP (LOGIN_RATE_LIMIT).
  Cache-Control: no-store on every login response.
  ?callback= only redirects to a relative path or to a host under DOMAIN.

Handlers are plain `def` so FastAPI runs them in its thread pool: the Argon2
work in verification and login must not block the event loop.
"""

from __future__ import annotations

import logging
from urllib.parse import urlparse

from fastapi import APIRouter, HTTPException, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse

from api.limiter import limiter
from api.models import LoginFormResponse, LoginRequest, LoginResponse, MessageResponse, WhoamiResponse
from auth.accounts import authenticate, authenticate_directory
from auth.errors import AuthenticationFailed, ExpiredError, ValidationError
from auth.models import Session
from auth.recaptcha import verify_recaptcha
from auth.sessions import SessionManager
from auth.tokens import encode_token
from core.config import Settings, get_settings

logger = logging.getLogger("authgate.auth")

router = APIRouter()


def _login_rate_limit() -> str:
    return get_settings().login_rate_limit


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"code": "unauthorized", "message": "Authentication required."},
    )


def _client_ip(request: Request) -> str:
    """Real client address as forwarded by nginx, or the peer address."""
    forwarded = request.headers.get("X-Original-Remote-Addr", "")
    if forwarded:
        return forwarded
    return request.client.host if request.client else "unknown"


def _current_session(request: Request) -> Session | None:
    """Verify the session cookie on the request. Returns None on any auth failure."""
    settings: Settings = request.app.state.settings
    sessions: SessionManager = request.app.state.sessions
    token = request.cookies.get(settings.cookie_name)
    if not token:
        return None
    try:
        return sessions.verify(token)
    except ExpiredError:
        logger.info("expired session presented from %s", _client_ip(request))
        return None
    except (AuthenticationFailed, ValidationError):
        return None


def _safe_callback(callback: str, domain: str) -> str:
    """Return callback if it is relative or points at DOMAIN (or a subdomain); '/' otherwise."""
    if not callback:
        return "/"
    parsed = urlparse(callback)
    if not parsed.scheme and not parsed.netloc:
        return callback if callback.startswith("/") and not callback.startswith("//") else "/"
    if parsed.scheme not in ("http", "https"):
        return "/"
    host = (parsed.hostname or "").lower()
    domain = domain.lower().lstrip(".")
    if host == domain or host.endswith("." + domain):
        return callback
    return "/"


def _no_store(resp: Response) -> Response:
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# nginx auth_request
# ---------------------------------------------------------------------------


@router.get("/auth")
def auth_check(request: Request) -> Response:
    """200 when the session cookie verifies, 401 otherwise. No body either way."""
    if _current_session(request) is None:
        return Response(status_code=401)
    return Response(status_code=200)


# ---------------------------------------------------------------------------
# Login / logout
# ---------------------------------------------------------------------------


@router.get("/login", response_model=LoginFormResponse)
def login_form(request: Request, callback: str = ""):
    """Skip the form for users who already hold a valid session."""
    settings: Settings = request.app.state.settings
    if _current_session(request) is not None:
        return RedirectResponse(_safe_callback(callback, settings.domain), status_code=302)
    return LoginFormResponse(
        recaptcha_enabled=settings.recaptcha_enabled,
        recaptcha_site_key=settings.recaptcha_site_key if settings.recaptcha_enabled else "",
    )


@limiter.limit(_login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate and set the session cookie.

    A request that already carries a valid session gets 200 without a new
    cookie. The response body carries the expiry so the login page can show
    how long the session lasts.
    """
    settings: Settings = request.app.state.settings
    sessions: SessionManager = request.app.state.sessions
    client_ip = _client_ip(request)

    existing = _current_session(request)
    if existing is not None:
        content = LoginResponse(expires=int(existing.expires.timestamp() * 1000)).model_dump()
        return _no_store(JSONResponse(status_code=200, content=content))

    if settings.recaptcha_enabled:
        if not body.recaptcha_token:
            raise HTTPException(
                status_code=400,
                detail={"code": "recaptcha_missing", "message": "reCAPTCHA token required."},
            )
        if not verify_recaptcha(settings.recaptcha_secret_key, body.recaptcha_token, client_ip):
            logger.info("reCAPTCHA rejected for '%s' from %s", body.username, client_ip)
            raise _unauthorized()

    store = request.app.state.store
    user = authenticate(store, sessions.codec, body.username, body.password, body.totp)
    if user is not None:
        session, plain_value = sessions.issue(user.username)
    elif authenticate_directory(store, request.app.state.directory, body.username, body.password):
        session, plain_value = sessions.issue(body.username, verified_external=True)
        logger.info("LDAP user '%s' authenticated from %s", body.username, client_ip)
    else:
        logger.info("rejected login for '%s' from %s", body.username, client_ip)
        raise _unauthorized()

    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(expires=int(session.expires.timestamp() * 1000)).model_dump(),
    )
    resp.set_cookie(
        session.name,
        value=encode_token(session.username, plain_value),
        expires=session.expires,
        domain=session.domain,
        httponly=session.http_only,
        secure=session.secure,
        samesite="lax",
    )
    logger.info("user '%s' logged in from %s", session.username, client_ip)
    return _no_store(resp)


@router.get("/logout", response_model=MessageResponse)
def logout(request: Request) -> JSONResponse:
    """Revoke the presented session and expire the cookie in the browser."""
    sessions: SessionManager = request.app.state.sessions
    session = _current_session(request)
    if session is None:
        raise _unauthorized()

    sessions.revoke(session)
    resp = JSONResponse(content=MessageResponse(message="user successfully logged out").model_dump())
    resp.delete_cookie(
        session.name,
        domain=session.domain,
        httponly=session.http_only,
        secure=session.secure,
        samesite="lax",
    )
    logger.info("user '%s' logged out from %s", session.username, _client_ip(request))
    return _no_store(resp)


@router.get("/whoami", response_model=WhoamiResponse)
def whoami(request: Request) -> WhoamiResponse:
    session = _current_session(request)
    if session is None:
        raise _unauthorized()
    return WhoamiResponse(username=session.username)
