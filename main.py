#!/usr/bin/env python3
"""
authgate -- Session authentication server for nginx auth_request.

Usage:
  python main.py run
  python main.py user add --username alice
  python main.py user add --username alice --otp
  python main.py user remove --username alice
  python main.py user list
  python main.py cookie list
  python main.py cookie list --username alice
  python main.py cookie remove --username alice
  python main.py cookie purge

Configuration comes from the environment or a .env file (see core/config.py).
The CLI works on the same database as the running server. Sessions revoked
here stop verifying on the server immediately: the server confirms every
cache hit against the store.
"""

from __future__ import annotations

import argparse
import getpass
import json
import logging
import sys
from typing import Optional

from auth.accounts import create_user, generate_password, remove_user
from auth.cache import SessionCache
from auth.errors import AuthError
from auth.sessions import SessionManager
from auth.store import AuthStore
from core.config import Settings, get_settings

logger = logging.getLogger("authgate.cli")


def _open(settings: Settings) -> tuple[AuthStore, SessionManager]:
    # Deferred import: api.main builds the FastAPI app at import time.
    from api.main import build_session_manager

    store = AuthStore(settings.db_url)
    return store, build_session_manager(settings, store, SessionCache())


def _prompt_password() -> str:
    """Ask twice; an empty answer means 'generate one for me'."""
    password = getpass.getpass("Password (leave empty to generate): ")
    if not password:
        return ""
    if getpass.getpass("Repeat password: ") != password:
        raise SystemExit("  [!] Passwords do not match.")
    return password


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_run(settings: Settings, args: argparse.Namespace) -> int:
    import uvicorn

    if settings.tls_enabled:
        logger.info("listening and serving HTTPS on %s:%d", settings.listen_address, settings.tls_listen_port)
        uvicorn.run(
            "asgi:app",
            host=settings.listen_address,
            port=settings.tls_listen_port,
            ssl_certfile=settings.tls_cert_path,
            ssl_keyfile=settings.tls_key_path,
        )
    else:
        logger.info("listening and serving HTTP on %s:%d", settings.listen_address, settings.listen_port)
        uvicorn.run("asgi:app", host=settings.listen_address, port=settings.listen_port)
    return 0


def cmd_user_add(settings: Settings, args: argparse.Namespace) -> int:
    store, sessions = _open(settings)
    try:
        password = args.password if args.password is not None else _prompt_password()
        if not password:
            password = generate_password()
            print(f"No password given, generated password for user '{args.username}': '{password}'")
        _user, otp_secret, otp_uri = create_user(
            store, sessions.codec, args.username, password, otp=args.otp, issuer=settings.domain
        )
    finally:
        store.close()
    if otp_secret:
        print(f"TOTP secret key for user '{args.username}': '{otp_secret}'")
        print(f"TOTP URL for user '{args.username}': '{otp_uri}'")
    print(f"User '{args.username}' successfully created.")
    return 0


def cmd_user_remove(settings: Settings, args: argparse.Namespace) -> int:
    store, sessions = _open(settings)
    try:
        removed = remove_user(store, sessions, args.username)
    finally:
        store.close()
    print(f"User '{args.username}' has been removed ({removed} session(s) deleted).")
    return 0


def cmd_user_list(settings: Settings, args: argparse.Namespace) -> int:
    store, _sessions = _open(settings)
    try:
        users = store.list_users()
    finally:
        store.close()
    print(f"The database contains {len(users)} user(s).")
    if users:
        rows = [{"username": u.username, "totp": u.otp_enabled, "created_at": u.created_at} for u in users]
        print(json.dumps(rows, indent=2))
    return 0


def cmd_cookie_list(settings: Settings, args: argparse.Namespace) -> int:
    store, sessions = _open(settings)
    try:
        cookies = sessions.list_sessions(args.username)
    finally:
        store.close()
    print(f"The database contains {len(cookies)} cookie(s).")
    if cookies:
        rows = [
            {"username": c.username, "domain": c.domain, "expires": c.expires.isoformat(), "secure": c.secure}
            for c in cookies
        ]
        print(json.dumps(rows, indent=2))
    return 0


def cmd_cookie_remove(settings: Settings, args: argparse.Namespace) -> int:
    store, sessions = _open(settings)
    try:
        removed = sessions.revoke_all(args.username)
    finally:
        store.close()
    print(f"Removed {removed} cookie(s) for user '{args.username}'.")
    return 0


def cmd_cookie_purge(settings: Settings, args: argparse.Namespace) -> int:
    store, sessions = _open(settings)
    try:
        removed = sessions.purge_all()
    finally:
        store.close()
    print(f"Purged {removed} cookie(s).")
    return 0


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="authgate",
        description="Session authentication server for nginx auth_request.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py run
  python main.py user add -u alice --otp
  python main.py cookie list -u alice
  python main.py cookie purge
        """,
    )
    commands = parser.add_subparsers(dest="command", metavar="COMMAND")

    run = commands.add_parser("run", help="Run the authentication server")
    run.set_defaults(handler=cmd_run)

    user = commands.add_parser("user", aliases=["u"], help="User management")
    user_commands = user.add_subparsers(dest="user_command", metavar="ACTION")
    user_add = user_commands.add_parser("add", aliases=["a"], help="Add a new user")
    user_add.add_argument("--username", "-u", required=True)
    user_add.add_argument("--otp", "-o", action="store_true", help="Enable TOTP for this user")
    # Non-interactive password, for provisioning scripts. Prompted for when omitted.
    user_add.add_argument("--password", default=None, help=argparse.SUPPRESS)
    user_add.set_defaults(handler=cmd_user_add)
    user_remove = user_commands.add_parser("remove", aliases=["r"], help="Remove a user and their cookies")
    user_remove.add_argument("--username", "-u", required=True)
    user_remove.set_defaults(handler=cmd_user_remove)
    user_list = user_commands.add_parser("list", aliases=["l"], help="List all users")
    user_list.set_defaults(handler=cmd_user_list)

    cookie = commands.add_parser("cookie", aliases=["c"], help="Cookie (session) management")
    cookie_commands = cookie.add_subparsers(dest="cookie_command", metavar="ACTION")
    cookie_list = cookie_commands.add_parser("list", aliases=["l"], help="List cookies")
    cookie_list.add_argument("--username", "-u", default=None, help="Filter cookies by username")
    cookie_list.set_defaults(handler=cmd_cookie_list)
    cookie_remove = cookie_commands.add_parser("remove", aliases=["r"], help="Remove all cookies of a user")
    cookie_remove.add_argument("--username", "-u", required=True)
    cookie_remove.set_defaults(handler=cmd_cookie_remove)
    cookie_purge = cookie_commands.add_parser("purge", aliases=["p"], help="Remove every cookie")
    cookie_purge.set_defaults(handler=cmd_cookie_purge)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    parser = build_parser()
    args = parser.parse_args(argv)
    handler = getattr(args, "handler", None)
    if handler is None:
        parser.print_help()
        return 1

    try:
        return handler(get_settings(), args)
    except AuthError as e:
        print(f"  [!] {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
