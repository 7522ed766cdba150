#!/usr/bin/env python3
"""
Config Studio -- admin CLI for the auth subsystem.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8080
  python main.py create-user alice --role admin --email alice@example.com
  python main.py list-users
  python main.py reset-password alice
  python main.py sweep-sessions

Every command reads the same environment as the API (AUTH_DIR,
STORAGE_BACKEND, ADMIN_PASSWORD, ...). Passwords are always prompted for,
never taken from argv, so they do not end up in shell history.
"""

import argparse
import asyncio
import getpass
import logging
import sys

from auth.errors import AuthError, DuplicateUsername, PasswordPolicyError
from auth.factory import AuthServices, create_auth_services
from auth.models import ROLE_USER, ROLES
from core.config import get_settings

logger = logging.getLogger("configstudio.cli")


def _prompt_password() -> str:
    """Prompt twice for a new password. Returns "" when the entries differ."""
    first = getpass.getpass("  New password: ")
    second = getpass.getpass("  Repeat password: ")
    if first != second:
        print("  [!] Passwords do not match.")
        return ""
    return first


async def _with_services(action) -> int:
    services = await create_auth_services(get_settings())
    try:
        return await action(services)
    finally:
        services.close()


async def _create_user(services: AuthServices, username: str, password: str, role: str, email: str | None) -> int:
    try:
        view = await services.sessions.create_user(username, password, email=email, role=role)
    except DuplicateUsername:
        print(f"  [!] User '{username}' already exists.")
        return 1
    except PasswordPolicyError as e:
        print(f"  [!] {e}")
        return 1
    print(f"  Created {view.role} '{view.username}' ({view.id}).")
    return 0


async def _list_users(services: AuthServices) -> int:
    users = services.sessions.list_users()
    if not users:
        print("  No users.")
        return 0
    print(f"  {'USERNAME':<24} {'ROLE':<6} {'LAST LOGIN':<20} ID")
    for u in users:
        last = u.last_login.strftime("%Y-%m-%d %H:%M:%S") if u.last_login else "never"
        flag = "  (password change required)" if u.password_change_required else ""
        print(f"  {u.username:<24} {u.role:<6} {last:<20} {u.id}{flag}")
    return 0


async def _reset_password(services: AuthServices, username: str, password: str) -> int:
    user = services.sessions.find_user_by_username(username)
    if user is None:
        print(f"  [!] No user named '{username}'.")
        return 1
    try:
        await services.sessions.reset_password(user.id, password)
    except PasswordPolicyError as e:
        print(f"  [!] {e}")
        return 1
    print(f"  Password reset for '{username}'. All of its sessions were revoked.")
    return 0


async def _sweep_sessions(services: AuthServices) -> int:
    removed = await services.sessions.cleanup_expired_sessions()
    print(f"  {removed} expired session(s) removed.")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="config-studio",
        description="Manage Config Studio users, sessions and the auth API.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve --port 8000
  python main.py create-user alice --role admin
  python main.py reset-password admin
  AUTH_DIR=/tmp/auth python main.py list-users
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Restart on source changes (development only)")

    create = sub.add_parser("create-user", help="Create a local account")
    create.add_argument("username")
    create.add_argument("--role", choices=sorted(ROLES), default=ROLE_USER, help="Account role (default: user)")
    create.add_argument("--email", default=None, help="Optional contact email")

    sub.add_parser("list-users", help="List every account")

    reset = sub.add_parser("reset-password", help="Set a new password without the current one")
    reset.add_argument("username")

    sub.add_parser("sweep-sessions", help="Delete expired sessions now")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return

    logging.basicConfig(
        level=logging.DEBUG if get_settings().debug else logging.WARNING,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if args.command == "serve":
        import uvicorn

        uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)
        return

    print("\nConfig Studio -- Auth Admin")
    print("-" * 40)

    if args.command == "create-user":
        password = _prompt_password()
        if not password:
            sys.exit(1)
        code = asyncio.run(
            _with_services(lambda s: _create_user(s, args.username, password, args.role, args.email))
        )
    elif args.command == "list-users":
        code = asyncio.run(_with_services(_list_users))
    elif args.command == "reset-password":
        password = _prompt_password()
        if not password:
            sys.exit(1)
        code = asyncio.run(_with_services(lambda s: _reset_password(s, args.username, password)))
    else:
        code = asyncio.run(_with_services(_sweep_sessions))

    if code:
        sys.exit(code)


if __name__ == "__main__":
    try:
        main()
    except AuthError as e:
        logger.error("%s", e)
        print(f"  [!] {e}")
        sys.exit(1)
