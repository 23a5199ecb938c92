#!/usr/bin/env python3
"""
BlueInk API -- command-line entry point.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8000
  python main.py serve --reload
  python main.py init-db
  python main.py create-admin admin@example.com
  python main.py create-admin admin@example.com --password 's3cret-pass'

Environment variables are read through core.config (SECRET_KEY, DATABASE_URL,
DEBUG, ...). See .env.example for the full list.
"""

import argparse
import getpass
import sys

from audit.store import AuditStore
from auth.models import ADMIN_ROLE, User
from auth.store import UserStore
from auth.tokens import hash_password
from core.config import get_settings
from core.errors import AppError
from profiles.store import ProfileStore

_MIN_PASSWORD_LENGTH = 8


def init_db() -> None:
    """Create every table and seed the default roles."""
    cfg = get_settings()
    for store_cls in (UserStore, ProfileStore, AuditStore):
        store_cls(cfg.database_url, cfg.storage_timeout_seconds).close()
    print(f"  Database ready: {cfg.database_url}")


def create_admin(email: str, password: str | None = None) -> int:
    """Create an admin account, or grant the admin role to an existing one.

    Returns a process exit code.
    """
    cfg = get_settings()
    store = UserStore(cfg.database_url, cfg.storage_timeout_seconds)
    try:
        email = email.strip().lower()
        user = store.get_by_email(email)
        if user is None:
            if password is None:
                password = getpass.getpass("  Password: ")
                if password != getpass.getpass("  Repeat password: "):
                    print("  [!] Passwords do not match.")
                    return 1
            if len(password) < _MIN_PASSWORD_LENGTH:
                print(f"  [!] Password must be at least {_MIN_PASSWORD_LENGTH} characters.")
                return 1
            try:
                hashed = hash_password(password)
            except AppError as e:
                print(f"  [!] {e.message}")
                return 1
            user_id = store.create_user(User(email=email, hashed_password=hashed), role_name=cfg.default_role)
            print(f"  Created user {email} (id {user_id}).")
        else:
            user_id = user.id
            print(f"  User {email} already exists (id {user_id}).")

        if store.assign_role_by_name(user_id, ADMIN_ROLE):
            print(f"  Granted role '{ADMIN_ROLE}'.")
        else:
            print(f"  User already has role '{ADMIN_ROLE}'.")
        return 0
    finally:
        store.close()


def serve(host: str, port: int, reload: bool) -> None:
    import uvicorn

    uvicorn.run("api.main:app", host=host, port=port, reload=reload)


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="blueink",
        description="BlueInk API server and administration commands.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve --reload
  python main.py init-db
  python main.py create-admin admin@example.com
  DATABASE_URL=postgresql://user:pass@db/blueink python main.py init-db
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve_p = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve_p.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve_p.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve_p.add_argument("--reload", action="store_true", help="Restart on code changes (development only)")

    sub.add_parser("init-db", help="Create tables and seed the default roles")

    admin_p = sub.add_parser("create-admin", help="Create an admin account or promote an existing user")
    admin_p.add_argument("email", metavar="EMAIL", help="Email address of the admin account")
    admin_p.add_argument(
        "--password",
        metavar="PASSWORD",
        help="Password for a new account (prompted for when omitted)",
    )

    args = parser.parse_args()

    if args.command == "serve":
        serve(args.host, args.port, args.reload)
    elif args.command == "init-db":
        init_db()
    elif args.command == "create-admin":
        sys.exit(create_admin(args.email, args.password))
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
