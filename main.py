#!/usr/bin/env python3
"""
AppGate -- Identity and access gateway for a suite of internal web apps.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8080 --reload
  python main.py migrate
  python main.py seed-admin --email admin@example.com

Environment variables (see core/config.py for the full list):
  SECRET_KEY     Session signing key, at least 32 characters. Required unless DEBUG=true.
  DATABASE_URL   SQLAlchemy URL of the account store (default: sqlite under ./data).
  DEBUG          Set to true for local development.
"""

import argparse
import getpass
import sys

from auth.errors import AuthError
from auth.passwords import check_password_strength
from auth.store import UserStore
from core.config import get_settings


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _migrate(args: argparse.Namespace) -> int:
    store = UserStore(get_settings().database_url)
    try:
        version = store.migrate()
    finally:
        store.close()
    print(f"  Account store at schema version {version}.")
    return 0


def _seed_admin(args: argparse.Namespace) -> int:
    from auth.service import AuthService

    password = args.password or getpass.getpass("  Admin password: ")
    if not check_password_strength(password):
        print("  [!] Password must be at least 8 characters long.")
        return 1

    store = UserStore(get_settings().database_url)
    try:
        store.migrate()
        admin = AuthService(store).ensure_admin(args.email, password)
    except AuthError as e:
        print(f"  [!] Could not seed admin: {e.message}")
        return 1
    finally:
        store.close()
    print(f"  Admin account ready: {admin.email} (id={admin.id})")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="appgate",
        description="Identity and access gateway for internal web applications.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py migrate
  python main.py seed-admin --email admin@example.com
  DEBUG=true python main.py serve --reload
        """,
    )
    commands = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = commands.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Reload on code changes (development only)")
    serve.set_defaults(handler=_serve)

    migrate = commands.add_parser("migrate", help="Apply pending schema migrations and exit")
    migrate.set_defaults(handler=_migrate)

    seed = commands.add_parser("seed-admin", help="Create or promote an approved admin account")
    seed.add_argument("--email", required=True, help="Admin email address")
    seed.add_argument("--password", default=None, help="Admin password (prompted when omitted)")
    seed.set_defaults(handler=_seed_admin)

    args = parser.parse_args(argv)
    if not getattr(args, "handler", None):
        parser.print_help()
        return 0
    return args.handler(args)


if __name__ == "__main__":
    sys.exit(main())
