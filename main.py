#!/usr/bin/env python3
"""
Catalog -- operator commands for the authentication store.

Usage:
  python main.py create-user alice
  python main.py count-users
  python main.py purge-sessions

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the auth database (default: catalog_auth.db).
  SECRET_KEY    Required unless DEBUG=true (same rules as the web app).
  KDF_ROUNDS    Password KDF work factor (default: 100).
"""

import argparse
import getpass
import sys
from typing import Optional

from auth.errors import DuplicateName, StoreUnavailable
from auth.passwords import PasswordHasher
from auth.sessions import SessionStore
from auth.store import CredentialStore
from core.config import get_settings


def _read_password(prompt_confirm: bool = True) -> Optional[str]:
    """Prompt for a password without echo. Returns None if empty or mismatched."""
    password = getpass.getpass("  Password: ")
    if not password:
        print("  [!] Password must not be empty.")
        return None
    if prompt_confirm and getpass.getpass("  Confirm password: ") != password:
        print("  [!] Passwords do not match.")
        return None
    return password


def _open_credentials() -> CredentialStore:
    settings = get_settings()
    return CredentialStore(settings.database_url, hasher=PasswordHasher(rounds=settings.kdf_rounds))


def cmd_create_user(name: str) -> int:
    name = name.strip()
    if not name:
        print("  [!] Username must not be empty.")
        return 2
    password = _read_password()
    if password is None:
        return 2
    store = _open_credentials()
    try:
        principal = store.create(name, password)
    except DuplicateName as exc:
        print(f"  [!] {exc}")
        return 1
    finally:
        store.close()
    print(f"  Created user {principal.name!r} (id={principal.id}).")
    return 0


def cmd_count_users() -> int:
    store = _open_credentials()
    try:
        print(f"  {store.count()} user(s) registered.")
    finally:
        store.close()
    return 0


def cmd_purge_sessions() -> int:
    settings = get_settings()
    sessions = SessionStore(settings.database_url, ttl=settings.session_max_age_seconds)
    try:
        removed = sessions.purge_expired()
    finally:
        sessions.close()
    print(f"  Purged {removed} expired session(s).")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="catalog",
        description="Operator commands for the catalog authentication store.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-user alice
  DATABASE_URL=sqlite:////srv/catalog/auth.db python main.py count-users
  python main.py purge-sessions
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = sub.add_parser("create-user", help="Register a user (password is prompted)")
    create.add_argument("name", metavar="NAME", help="Username to register")
    sub.add_parser("count-users", help="Print the number of registered users")
    sub.add_parser("purge-sessions", help="Delete expired sessions")

    args = parser.parse_args(argv)

    try:
        if args.command == "create-user":
            return cmd_create_user(args.name)
        if args.command == "count-users":
            return cmd_count_users()
        if args.command == "purge-sessions":
            return cmd_purge_sessions()
    except StoreUnavailable as exc:
        print(f"  [!] Auth database unavailable: {exc}")
        return 1

    parser.print_help()
    return 2


if __name__ == "__main__":
    sys.exit(main())
