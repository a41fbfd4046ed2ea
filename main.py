#!/usr/bin/env python3
"""
Catalog Gateway -- operator commands.

Usage:
  python main.py create-user admin admin@example.com --role admin
  python main.py create-user demo demo@example.com --password-stdin < pw.txt
  python main.py purge-sessions

The password is prompted for (no echo) unless --password-stdin is given.
Configuration (DATABASE_URL, SECRET_KEY, ...) is read from the environment
or .env, exactly as the API server reads it.
"""

import argparse
import getpass
import sys

from sqlalchemy.exc import IntegrityError

from auth.models import ROLES, User
from auth.sessions import SessionStore
from auth.store import UserStore, create_store_engine
from auth.tokens import hash_password
from core.config import get_settings


def _read_password(from_stdin: bool) -> str:
    if from_stdin:
        return sys.stdin.readline().rstrip("\n")
    password = getpass.getpass("Password: ")
    if password != getpass.getpass("Repeat password: "):
        sys.exit("Passwords do not match.")
    return password


def _create_user(args: argparse.Namespace) -> None:
    password = _read_password(args.password_stdin)
    if len(password) < 8:
        sys.exit("Password must be at least 8 characters.")

    settings = get_settings()
    engine = create_store_engine(settings.database_url, settings.db_timeout_seconds)
    store = UserStore(engine)
    try:
        user_id = store.create_user(
            User(
                username=args.username,
                email=args.email,
                role=args.role,
                hashed_password=hash_password(password),
            )
        )
    except IntegrityError:
        sys.exit(f"A user with username {args.username!r} or email {args.email!r} already exists.")
    finally:
        store.close()
    print(f"Created {args.role} user {args.username!r} (id={user_id}).")


def _purge_sessions(args: argparse.Namespace) -> None:
    settings = get_settings()
    engine = create_store_engine(settings.database_url, settings.db_timeout_seconds)
    try:
        removed = SessionStore(engine).purge_expired()
    finally:
        engine.dispose()
    print(f"Removed {removed} expired session(s).")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="gateway",
        description="Catalog Gateway operator commands.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create-user", help="Create a login account")
    create.add_argument("username")
    create.add_argument("email")
    create.add_argument("--role", choices=ROLES, default="user", help="Account role (default: user)")
    create.add_argument(
        "--password-stdin",
        action="store_true",
        help="Read the password from the first line of stdin instead of prompting",
    )
    create.set_defaults(func=_create_user)

    purge = sub.add_parser("purge-sessions", help="Delete sessions that can no longer be used or refreshed")
    purge.set_defaults(func=_purge_sessions)

    args = parser.parse_args()
    args.func(args)


if __name__ == "__main__":
    main()
