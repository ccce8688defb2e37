#!/usr/bin/env python3
"""
TaskBoard -- administrative command line.

The HTTP API never creates admins: registration always yields role=user.
Use this tool to bootstrap the first admin and to run maintenance by hand.

Usage:
  python main.py create-admin --email admin@example.com --first-name Ada --last-name Admin
  python main.py create-admin --email admin@example.com --first-name Ada --last-name Admin --password 'Str0ng!Pass'
  python main.py purge

Environment variables:
  DATABASE_URL, CACHE_PATH and the signing secrets are read through
  core.config.get_settings(), exactly as the API reads them.
"""

import argparse
import getpass
import re
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.flows import EMAIL_PATTERN
from auth.models import ROLE_ADMIN, User
from auth.passwords import PasswordHasher
from auth.store import RefreshTokenStore, UserStore
from cache.store import ResourceCache
from core.config import Settings, get_settings


def _create_admin(args: argparse.Namespace, settings: Settings) -> int:
    email = args.email.strip().lower()
    if not re.match(EMAIL_PATTERN, email):
        print(f"  [!] '{args.email}' is not a valid email address.")
        return 1

    password = args.password
    if password is None:
        password = getpass.getpass("  Password: ")
        if password != getpass.getpass("  Repeat password: "):
            print("  [!] Passwords do not match.")
            return 1

    strength = PasswordHasher.validate_strength(password)
    if not strength.valid:
        print("  [!] Password rejected:")
        for reason in strength.reasons:
            print(f"      - {reason}")
        return 1

    users = UserStore(settings.database_url, settings.store_timeout_seconds)
    try:
        if users.email_exists(email):
            print(f"  [!] An account for {email} already exists.")
            return 1
        hasher = PasswordHasher(settings.bcrypt_rounds)
        admin = User(
            email=email,
            hashed_password=hasher.hash(password),
            first_name=args.first_name.strip(),
            last_name=args.last_name.strip(),
            role=ROLE_ADMIN,
        )
        try:
            user_id = users.create_user(admin)
        except IntegrityError:
            print(f"  [!] An account for {email} already exists.")
            return 1
    finally:
        users.close()

    print(f"  Admin created (id={user_id}, email={email}).")
    return 0


def _purge(args: argparse.Namespace, settings: Settings) -> int:
    refresh_tokens = RefreshTokenStore(settings.database_url, settings.store_timeout_seconds)
    try:
        deleted = refresh_tokens.delete_expired()
    finally:
        refresh_tokens.close()

    cache = ResourceCache(settings.cache_path, enabled=settings.cache_enabled, timeout=settings.cache_timeout_seconds)
    try:
        purged = cache.purge_expired()
    finally:
        cache.close()

    print(f"  Removed {deleted} expired refresh token(s) and {purged} expired cache entr{'y' if purged == 1 else 'ies'}.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="taskboard",
        description="TaskBoard administration.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-admin --email admin@example.com --first-name Ada --last-name Admin
  python main.py purge
        """,
    )
    commands = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = commands.add_parser("create-admin", help="Create an admin account")
    create.add_argument("--email", required=True, help="Login email for the new admin")
    create.add_argument("--first-name", required=True)
    create.add_argument("--last-name", required=True)
    create.add_argument(
        "--password",
        default=None,
        help="Password (prompted for when omitted; avoid passing it on shared shells)",
    )
    create.set_defaults(handler=_create_admin)

    purge = commands.add_parser("purge", help="Delete expired refresh tokens and cache entries")
    purge.set_defaults(handler=_purge)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "handler", None):
        parser.print_help()
        return 0
    return args.handler(args, get_settings())


if __name__ == "__main__":
    sys.exit(main())
