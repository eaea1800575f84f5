#!/usr/bin/env python3
"""
Recipe Shelf -- administration command line.

Registration through the API only ever creates plain users, so the first
administrator has to come from here.

Usage:
  python main.py create-admin --name "Chihiro" --email chihiro@example.com
  python main.py create-admin --name "Chihiro" --email chihiro@example.com --password s3cret!
  python main.py hash-password
  python main.py hash-password s3cret!

create-admin promotes the account instead when the email is already
registered. Without --password the password is prompted for (not echoed).

Environment variables:
  DATABASE_URL   SQLAlchemy URL of the database to write to.
  SECRET_KEY     Required unless DEBUG=true (same rules as the server).
  BCRYPT_ROUNDS  Work factor for new password digests (default 10).
"""

import argparse
import getpass
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from api.models import PASSWORD_MAX_BYTES
from auth.models import ROLE_ADMIN, User
from auth.store import UserStore
from auth.tokens import PasswordHasher
from core.config import Settings, get_settings
from core.db import create_db_engine

_MIN_PASSWORD_LENGTH = 6


def _read_password(given: Optional[str]) -> Optional[str]:
    """Return the password from the argument or an interactive prompt.

    Returns None (after printing why) when it is too short, too long, or the
    confirmation does not match.
    """
    if given is None:
        given = getpass.getpass("  Password: ")
        if getpass.getpass("  Confirm password: ") != given:
            print("  [!] Passwords do not match.")
            return None
    if len(given) < _MIN_PASSWORD_LENGTH:
        print(f"  [!] Password must be at least {_MIN_PASSWORD_LENGTH} characters.")
        return None
    if len(given.encode("utf-8")) > PASSWORD_MAX_BYTES:
        print(f"  [!] Password must be at most {PASSWORD_MAX_BYTES} bytes (UTF-8).")
        return None
    return given


def create_admin(settings: Settings, name: str, email: str, password: Optional[str]) -> int:
    """Create an admin account, or promote the existing account for email."""
    engine = create_db_engine(settings.database_url)
    try:
        store = UserStore(engine)
        existing = store.get_by_email(email)
        if existing is not None:
            if existing.role == ROLE_ADMIN:
                print(f"  {existing.email} is already an admin.")
            else:
                store.update_user(existing.id, role=ROLE_ADMIN)
                print(f"  Promoted {existing.email} to admin.")
            return 0

        plain = _read_password(password)
        if plain is None:
            return 1
        hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
        user = User(name=name, email=email, hashed_password=hasher.hash(plain), role=ROLE_ADMIN)
        try:
            user_id = store.create_user(user)
        except IntegrityError:
            print(f"  [!] {email} was registered concurrently; run the command again to promote it.")
            return 1
        print(f"  Created admin {email.lower()} ({user_id}).")
        return 0
    finally:
        engine.dispose()


def hash_password(settings: Settings, password: Optional[str]) -> int:
    """Print a bcrypt digest for a password, for seeding databases by hand."""
    plain = _read_password(password)
    if plain is None:
        return 1
    print(PasswordHasher(rounds=settings.bcrypt_rounds).hash(plain))
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="recipeshelf",
        description="Recipe Shelf administration commands.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-admin --name "Chihiro" --email chihiro@example.com
  python main.py hash-password
  DATABASE_URL=sqlite:////srv/recipeshelf.db python main.py create-admin --name Ops --email ops@example.com
        """,
    )
    commands = parser.add_subparsers(dest="command", metavar="COMMAND")

    admin_cmd = commands.add_parser("create-admin", help="Create or promote an administrator account")
    admin_cmd.add_argument("--name", required=True, help="Display name for a new account")
    admin_cmd.add_argument("--email", required=True, help="Login email (stored lower-cased)")
    admin_cmd.add_argument(
        "--password",
        default=None,
        help="Password for a new account. Prompted for when omitted.",
    )

    hash_cmd = commands.add_parser("hash-password", help="Print a bcrypt digest for a password")
    hash_cmd.add_argument("password", nargs="?", default=None, help="Prompted for when omitted")

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 0

    settings = get_settings()
    if args.command == "create-admin":
        return create_admin(settings, args.name, args.email, args.password)
    return hash_password(settings, args.password)


if __name__ == "__main__":
    sys.exit(main())
