#!/usr/bin/env python3
"""
userdir -- user accounts, password authentication and bearer tokens.

Administrative command line. Everything goes through IdentityDirectory, so
passwords are hashed and credentials rows are created exactly as the HTTP
API would do it.

Usage:
  python main.py seed users.json
  python main.py create-admin --email admin@example.com --name Admin --password s3cret
  python main.py token --email admin@example.com --password s3cret

Environment variables:
  SECRET_KEY     Token signing key (required unless DEBUG=true).
  DATABASE_URL   SQLAlchemy URL of the user database.
  See core/config.py for the full list.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from core.config import get_settings
from identity.directory import IdentityDirectory
from identity.errors import EmailAlreadyRegistered, IdentityError
from identity.models import Login, NewUser
from identity.store import UserStore

logger = logging.getLogger("userdir.cli")


def _load_seed_file(path: str) -> list[NewUser]:
    """Read a JSON list of users. Malformed entries are reported and skipped.

    Each entry needs name, email and password (plaintext). hash, isAdmin and
    emailConfirmed are optional.
    """
    file_path = Path(path).resolve()
    if not file_path.is_file():
        print(f"  [!] '{path}' is not a readable file.")
        return []
    try:
        entries = json.loads(file_path.read_text())
    except (OSError, ValueError) as e:
        print(f"  [!] Could not read seed file '{path}': {e}")
        return []
    if not isinstance(entries, list):
        print(f"  [!] Seed file '{path}' must contain a JSON list.")
        return []

    users: list[NewUser] = []
    for i, entry in enumerate(entries):
        if not isinstance(entry, dict) or not all(entry.get(k) for k in ("name", "email", "password")):
            print(f"  [!] Entry {i} skipped: name, email and password are required.")
            continue
        users.append(
            NewUser(
                name=str(entry["name"]),
                email=str(entry["email"]),
                password=str(entry["password"]),
                hash=entry.get("hash") or None,
                is_admin=bool(entry.get("isAdmin", False)),
                email_confirmed=bool(entry.get("emailConfirmed", False)),
            )
        )
    return users


def seed(directory: IdentityDirectory, users: list[NewUser]) -> int:
    """Create each user; already-registered emails are skipped. Returns the count created."""
    created = 0
    for new_user in users:
        try:
            user = directory.create(new_user)
        except EmailAlreadyRegistered:
            print(f"  {new_user.email} already registered, skipped.")
            continue
        created += 1
        print(f"  Created {user.email} (id={user.id}{', admin' if user.is_admin else ''})")
    return created


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="userdir",
        description="Administer the userdir account database.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py seed users.json
  python main.py create-admin --email admin@example.com --name Admin --password s3cret
  python main.py token --email admin@example.com --password s3cret
        """,
    )
    parser.add_argument(
        "--database-url",
        metavar="URL",
        default=None,
        help="SQLAlchemy database URL (default: DATABASE_URL from settings)",
    )
    sub = parser.add_subparsers(dest="command")

    p_seed = sub.add_parser("seed", help="Create users from a JSON file")
    p_seed.add_argument("file", metavar="PATH", help="JSON list of {name, email, password, hash?, isAdmin?}")

    p_admin = sub.add_parser("create-admin", help="Create an admin account")
    p_admin.add_argument("--email", required=True)
    p_admin.add_argument("--name", required=True)
    p_admin.add_argument("--password", required=True)
    p_admin.add_argument("--hash", default=None, help="Optional credential secret stored alongside the account")

    p_token = sub.add_parser("token", help="Authenticate and print a bearer token")
    p_token.add_argument("--email", required=True)
    p_token.add_argument("--password", required=True)

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    logging.basicConfig(level=logging.WARNING, format="%(levelname)-5s %(name)s %(message)s")

    settings = get_settings()
    store = UserStore(args.database_url or settings.database_url)
    directory = IdentityDirectory.from_settings(store, settings)
    try:
        if args.command == "seed":
            users = _load_seed_file(args.file)
            if not users:
                return 1
            created = seed(directory, users)
            print(f"  {created} of {len(users)} user(s) created.")
            return 0

        if args.command == "create-admin":
            user = directory.create(
                NewUser(name=args.name, email=args.email, password=args.password, hash=args.hash, is_admin=True)
            )
            print(f"  Created admin {user.email} (id={user.id})")
            return 0

        # token
        print(directory.authenticate_and_issue_token(Login(email=args.email, password=args.password)))
        return 0
    except IdentityError as e:
        print(f"  [!] {e.message}")
        return 1
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
