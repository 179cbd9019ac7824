#!/usr/bin/env python3
"""
CareGate -- operator command line.

Bootstraps the credential database outside the HTTP surface: seeds roles and
creates the first admin account (POST /users needs an admin token, so the
first admin has to come from somewhere).

Usage:
  python main.py init-db
  python main.py roles
  python main.py create-user --name "Ada" --email ada@example.com --role admin
  python main.py create-user --name "Ada" --email ada@example.com --role 1 --password secret1

Environment variables:
  DATABASE_URL   SQLAlchemy URL of the credential database.
  SECRET_KEY     Required unless DEBUG=true (see core/config.py).
  BCRYPT_ROUNDS  bcrypt cost factor used for new password hashes.
"""

import argparse
import getpass
import sys
from typing import Optional

from auth.errors import CareGateError
from auth.passwords import PasswordHasher
from auth.store import CredentialStore
from core.config import get_settings
from users.service import UserService


def _open_store() -> CredentialStore:
    settings = get_settings()
    store = CredentialStore(settings.database_url)
    store.seed_roles(settings.seed_roles)
    return store


def _resolve_role(store: CredentialStore, value: str) -> Optional[int]:
    """Accept a role id or a role name."""
    for role in store.list_roles():
        if value == role.name or value == str(role.id):
            return role.id
    return None


def cmd_init_db(args: argparse.Namespace) -> int:
    store = _open_store()
    try:
        print(f"  Database ready: {len(store.list_roles())} role(s) seeded.")
    finally:
        store.close()
    return 0


def cmd_roles(args: argparse.Namespace) -> int:
    store = _open_store()
    try:
        for role in store.list_roles():
            print(f"  {role.id:>3}  {role.name}")
    finally:
        store.close()
    return 0


def cmd_create_user(args: argparse.Namespace) -> int:
    store = _open_store()
    try:
        role_id = _resolve_role(store, args.role)
        if role_id is None:
            print(f"  [!] Unknown role '{args.role}'. Run 'python main.py roles' to list roles.")
            return 2

        password = args.password
        if password is None:
            password = getpass.getpass("  Password: ")
            if getpass.getpass("  Confirm password: ") != password:
                print("  [!] Passwords do not match.")
                return 2

        service = UserService(store, PasswordHasher(rounds=get_settings().bcrypt_rounds))
        try:
            user = service.create(name=args.name, email=args.email, password=password, role_id=role_id)
        except CareGateError as exc:
            print(f"  [!] {exc.message}")
            for field, messages in getattr(exc, "fields", {}).items():
                for message in messages:
                    print(f"      {field}: {message}")
            return 1
        print(f"  Created user {user.id} <{user.email}> with role {role_id}.")
    finally:
        store.close()
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="caregate",
        description="CareGate credential database administration.",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p_init = sub.add_parser("init-db", help="Create tables and seed the configured roles")
    p_init.set_defaults(func=cmd_init_db)

    p_roles = sub.add_parser("roles", help="List roles")
    p_roles.set_defaults(func=cmd_roles)

    p_user = sub.add_parser("create-user", help="Create a user account (e.g. the first admin)")
    p_user.add_argument("--name", required=True, help="Display name")
    p_user.add_argument("--email", required=True, help="Login email (stored lower-case)")
    p_user.add_argument("--role", default="admin", help="Role name or id (default: admin)")
    p_user.add_argument("--password", default=None, help="Password; prompted for when omitted")
    p_user.set_defaults(func=cmd_create_user)

    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
