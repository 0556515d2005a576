#!/usr/bin/env python3
"""
Nemesis admin CLI -- one-off maintenance tasks against the configured database.

Usage:
  python main.py create-user "Ann Editor" ann@example.com --role editor
  python main.py set-setting self_registration_enabled false --description "Closed for now"
  python main.py purge-sessions

Environment variables:
  DATABASE_URL   Same database the API uses (default: sqlite:///nemesis.db)
  SECRET_KEY     Required unless DEBUG=true (see core/config.py)
"""

import argparse
import getpass
import sys

from auth.models import ROLES, User
from auth.sessions import SessionStore
from auth.store import UserStore
from auth.tokens import hash_password
from core.config import get_settings
from core.validation import MIN_PASSWORD_LENGTH, validate_email, validate_password, validate_required


def _prompt_password() -> str:
    """Ask twice without echoing. Returns "" when the two entries differ."""
    first = getpass.getpass("Password: ")
    second = getpass.getpass("Repeat password: ")
    return first if first == second else ""


def create_user(store: UserStore, name: str, email: str, role: str, password: str) -> int:
    """Create an account after the same checks registration applies.

    Raises ValueError with every problem found, one per line.
    """
    errors = validate_required({"name": name, "email": email, "password": password}, ["name", "email", "password"])
    if email and not validate_email(email):
        errors.append("Email is invalid")
    if password and not validate_password(password):
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if role not in ROLES:
        errors.append(f"Role must be one of: {', '.join(ROLES)}")
    if not errors and store.email_exists(email):
        errors.append("Email already exists")
    if errors:
        raise ValueError("\n".join(errors))
    return store.create_user(User(name=name.strip(), email=email, role=role, hashed_password=hash_password(password)))


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="nemesis",
        description="Administrative tasks for the Nemesis backend.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-user "Ann Editor" ann@example.com --role editor
  python main.py set-setting site_title "Nemesis"
  python main.py purge-sessions
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p_user = sub.add_parser("create-user", help="Create an account (password is prompted)")
    p_user.add_argument("name", help="Display name")
    p_user.add_argument("email", help="Login email address")
    p_user.add_argument(
        "--role",
        choices=ROLES,
        default="reader",
        help="Account role (default: reader)",
    )

    p_setting = sub.add_parser("set-setting", help="Insert or overwrite a site setting")
    p_setting.add_argument("key", help="Setting key")
    p_setting.add_argument("value", help="Setting value")
    p_setting.add_argument("--description", default=None, help="Optional human-readable description")

    sub.add_parser("purge-sessions", help="Delete expired server-side sessions")

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    settings = get_settings()

    if args.command == "create-user":
        password = _prompt_password()
        if not password:
            print("  [!] Passwords were empty or did not match.")
            return 1
        store = UserStore(settings.database_url)
        try:
            user_id = create_user(store, args.name, args.email, args.role, password)
        except ValueError as e:
            for line in str(e).splitlines():
                print(f"  [!] {line}")
            return 1
        finally:
            store.close()
        print(f"  Created {args.role} account #{user_id} for {args.email.lower()}.")

    elif args.command == "set-setting":
        store = UserStore(settings.database_url)
        try:
            store.set_setting(args.key, args.value, args.description)
        finally:
            store.close()
        print(f"  {args.key} = {args.value!r}")

    elif args.command == "purge-sessions":
        sessions = SessionStore(settings.database_url)
        try:
            removed = sessions.purge_expired()
        finally:
            sessions.close()
        print(f"  Removed {removed} expired session(s).")

    return 0


if __name__ == "__main__":
    sys.exit(main())
