#!/usr/bin/env python3
"""
TaskFlow Auth -- account registration, verification, login and password reset.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 5000
  python main.py serve --reload
  python main.py create-admin --email admin@example.com --first-name Ada --last-name Admin

Self-registration only ever creates `user` accounts, so the first admin is
created here. The password is prompted for when --password is omitted.

Environment variables (see core/config.py for the full list):
  SECRET_KEY, REFRESH_SECRET_KEY   Token signing keys (required unless DEBUG=true)
  DATABASE_URL                     SQLAlchemy URL of the identity store
  SMTP_HOST                        Mail relay; unset means emails are only logged
"""

import argparse
import getpass
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from api.models import EMAIL_PATTERN, MIN_PASSWORD_LENGTH
from auth.models import User
from auth.passwords import MAX_PASSWORD_BYTES, hash_password, password_too_long
from auth.store import UserStore, normalize_email
from core.config import get_settings


def _read_password(given: Optional[str]) -> Optional[str]:
    """Return the admin password from the flag or an interactive prompt, or None if it is unacceptable."""
    password = given
    if password is None:
        password = getpass.getpass("  Password: ")
        if getpass.getpass("  Confirm password: ") != password:
            print("  [!] Passwords do not match.")
            return None
    if len(password) < MIN_PASSWORD_LENGTH:
        print(f"  [!] Password must be at least {MIN_PASSWORD_LENGTH} characters long.")
        return None
    if password_too_long(password):
        print(f"  [!] Password must be at most {MAX_PASSWORD_BYTES} bytes when UTF-8 encoded.")
        return None
    return password


def create_admin(args: argparse.Namespace) -> int:
    email = normalize_email(args.email)
    if not EMAIL_PATTERN.match(email):
        print(f"  [!] '{args.email}' is not a valid email address.")
        return 1
    first_name, last_name = args.first_name.strip(), args.last_name.strip()
    if not first_name or not last_name:
        print("  [!] First and last name are required.")
        return 1

    password = _read_password(args.password)
    if password is None:
        return 1

    store = UserStore(get_settings().database_url)
    try:
        if store.get_by_email(email) is not None:
            print(f"  [!] An account for {email} already exists.")
            return 1
        user_id = store.create_user(
            User(
                email=email,
                first_name=first_name,
                last_name=last_name,
                role="admin",
                hashed_password=hash_password(password),
                is_email_verified=True,
            )
        )
    except IntegrityError:
        print(f"  [!] An account for {email} already exists.")
        return 1
    finally:
        store.close()

    print(f"  Admin {email} created (id {user_id}).")
    return 0


def serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="taskflow-auth",
        description="Credential lifecycle service for TaskFlow.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve --reload
  python main.py create-admin --email admin@example.com --first-name Ada --last-name Admin
  DEBUG=true python main.py serve
        """,
    )
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    admin_parser = subparsers.add_parser("create-admin", help="Create a verified admin account")
    admin_parser.add_argument("--email", required=True, help="Admin email address (used to log in)")
    admin_parser.add_argument("--first-name", required=True, help="Given name")
    admin_parser.add_argument("--last-name", required=True, help="Family name")
    admin_parser.add_argument(
        "--password",
        default=None,
        help="Admin password. Omit to be prompted (keeps it out of shell history)",
    )
    admin_parser.set_defaults(handler=create_admin)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve_parser.add_argument("--port", type=int, default=5000, help="Bind port (default: 5000)")
    serve_parser.add_argument("--reload", action="store_true", help="Restart on code changes (development)")
    serve_parser.set_defaults(handler=serve)

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 0
    return args.handler(args)


if __name__ == "__main__":
    sys.exit(main())
