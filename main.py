#!/usr/bin/env python3
"""
Gatehouse -- Authentication backend administration.

Usage:
  python main.py sweep
  python main.py revoke-all
  python main.py create-user admin@example.com --name Ada --last-name Admin --role admin
  python main.py create-user ci@example.com --password-stdin < secret.txt

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the user database (default: sqlite:///gatehouse.db)
  DEBUG         Set to true to auto-generate missing secrets for local use
"""

import argparse
import getpass
import sys
from typing import Optional

from email_validator import EmailNotValidError, validate_email

from auth.errors import AuthFailure, AuthInfrastructureError
from auth.hashing import BCRYPT_MAX_PASSWORD_BYTES, CredentialHasher, password_fits_bcrypt
from auth.models import NewUser, RegisterMethod, Role
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import TokenIssuer
from core.config import Settings, get_settings

_MIN_PASSWORD = 8


def _build_service(settings: Settings) -> AuthService:
    """Assemble the same AuthService the API lifespan builds."""
    return AuthService(
        store=UserStore(settings.database_url),
        hasher=CredentialHasher(bcrypt_rounds=settings.bcrypt_rounds),
        issuer=TokenIssuer.from_settings(settings),
        rotate_refresh_tokens=settings.rotate_refresh_tokens,
    )


def _read_password(from_stdin: bool) -> Optional[str]:
    """Prompt twice for a password, or read one line from stdin.

    Returns None (after printing why) if the password is unacceptable.
    """
    if from_stdin:
        password = sys.stdin.readline().rstrip("\n")
    else:
        password = getpass.getpass("Password: ")
        if getpass.getpass("Repeat password: ") != password:
            print("  [!] Passwords do not match.")
            return None
    if len(password) < _MIN_PASSWORD:
        print(f"  [!] Password must be at least {_MIN_PASSWORD} characters.")
        return None
    if not password_fits_bcrypt(password):
        print(f"  [!] Password must be at most {BCRYPT_MAX_PASSWORD_BYTES} bytes (UTF-8).")
        return None
    return password


def _cmd_sweep(service: AuthService, args: argparse.Namespace) -> int:
    count = service.delete_expired_refresh_tokens()
    print(f"  Deleted {count} expired refresh token(s).")
    return 0


def _cmd_revoke_all(service: AuthService, args: argparse.Namespace) -> int:
    if not args.yes:
        answer = input("  Revoke every session of every user? [y/N] ")
        if answer.strip().lower() not in ("y", "yes"):
            print("  Aborted.")
            return 1
    count = service.delete_all_refresh_tokens()
    print(f"  Revoked {count} session(s).")
    return 0


def _cmd_create_user(service: AuthService, args: argparse.Namespace) -> int:
    try:
        email = validate_email(args.email, check_deliverability=False).normalized
    except EmailNotValidError as exc:
        print(f"  [!] Invalid email: {exc}")
        return 1
    password = _read_password(args.password_stdin)
    if password is None:
        return 1
    user = service.register(
        NewUser(
            email=email,
            name=args.name,
            last_name=args.last_name,
            register_method=RegisterMethod.email,
            role=Role(args.role),
            password=password,
        )
    )
    if isinstance(user, AuthFailure):
        print(f"  [!] {user.message}")
        return 1
    print(f"  Created {user.role.value} {user.email} (id={user.id}).")
    return 0


_COMMANDS = {
    "sweep": _cmd_sweep,
    "revoke-all": _cmd_revoke_all,
    "create-user": _cmd_create_user,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gatehouse",
        description="Maintenance commands for the Gatehouse user and session database.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py sweep
  python main.py revoke-all --yes
  python main.py create-user admin@example.com --role admin
  DATABASE_URL=sqlite:///prod.db python main.py sweep
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    sub.add_parser("sweep", help="Delete refresh tokens past their expiry")

    revoke = sub.add_parser("revoke-all", help="Delete every refresh token (logs out every device)")
    revoke.add_argument("--yes", action="store_true", help="Skip the confirmation prompt")

    create = sub.add_parser("create-user", help="Create an email/password account")
    create.add_argument("email", help="Login email of the new account")
    create.add_argument("--name", default="Admin", help="Given name (default: Admin)")
    create.add_argument("--last-name", default="User", help="Family name (default: User)")
    create.add_argument(
        "--role",
        choices=[r.value for r in Role],
        default=Role.user.value,
        help="Role of the new account (default: user)",
    )
    create.add_argument(
        "--password-stdin",
        action="store_true",
        help="Read the password from the first line of stdin instead of prompting",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 0

    service = _build_service(get_settings())
    try:
        return _COMMANDS[args.command](service, args)
    except AuthInfrastructureError as exc:
        print(f"  [!] {exc.kind.value}: {exc}")
        return 2
    finally:
        service.issuer.close()
        service.store.close()


if __name__ == "__main__":
    sys.exit(main())
