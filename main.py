#!/usr/bin/env python3
"""
loginkeep -- operator CLI for the credential and login-token stores.

Usage:
  python main.py create-user alice@example.com --username alice
  python main.py ban 42
  python main.py unban 42
  python main.py delete-user 42
  python main.py delete-user 42 --purge
  python main.py tokens 42
  python main.py revoke 42            # expired tokens only
  python main.py revoke 42 --all      # log the user out everywhere
  python main.py purge                # expired tokens of every user

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the auth database (default sqlite:///loginkeep.db)
  SECRET_KEY    Key for login-token verifier hashes. Required unless DEBUG=true.
  See core/config.py for the password policy settings.
"""

import argparse
import getpass
import logging
from typing import Optional

from auth.exceptions import AuthError, ValidationError
from auth.store import CredentialStore
from auth.tokens import LoginTokenStore
from core.config import get_settings

logger = logging.getLogger("loginkeep.cli")


def _cmd_create_user(args, credentials: CredentialStore, tokens: LoginTokenStore) -> int:
    password = args.password if args.password is not None else getpass.getpass("Password: ")
    user_id = credentials.create(args.email, password, username=args.username)
    print(f"  Created user {user_id} ({args.email}).")
    return 0


def _cmd_ban(args, credentials: CredentialStore, tokens: LoginTokenStore) -> int:
    if not credentials.ban(args.user_id):
        print(f"  [!] No active user with id {args.user_id}.")
        return 1
    print(f"  User {args.user_id} banned.")
    return 0


def _cmd_unban(args, credentials: CredentialStore, tokens: LoginTokenStore) -> int:
    if not credentials.unban(args.user_id):
        print(f"  [!] No active user with id {args.user_id}.")
        return 1
    print(f"  User {args.user_id} unbanned.")
    return 0


def _cmd_delete_user(args, credentials: CredentialStore, tokens: LoginTokenStore) -> int:
    if not credentials.delete(args.user_id, purge=args.purge):
        print(f"  [!] No user with id {args.user_id} to delete.")
        return 1
    removed = tokens.revoke(args.user_id, expired_only=False)
    print(f"  User {args.user_id} {'purged' if args.purge else 'deleted'}; {removed} login token(s) revoked.")
    return 0


def _cmd_tokens(args, credentials: CredentialStore, tokens: LoginTokenStore) -> int:
    summaries = tokens.get_all_by_user(args.user_id)
    if not summaries:
        print(f"  User {args.user_id} has no login tokens.")
        return 0
    print(f"  {'ID':>6}  {'SELECTOR':<24}  EXPIRES")
    for s in summaries:
        print(f"  {s.id:>6}  {s.selector:<24}  {s.expires_at}")
    return 0


def _cmd_revoke(args, credentials: CredentialStore, tokens: LoginTokenStore) -> int:
    removed = tokens.revoke(args.user_id, expired_only=not args.all)
    scope = "" if args.all else "expired "
    print(f"  Revoked {removed} {scope}login token(s) for user {args.user_id}.")
    return 0


def _cmd_purge(args, credentials: CredentialStore, tokens: LoginTokenStore) -> int:
    print(f"  Purged {tokens.purge_expired()} expired login token(s).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="loginkeep",
        description="Manage users and remember-me login tokens.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-user alice@example.com --username alice
  python main.py tokens 42
  python main.py revoke 42 --all
  DATABASE_URL=postgresql://user:pw@host/auth python main.py purge
        """,
    )
    parser.add_argument("--db", metavar="URL", default=None, help="Database URL (overrides DATABASE_URL)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level")
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p = sub.add_parser("create-user", help="Create a user (prompts for the password)")
    p.add_argument("email")
    p.add_argument("--username", default=None)
    p.add_argument("--password", default=None, help="Password (omit to be prompted; avoids shell history)")
    p.set_defaults(func=_cmd_create_user)

    for name, func, text in (
        ("ban", _cmd_ban, "Ban a user"),
        ("unban", _cmd_unban, "Lift a ban"),
        ("tokens", _cmd_tokens, "List a user's login tokens"),
    ):
        p = sub.add_parser(name, help=text)
        p.add_argument("user_id", type=int)
        p.set_defaults(func=func)

    p = sub.add_parser("delete-user", help="Soft-delete a user and revoke all of their tokens")
    p.add_argument("user_id", type=int)
    p.add_argument("--purge", action="store_true", help="Remove the row instead of flagging it deleted")
    p.set_defaults(func=_cmd_delete_user)

    p = sub.add_parser("revoke", help="Revoke a user's expired login tokens (or all with --all)")
    p.add_argument("user_id", type=int)
    p.add_argument("--all", action="store_true", help="Revoke every token, not only expired ones")
    p.set_defaults(func=_cmd_revoke)

    p = sub.add_parser("purge", help="Delete expired login tokens for all users")
    p.set_defaults(func=_cmd_purge)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    settings = get_settings()
    credentials = CredentialStore(args.db or settings.database_url, settings=settings)
    tokens = LoginTokenStore(engine=credentials.engine, settings=settings)
    try:
        return args.func(args, credentials, tokens)
    except ValidationError as exc:
        for field, reason in exc.errors.items():
            print(f"  [!] {field}: {reason}")
        return 1
    except AuthError as exc:
        print(f"  [!] {exc.message}")
        return 1
    finally:
        credentials.close()


if __name__ == "__main__":
    raise SystemExit(main())
