#!/usr/bin/env python3
"""
SessionGate -- administrative command line.

Operates directly on the auth database named by DATABASE_URL, so it works
whether or not the API server is running.

Usage:
  python main.py purge-expired
  python main.py revoke-sessions alice@example.com
  python main.py disable-user alice@example.com
  python main.py enable-user alice@example.com
"""

import argparse
import sys
from typing import Optional

from auth.db import create_auth_engine
from auth.refresh_tokens import RefreshTokenStore
from auth.reset_tokens import PasswordResetTokenStore
from auth.store import UserStore
from core.config import get_settings


def _purge_expired(users: UserStore, refresh: RefreshTokenStore, reset: PasswordResetTokenStore, args) -> int:
    refresh_purged = refresh.delete_expired()
    reset_purged = reset.delete_expired()
    print(f"Purged {refresh_purged} refresh token(s) and {reset_purged} reset token(s).")
    return 0


def _revoke_sessions(users: UserStore, refresh: RefreshTokenStore, reset: PasswordResetTokenStore, args) -> int:
    user = users.get_by_email(args.email)
    if user is None:
        print(f"  [!] No account with email '{args.email}'.", file=sys.stderr)
        return 1
    revoked = refresh.revoke_all(user.id)
    print(f"Revoked {revoked} session(s) for {user.email}.")
    return 0


def _set_active(users: UserStore, refresh: RefreshTokenStore, reset: PasswordResetTokenStore, args) -> int:
    user = users.get_by_email(args.email)
    if user is None:
        print(f"  [!] No account with email '{args.email}'.", file=sys.stderr)
        return 1
    users.set_active(user.id, args.active)
    if args.active:
        print(f"Enabled {user.email}.")
        return 0
    # A disabled account must not keep any session alive.
    revoked = refresh.revoke_all(user.id)
    print(f"Disabled {user.email} and revoked {revoked} session(s).")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="sessiongate",
        description="SessionGate administration: token housekeeping and account control.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py purge-expired
  python main.py revoke-sessions alice@example.com
  DATABASE_URL=sqlite:////var/lib/sessiongate/auth.db python main.py purge-expired
        """,
    )
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    purge = subparsers.add_parser("purge-expired", help="Delete expired refresh and reset tokens")
    purge.set_defaults(handler=_purge_expired)

    revoke = subparsers.add_parser("revoke-sessions", help="Log a user out on every device")
    revoke.add_argument("email", metavar="EMAIL")
    revoke.set_defaults(handler=_revoke_sessions)

    disable = subparsers.add_parser("disable-user", help="Disable an account and revoke its sessions")
    disable.add_argument("email", metavar="EMAIL")
    disable.set_defaults(handler=_set_active, active=False)

    enable = subparsers.add_parser("enable-user", help="Re-enable a disabled account")
    enable.add_argument("email", metavar="EMAIL")
    enable.set_defaults(handler=_set_active, active=True)

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 2

    settings = get_settings()
    engine = create_auth_engine(settings.database_url)
    users = UserStore(engine)
    refresh = RefreshTokenStore(engine, ttl_seconds=settings.refresh_token_expire_seconds)
    reset = PasswordResetTokenStore(engine, ttl_seconds=settings.reset_token_expire_seconds)
    try:
        return args.handler(users, refresh, reset, args)
    finally:
        users.close()


if __name__ == "__main__":
    sys.exit(main())
