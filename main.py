#!/usr/bin/env python3
"""
AdminGate -- maintenance CLI for the token/session store.

Usage:
  python main.py generate-secret
  python main.py sessions admin@example.com
  python main.py revoke admin@example.com
  python main.py deactivate admin@example.com
  python main.py activate admin@example.com
  python main.py purge

Environment variables:
  DATABASE_URL                   SQLAlchemy URL of the auth database.
  REFRESH_TOKEN_EXPIRE_SECONDS   Refresh TTL used by `sessions` and `purge`.
  JWT_SECRET / JWT_REFRESH_SECRET are not needed except by the API server;
  set DEBUG=true to run this tool without them.
"""

import argparse
import secrets
import sys
import time
from datetime import datetime, timezone
from typing import Optional

from auth.store import IdentityStore
from core.config import get_settings


def _fmt(epoch: float) -> str:
    return datetime.fromtimestamp(epoch, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def _cmd_generate_secret(args: argparse.Namespace, store: Optional[IdentityStore]) -> int:
    # 32 random bytes -> 64 hex chars, comfortably over the 32-char minimum.
    print(secrets.token_hex(32))
    return 0


def _cmd_sessions(args: argparse.Namespace, store: IdentityStore) -> int:
    identity = store.get_by_email(args.email)
    if identity is None:
        print(f"  [!] No identity with email '{args.email}'.")
        return 1
    ttl = get_settings().refresh_token_expire_seconds
    records = store.list_refresh_tokens(identity.id, not_before=time.time() - ttl)
    print(f"  {identity.email} ({identity.role}, {'active' if identity.is_active else 'inactive'})")
    if not records:
        print("  No active sessions.")
        return 0
    for record in records:
        print(f"  #{record.id}  created {_fmt(record.created_at)}  expires {_fmt(record.created_at + ttl)}")
    return 0


def _cmd_revoke(args: argparse.Namespace, store: IdentityStore) -> int:
    identity = store.get_by_email(args.email)
    if identity is None:
        print(f"  [!] No identity with email '{args.email}'.")
        return 1
    count = store.remove_all_refresh_tokens(identity.id)
    print(f"  Revoked {count} session(s) for {identity.email}.")
    return 0


def _set_active(args: argparse.Namespace, store: IdentityStore, active: bool) -> int:
    identity = store.get_by_email(args.email)
    if identity is None:
        print(f"  [!] No identity with email '{args.email}'.")
        return 1
    store.update_identity(identity.id, is_active=active)
    if not active:
        # Access tokens die at the gate immediately; drop refresh sessions too.
        store.remove_all_refresh_tokens(identity.id)
    print(f"  {identity.email} is now {'active' if active else 'inactive'}.")
    return 0


def _cmd_activate(args: argparse.Namespace, store: IdentityStore) -> int:
    return _set_active(args, store, True)


def _cmd_deactivate(args: argparse.Namespace, store: IdentityStore) -> int:
    return _set_active(args, store, False)


def _cmd_purge(args: argparse.Namespace, store: IdentityStore) -> int:
    removed = store.purge_expired_refresh_tokens(get_settings().refresh_token_expire_seconds)
    print(f"  Removed {removed} expired refresh token record(s).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="admingate",
        description="Maintenance commands for the AdminGate token store.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py generate-secret >> .env
  python main.py sessions admin@example.com
  python main.py revoke admin@example.com
  DATABASE_URL=sqlite:///prod.db python main.py purge
        """,
    )
    parser.add_argument("--db", metavar="URL", help="Database URL (overrides DATABASE_URL)")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("generate-secret", help="Print a random signing key").set_defaults(func=_cmd_generate_secret)

    for name, func, help_text in (
        ("sessions", _cmd_sessions, "List active refresh sessions for an identity"),
        ("revoke", _cmd_revoke, "Log an identity out of every device"),
        ("deactivate", _cmd_deactivate, "Disable an identity and drop its sessions"),
        ("activate", _cmd_activate, "Re-enable a disabled identity"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("email", help="Identity email address")
        cmd.set_defaults(func=func)

    sub.add_parser("purge", help="Delete refresh records past their TTL").set_defaults(func=_cmd_purge)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.func is _cmd_generate_secret:
        return args.func(args, None)
    store = IdentityStore(args.db or get_settings().database_url)
    try:
        return args.func(args, store)
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
