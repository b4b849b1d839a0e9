#!/usr/bin/env python3
"""
authgate -- Credential and session authority.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8080
  python main.py serve --reload
  python main.py purge
  python main.py purge --db authgate_revoked.db

Environment variables (see core/config.py for the full list):
  SECRET_KEY            JWT signing key, at least 32 characters. Required unless DEBUG=true.
  DEBUG                 true for local development (auto-generated SECRET_KEY).
  TOKEN_STORE_BACKEND   memory | sqlite | redis
  REVOCATION_DB_PATH    SQLite file used by the sqlite token store and by `purge`.
"""

import argparse
import logging
import sys
from pathlib import Path

import uvicorn

from cache.revocation import SQLiteRevokedTokenStore
from core.config import get_settings

def _serve(args: argparse.Namespace) -> int:
    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _purge(args: argparse.Namespace) -> int:
    """Drop expired rows from the SQLite revocation store.

    The running server purges on its own schedule; this is for deployments
    that run the store file without a long-lived process, e.g. from cron.
    """
    db_path = Path(args.db or get_settings().revocation_db_path)
    if not db_path.is_file():
        print(f"  [!] '{db_path}' does not exist; nothing to purge.")
        return 1

    store = SQLiteRevokedTokenStore(db_path)
    try:
        removed = store.purge_expired()
        remaining = store.active_count()
    finally:
        store.close()
    print(f"  Purged {removed} expired revocation(s); {remaining} still active.")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="authgate",
        description="Signup, login with optional email 2FA, and JWT session management.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  DEBUG=true python main.py serve --reload
  SECRET_KEY=... TOKEN_STORE_BACKEND=redis python main.py serve --port 3000
  python main.py purge --db /var/lib/authgate/revoked.db
        """,
    )
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the HTTP API under uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=3000, help="Bind port (default: 3000)")
    serve.add_argument("--reload", action="store_true", help="Restart on code changes (development only)")
    serve.set_defaults(func=_serve)

    purge = sub.add_parser("purge", help="Drop expired entries from the SQLite revocation store")
    purge.add_argument(
        "--db",
        metavar="PATH",
        default=None,
        help="Revocation database file (default: REVOCATION_DB_PATH from settings)",
    )
    purge.set_defaults(func=_purge)

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 2

    logging.basicConfig(level=logging.INFO, format="%(levelname)-5s %(name)s %(message)s")
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
