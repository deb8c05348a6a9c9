#!/usr/bin/env python3
"""
ShareNote maintenance CLI.

Usage:
  python main.py serve [--host 127.0.0.1] [--port 8000] [--reload]
  python main.py reconcile
  python main.py reconcile --fix
  python main.py purge-expired

Environment variables:
  STORE_URL   Key-value store (redis://... or an SQLAlchemy URL).
              Defaults to sqlite:///./sharenote_kv.db.

reconcile reports index entries left behind by interrupted multi-key writes
(username/email indices, short links, note-set members pointing at missing
records). Nothing is changed unless --fix is given.
"""

import argparse
import asyncio
import sys

from auth.store import CredentialStore
from core.config import get_settings
from kv.store import SQLKeyValueStore, open_store


async def _reconcile(fix: bool) -> int:
    settings = get_settings()
    kv = open_store(settings.store_url, settings.store_timeout_seconds)
    try:
        report = await CredentialStore(kv).reconcile(fix=fix)
    finally:
        await kv.close()

    sections = [
        ("Username indices", report.dangling_username_indices),
        ("Email indices", report.dangling_email_indices),
        ("Short links", report.dangling_short_links),
        ("Global index members", report.dangling_index_members),
        ("Owner index members", report.dangling_owner_members),
    ]
    print("\nShareNote -- store reconciliation")
    print("─" * 40)
    for label, entries in sections:
        print(f"  {label}: {len(entries)} dangling")
        for entry in entries:
            print(f"    - {entry}")

    if report.total == 0:
        print("\n  Store is consistent.\n")
    elif fix:
        print(f"\n  Removed {report.total} dangling entr{'y' if report.total == 1 else 'ies'}.\n")
    else:
        print("\n  Run with --fix to remove them.\n")
    return report.total


def _purge_expired() -> None:
    settings = get_settings()
    kv = open_store(settings.store_url, settings.store_timeout_seconds)
    if not isinstance(kv, SQLKeyValueStore):
        print("  Redis expires keys itself; nothing to purge.")
        asyncio.run(kv.close())
        return
    removed = kv.purge_expired()
    asyncio.run(kv.close())
    print(f"  Purged {removed} expired entr{'y' if removed == 1 else 'ies'}.")


def _serve(host: str, port: int, reload: bool) -> None:
    import uvicorn

    uvicorn.run("api.main:app", host=host, port=port, reload=reload)


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="sharenote",
        description="ShareNote server and store maintenance.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve --reload
  python main.py reconcile
  STORE_URL=redis://localhost:6379/0 python main.py reconcile --fix
        """,
    )
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true", help="Reload on code changes (development)")

    reconcile = sub.add_parser("reconcile", help="Report dangling index entries")
    reconcile.add_argument(
        "--fix",
        action="store_true",
        help="Delete the dangling entries instead of only reporting them",
    )

    sub.add_parser("purge-expired", help="Delete expired TTL rows from the SQL store")

    args = parser.parse_args()

    if args.command == "serve":
        _serve(args.host, args.port, args.reload)
    elif args.command == "reconcile":
        dangling = asyncio.run(_reconcile(args.fix))
        if dangling and not args.fix:
            sys.exit(1)
    elif args.command == "purge-expired":
        _purge_expired()
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
