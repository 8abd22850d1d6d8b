#!/usr/bin/env python3
"""
Purge cached transactions older than the retention window.

This helper mirrors the service's memory-pressure purge but can be executed
manually or from a scheduled job. It connects to the PostgreSQL record store
and deletes entries whose document date precedes today minus the retention
window. With ``--dry-run`` it only reports how many entries would go.
"""

import argparse
import asyncio
import json
import os
import sys
from datetime import date, timedelta
from pathlib import Path

from service_transactions.app.caching.cache_service import TransactionCacheService
from service_transactions.app.persistence import PostgresTransactionStore
from service_transactions.app.persistence.contracts import TransactionStore


async def purge(store: TransactionStore, *, retention_days: int, dry_run: bool) -> dict:
    """Purge (or count) expired entries in a started store and return the summary."""
    cutoff = date.today() - timedelta(days=retention_days)
    before = await store.count()
    expired = await store.count_older_than(cutoff)

    deleted = 0
    if not dry_run:
        deleted = await TransactionCacheService(store).cleanup_old_entries(retention_days)

    return {
        "cutoff": cutoff.isoformat(),
        "entries_before": before,
        "would_delete": expired,
        "deleted": deleted,
        "entries_after": await store.count(),
        "dry_run": dry_run,
    }


async def run(*, dsn: str, retention_days: int, dry_run: bool) -> dict:
    """Open the PostgreSQL store, purge, and close it again."""
    store = PostgresTransactionStore(dsn, min_size=1, max_size=2)
    await store.start()
    try:
        return await purge(store, retention_days=retention_days, dry_run=dry_run)
    finally:
        await store.stop()


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Purge cached transactions older than the retention window.")
    parser.add_argument("--dsn", default=os.getenv("TXPROXY_POSTGRES_DSN", "postgresql://localhost:5432/transactions"), help="PostgreSQL DSN")
    parser.add_argument("--retention-days", type=int, default=int(os.getenv("TXPROXY_CACHE_RETENTION_DAYS", 30)), help="Keep entries dated within this many days")
    parser.add_argument("--dry-run", action="store_true", help="Report how many entries would be deleted without deleting")
    parser.add_argument("--output", type=Path, default=None, help="Optional path to write JSON summary")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = _parse_args(argv)
    try:
        summary = asyncio.run(
            run(
                dsn=args.dsn,
                retention_days=args.retention_days,
                dry_run=args.dry_run,
            )
        )
    except KeyboardInterrupt:
        return 130
    except Exception as exc:
        print(f"[cache-purge] failed: {exc}", file=sys.stderr)
        return 1

    if args.dry_run:
        print(f"[cache-purge] DRY RUN - {summary['would_delete']} entries would be deleted")

    print(json.dumps(summary, indent=2))

    if args.output:
        args.output.write_text(json.dumps(summary, indent=2))

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
