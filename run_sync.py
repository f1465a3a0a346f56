"""Command-line entry points for operators.

    python run_sync.py sync <user_id> [--platform facebook]
    python run_sync.py reconcile [<user_id>]
    python run_sync.py auto-sync
"""
import argparse
import json

from listing_aggregator import crud
from listing_aggregator.db import Base, SessionLocal, engine
from listing_aggregator.scheduler import auto_sync_pro_users
from listing_aggregator.services import sync_listings


def run_sync(args):
    db = SessionLocal()
    try:
        report = sync_listings(db, args.user_id, [args.platform] if args.platform else None)
    finally:
        db.close()
    print(json.dumps(report.to_dict(), indent=2))
    return 0 if report.success else 1


def run_reconcile(args):
    db = SessionLocal()
    try:
        drift = crud.reconcile_listings_count(db, args.user_id)
    finally:
        db.close()
    if not drift:
        print("listings_count matches the listings table for every user.")
        return 0
    for user_id, counts in drift.items():
        print(f"{user_id}: stored {counts['stored']} -> actual {counts['actual']}")
    return 0


def run_auto_sync(args):
    total = auto_sync_pro_users()
    print(f"Added {total} listing(s).")
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(description="Listing aggregator maintenance commands")
    sub = parser.add_subparsers(dest="command", required=True)

    p_sync = sub.add_parser("sync", help="sync one user's connected sites")
    p_sync.add_argument("user_id")
    p_sync.add_argument("--platform", help="only sync this site id")
    p_sync.set_defaults(func=run_sync)

    p_rec = sub.add_parser("reconcile", help="repair listings_count drift")
    p_rec.add_argument("user_id", nargs="?")
    p_rec.set_defaults(func=run_reconcile)

    p_auto = sub.add_parser("auto-sync", help="sync every pro user once")
    p_auto.set_defaults(func=run_auto_sync)

    args = parser.parse_args(argv)
    Base.metadata.create_all(bind=engine)
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
