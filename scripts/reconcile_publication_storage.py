"""List stored publication files that have no matching record."""

from __future__ import annotations

import argparse

from app.db import SessionLocal
from app.logging import configure_logging
from app.services.publications import publication_uploads


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--delete",
        action="store_true",
        help="Remove orphaned objects instead of only listing them",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    configure_logging()
    db = SessionLocal()
    try:
        orphans = publication_uploads.reconcile_orphans(db, delete=args.delete)
        for key in orphans:
            print(key)
        action = "Removed" if args.delete else "Found"
        print(f"{action} {len(orphans)} orphaned publication files")
    finally:
        db.close()


if __name__ == "__main__":
    main()
