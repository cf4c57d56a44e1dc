"""
Backfill ``isDeleted=false`` on products created before soft delete existed.

Queries that filter on ``isDeleted`` skip documents missing the field, so
legacy products are invisible to the stock page until this has run. Safe to
run repeatedly.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from partsmanager.dependencies import get_local_store, get_remote_store
from partsmanager.trash import (
    ensure_all_products_have_deleted_field,
    find_products_missing_deleted_field,
)

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Backfill the isDeleted field on products")
    parser.add_argument(
        "--local",
        action="store_true",
        help="Migrate the local replica instead of the remote store",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only report how many products are missing the field",
    )
    parser.add_argument(
        "--pause-seconds",
        type=float,
        default=None,
        help="Pause between batches (defaults to settings)",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    store = get_local_store() if args.local else get_remote_store()
    if args.dry_run:
        missing = find_products_missing_deleted_field(store)
        logger.info("%d products are missing the isDeleted field", len(missing))
        return 0

    try:
        updated = ensure_all_products_have_deleted_field(store, pause_seconds=args.pause_seconds)
    except Exception as exc:
        logger.exception("Migration failed: %s", exc)
        return 1
    logger.info("Migration complete, updated %d products", updated)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
