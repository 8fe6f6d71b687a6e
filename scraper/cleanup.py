"""
Retention cleanup — delete coupon rows older than the retention window.

Run on a schedule (cron / GitHub Actions):
    python cleanup.py

Exit code 0 = purge succeeded, 1 = missing credentials or purge failed.
"""

from __future__ import annotations

import logging
import os
import sys

from dotenv import load_dotenv

from coupon_store import CouponStore
from errors import PersistenceFailure

load_dotenv()

logger = logging.getLogger("cleanup")


def run_cleanup(store: CouponStore) -> int:
    """Purge stale rows; returns a process exit code."""
    try:
        deleted = store.purge_stale()
    except PersistenceFailure as exc:
        logger.error("Cleanup failed: %s", exc)
        return 1
    logger.info("Cleanup complete — %d rows deleted", deleted)
    return 0


def main() -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    url = os.getenv("SUPABASE_URL", "")
    key = os.getenv("SUPABASE_SERVICE_KEY", "")
    if not url or not key:
        logger.error("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set")
        return 1

    from supabase import create_client

    return run_cleanup(CouponStore(create_client(url, key)))


if __name__ == "__main__":
    sys.exit(main())
