"""
CouponFollow scraper orchestrator.

Walks the CouponFollow merchant directory, scrapes every merchant's
coupon listing, resolves hidden codes, and upserts the results into the
Supabase ``coupons`` table.  Every bulk run is tracked in scrape_runs.

Usage:
    python main.py                    # bulk run over a-z + 0-9
    python main.py --category a b     # bulk run over selected categories
    python main.py nike.com           # scrape a single domain

Environment variables (for CI):
    DRY_RUN=true              # scrape only, skip all DB writes
    FORCE_RUN=true            # re-scrape domains whose cache is still fresh
    RESOLVE_CONCURRENCY=3     # pages per code-resolution batch
    DOMAIN_BATCH_SIZE=3       # domains scraped concurrently in bulk runs

Exit codes:
    0  at least one domain succeeded, or every domain was skipped because
       its cached coupons are still fresh (nothing needed scraping)
    1  no domain succeeded and none was skipped as fresh, or the single
       domain given on the command line failed
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
import time
from datetime import datetime, timezone
from typing import Any

from dotenv import load_dotenv
from supabase import create_client, Client

from config.couponfollow import CATEGORIES, DRY_RUN, FORCE_RUN, RESOLVE_CONCURRENCY
from coupon_store import CouponStore
from metrics_collector import collect_run_metrics
from pipeline import CouponPipeline, summarize
from scrapers import BrowserPool

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("orchestrator")

SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_KEY = os.getenv("SUPABASE_SERVICE_KEY", "")


def _connect() -> Client:
    if not SUPABASE_URL or not SUPABASE_KEY:
        logger.error("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set")
        sys.exit(1)
    return create_client(SUPABASE_URL, SUPABASE_KEY)


# ---------------------------------------------------------------------------
# Run tracking
# ---------------------------------------------------------------------------


def _create_run(db: Client) -> str:
    """Insert a new scrape_runs row and return its id."""
    if DRY_RUN:
        logger.info("[DRY RUN] Would create scrape_runs entry")
        return "dry-run"
    row = db.table("scrape_runs").insert({"status": "running"}).execute()
    run_id: str = row.data[0]["id"]
    logger.info("Scrape run started: %s", run_id)
    return run_id


def _complete_run(
    db: Client,
    run_id: str,
    summary: dict[str, Any],
    *,
    runtime_seconds: int,
) -> None:
    if DRY_RUN:
        logger.info(
            "[DRY RUN] Would update run — status=%s, ok=%d, failed=%d",
            summary["status"], len(summary["succeeded"]), len(summary["failed"]),
        )
        return
    try:
        db.table("scrape_runs").update(
            {
                "status": summary["status"],
                "completed_at": datetime.now(timezone.utc).isoformat(),
                "total_coupons": summary["total_coupons"],
                "total_codes": summary["total_codes"],
                "domains_scraped": summary["succeeded"],
                "domains_failed": summary["failed"],
                "runtime_seconds": runtime_seconds,
            }
        ).eq("id", run_id).execute()
        logger.info("Run %s finished — status=%s", run_id, summary["status"])
    except Exception as exc:
        logger.warning("Failed to complete scrape run %s: %s", run_id, exc)


def _log_summary(summary: dict[str, Any], elapsed: float) -> None:
    logger.info("=" * 60)
    logger.info("SCRAPE COMPLETE")
    logger.info("  Status:     %s", summary["status"])
    logger.info("  Domains OK: %d", len(summary["succeeded"]))
    logger.info("  Skipped:    %d (fresh)", len(summary["skipped"]))
    logger.info("  Coupons:    %d (%d with code)", summary["total_coupons"], summary["total_codes"])
    logger.info("  Duration:   %.1f min", elapsed / 60)
    if summary["failed"]:
        logger.info("  Failed:")
        for f in summary["failed"]:
            logger.info("    - %s: %s", f["domain"], f["error"])
    for c in summary["failed_categories"]:
        logger.info("  Category %s failed: %s", c["category"], c["error"])
    logger.info("=" * 60)


# ---------------------------------------------------------------------------
# Main orchestrator
# ---------------------------------------------------------------------------


async def run(domain: str | None = None, categories: list[str] | None = None) -> int:
    """Run the pipeline and return the process exit code."""
    start = time.time()
    db = _connect()
    store = CouponStore(db)

    logger.info("=" * 60)
    logger.info("CouponFollow Scraper Starting")
    logger.info("  DRY_RUN:     %s", DRY_RUN)
    logger.info("  FORCE_RUN:   %s", FORCE_RUN)
    logger.info("  CONCURRENCY: %d", RESOLVE_CONCURRENCY)
    logger.info("  SINGLE:      %s", domain or "(all)")
    logger.info("=" * 60)

    async with BrowserPool() as pool:
        pipeline = CouponPipeline(pool, store)
        if domain:
            summary = summarize([await pipeline.scrape_domain(domain)])
        else:
            run_id = _create_run(db)
            summary = await pipeline.run_bulk(categories or CATEGORIES)
            elapsed = int(time.time() - start)
            _complete_run(db, run_id, summary, runtime_seconds=elapsed)
            collect_run_metrics(
                db, summary, run_id=run_id, runtime_seconds=elapsed, dry_run=DRY_RUN,
            )

    _log_summary(summary, time.time() - start)
    return 1 if summary["status"] == "failed" else 0


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Scrape CouponFollow coupon codes")
    parser.add_argument("domain", nargs="?", help="scrape a single merchant domain")
    parser.add_argument(
        "--category", nargs="+", choices=CATEGORIES, metavar="CAT",
        help="browse categories for a bulk run (default: all)",
    )
    return parser.parse_args(argv)


if __name__ == "__main__":
    args = _parse_args()
    sys.exit(asyncio.run(run(args.domain, args.category)))
