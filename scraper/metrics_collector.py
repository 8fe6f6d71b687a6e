"""
Post-run metrics collector — writes one row per day to scrape_metrics.

Called at the end of each bulk run to persist pipeline quality stats so
regressions are visible (code-resolution rate collapsing after a markup
change, a category suddenly enumerating zero merchants, etc.).

Usage from main.py:
    from metrics_collector import collect_run_metrics
    collect_run_metrics(db, summary, run_id=run_id, ...)
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any

logger = logging.getLogger("metrics")


def collect_run_metrics(
    db: Any,
    summary: dict[str, Any],
    *,
    run_id: str | None = None,
    runtime_seconds: int = 0,
    dry_run: bool = False,
) -> dict[str, Any]:
    """Compute and upsert run metrics from a pipeline summary.

    Returns the metrics dict regardless of whether the DB write succeeds.
    """
    results = summary.get("results", [])
    offers = [o for r in results for o in r.get("offers", [])]
    total_coupons = len(offers)
    coded = sum(1 for o in offers if o.has_code)
    verified = sum(1 for o in offers if o.verified)

    metrics: dict[str, Any] = {
        "run_date": date.today().isoformat(),
        "domains_attempted": len(results),
        "domains_ok": len(summary.get("succeeded", [])),
        "domains_failed": len(summary.get("failed", [])),
        "domains_skipped": len(summary.get("skipped", [])),
        "categories_failed": len(summary.get("failed_categories", [])),
        "total_coupons": total_coupons,
        "coded_coupons": coded,
        "verified_coupons": verified,
        "code_rate": round(coded / total_coupons * 100, 1) if total_coupons else 0,
        "runtime_seconds": runtime_seconds,
    }

    if run_id and run_id != "dry-run":
        metrics["scrape_run_id"] = run_id

    logger.info(
        "Run metrics: %d/%d domains ok (%d skipped) | %d coupons, %d with code (%.1f%%), %d verified",
        metrics["domains_ok"], metrics["domains_attempted"], metrics["domains_skipped"],
        total_coupons, coded, metrics["code_rate"], verified,
    )

    if dry_run:
        logger.info("[DRY RUN] Would upsert scrape_metrics row for %s", metrics["run_date"])
        return metrics

    try:
        db.table("scrape_metrics").upsert(metrics, on_conflict="run_date").execute()
        logger.info("Run metrics saved for %s", metrics["run_date"])
    except Exception as e:
        # Non-fatal — the scrape itself already succeeded
        logger.warning("Failed to save run metrics: %s", e)

    return metrics
