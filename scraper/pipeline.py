"""
Per-domain and bulk coupon pipeline.

Per domain:  listing scrape → hidden-code resolution → dedup + upsert.
Bulk:        for each browse category, enumerate domains and push them
             through the per-domain flow in small concurrent batches with
             politeness delays between batches and categories.

A domain is retried a fixed number of times with a fixed delay; after
that it is recorded as failed and the run moves on.  No single domain or
category can abort a bulk run.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence

from config.couponfollow import (
    BATCH_DELAY_SEC, CATEGORIES, CATEGORY_DELAY_SEC, DOMAIN_BATCH_SIZE,
    DOMAIN_MAX_RETRIES, DOMAIN_TIMEOUT_SEC, FORCE_RUN, RETRY_DELAY_SEC,
)
from coupon_store import CouponStore
from models import ResolvedOffer
from scrapers import BrowserPool, CodeResolver, DirectoryScraper, ListingScraper

logger = logging.getLogger("orchestrator")


def _failed_result(domain: str, error: str) -> dict[str, Any]:
    return {"domain": domain, "coupons": 0, "codes": 0, "offers": [], "error": error}


class CouponPipeline:
    """Sequences the scrapers and the store for one or many domains."""

    def __init__(
        self,
        pool: BrowserPool,
        store: CouponStore,
        *,
        listing: ListingScraper | None = None,
        resolver: CodeResolver | None = None,
        directory: DirectoryScraper | None = None,
        max_retries: int = DOMAIN_MAX_RETRIES,
        retry_delay_sec: float = RETRY_DELAY_SEC,
        domain_timeout_sec: float = DOMAIN_TIMEOUT_SEC,
        domain_batch_size: int = DOMAIN_BATCH_SIZE,
        batch_delay_sec: float = BATCH_DELAY_SEC,
        category_delay_sec: float = CATEGORY_DELAY_SEC,
        skip_fresh: bool = not FORCE_RUN,
    ) -> None:
        self.pool = pool
        self.store = store
        self.listing = listing or ListingScraper(pool)
        self.resolver = resolver or CodeResolver(pool)
        self.directory = directory or DirectoryScraper(pool)
        self.max_retries = max_retries
        self.retry_delay_sec = retry_delay_sec
        self.domain_timeout_sec = domain_timeout_sec
        self.domain_batch_size = max(1, domain_batch_size)
        self.batch_delay_sec = batch_delay_sec
        self.category_delay_sec = category_delay_sec
        self.skip_fresh = skip_fresh

    # ------------------------------------------------------------------
    # One domain
    # ------------------------------------------------------------------

    async def process_domain(self, domain: str) -> list[ResolvedOffer]:
        """Run the pipeline once for *domain*; any stage may raise."""
        candidates = await self.listing.scrape(domain)
        await self.resolver.resolve(candidates, label=domain)
        offers = [c.to_resolved() for c in candidates]
        self.store.save(domain, offers)
        return offers

    async def scrape_domain(self, domain: str) -> dict[str, Any]:
        """Scrape *domain* with timeout and retry.  Never raises."""
        for attempt in range(1, self.max_retries + 1):
            logger.info("[%s] Starting scrape — attempt %d/%d", domain, attempt, self.max_retries)
            try:
                offers = await asyncio.wait_for(
                    self.process_domain(domain),
                    timeout=self.domain_timeout_sec,
                )
                return {
                    "domain": domain,
                    "coupons": len(offers),
                    "codes": sum(1 for o in offers if o.has_code),
                    "offers": offers,
                    "error": None,
                }
            except asyncio.TimeoutError:
                logger.error(
                    "[%s] Timed out after %.0fs (attempt %d)",
                    domain, self.domain_timeout_sec, attempt,
                )
            except Exception as exc:
                logger.error("[%s] Failed (attempt %d): %s", domain, attempt, exc, exc_info=True)

            if attempt < self.max_retries:
                logger.info("[%s] Retrying in %.0fs...", domain, self.retry_delay_sec)
                await asyncio.sleep(self.retry_delay_sec)

        return _failed_result(domain, f"Failed after {self.max_retries} attempts")

    # ------------------------------------------------------------------
    # Bulk run
    # ------------------------------------------------------------------

    async def run_bulk(self, categories: Sequence[str] = CATEGORIES) -> dict[str, Any]:
        """Enumerate and scrape every domain in *categories*."""
        results: list[dict[str, Any]] = []
        skipped: list[str] = []
        failed_categories: list[dict[str, str]] = []

        for cat_index, category in enumerate(categories):
            if cat_index:
                logger.info("Pausing %.0fs before category %r", self.category_delay_sec, category)
                await asyncio.sleep(self.category_delay_sec)

            try:
                domains = await self.directory.scrape(category)
            except Exception as exc:
                logger.error("[browse:%s] Enumeration failed: %s", category, exc)
                failed_categories.append({"category": category, "error": str(exc)})
                continue

            if self.skip_fresh:
                fresh = {d for d in domains if self.store.lookup(d) is not None}
                if fresh:
                    logger.info("[browse:%s] Skipping %d fresh domains", category, len(fresh))
                    skipped.extend(d for d in domains if d in fresh)
                    domains = [d for d in domains if d not in fresh]

            results.extend(await self._run_batches(domains, category))
            await self.pool.evict_idle()

        return summarize(results, skipped=skipped, failed_categories=failed_categories)

    async def _run_batches(self, domains: list[str], category: str) -> list[dict[str, Any]]:
        results: list[dict[str, Any]] = []
        size = self.domain_batch_size
        batches = [domains[i : i + size] for i in range(0, len(domains), size)]
        for batch_index, batch in enumerate(batches):
            if batch_index:
                await asyncio.sleep(self.batch_delay_sec)
            logger.info(
                "[browse:%s] Batch %d/%d: %s",
                category, batch_index + 1, len(batches), ", ".join(batch),
            )
            outcomes = await asyncio.gather(
                *(self.scrape_domain(d) for d in batch),
                return_exceptions=True,
            )
            for domain, outcome in zip(batch, outcomes):
                if isinstance(outcome, Exception):
                    logger.error("[%s] Unhandled exception: %s", domain, outcome)
                    outcome = _failed_result(domain, str(outcome))
                results.append(outcome)
        return results


def summarize(
    results: list[dict[str, Any]],
    *,
    skipped: list[str] | None = None,
    failed_categories: list[dict[str, str]] | None = None,
) -> dict[str, Any]:
    """Aggregate per-domain results into a run summary.

    A run with no successful (or still-fresh) domain is ``failed``.
    """
    skipped = skipped or []
    failed_categories = failed_categories or []
    succeeded = [r["domain"] for r in results if not r.get("error")]
    failed = [{"domain": r["domain"], "error": r["error"]} for r in results if r.get("error")]

    if not succeeded and not skipped:
        status = "failed"
    elif failed or failed_categories:
        status = "completed_with_errors"
    else:
        status = "completed"

    return {
        "status": status,
        "results": results,
        "succeeded": succeeded,
        "failed": failed,
        "skipped": skipped,
        "failed_categories": failed_categories,
        "total_coupons": sum(r.get("coupons", 0) for r in results),
        "total_codes": sum(r.get("codes", 0) for r in results),
    }
