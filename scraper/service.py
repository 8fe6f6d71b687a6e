"""
Request-facing coupon operations.

These are the handlers behind the public endpoints; the HTTP layer only
parses the request and maps return values/exceptions to responses:

    GET  /coupons?domain=D   → ``get_coupons(D)``
    POST /coupons/scrape     → ``schedule_scrape(D)`` then 202
    POST /coupons            → ``store_coupons(D, offers)``

``get_coupons`` never surfaces scrape or store errors: the caller gets
fresh cached coupons or an empty pending result with a retry hint, and
the scrape happens in the background.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any
from urllib.parse import urlparse

from config.couponfollow import (
    DEFAULT_DISCOUNT, DEFAULT_TERMS, RETRY_AFTER_SEC, SENTINEL_CODE, SOURCE_NAME,
)
from coupon_store import CouponStore
from models import ResolvedOffer
from pipeline import CouponPipeline

logger = logging.getLogger(__name__)


def normalize_domain(value: str | None) -> str:
    """Reduce a URL or host to the bare merchant domain CouponFollow uses.

    ``"https://www.Nike.com/shoes"`` → ``"nike.com"``
    """
    if not value:
        return ""
    value = value.strip().lower()
    host = urlparse(value if "://" in value else f"//{value}").hostname or ""
    if host.startswith("www."):
        host = host[4:]
    return host


def offers_from_payload(offers: list[dict[str, Any]]) -> list[ResolvedOffer]:
    """Build offers from externally supplied dicts, filling listing defaults."""
    resolved = []
    for i, raw in enumerate(offers, 1):
        code = str(raw.get("code") or "").strip() or SENTINEL_CODE
        resolved.append(
            ResolvedOffer(
                sequence_id=i,
                code=code,
                discount=raw.get("discount") or DEFAULT_DISCOUNT,
                terms=raw.get("terms") or DEFAULT_TERMS,
                verified=bool(raw.get("verified")),
                source=raw.get("source") or SOURCE_NAME,
            )
        )
    return resolved


class CouponService:
    def __init__(
        self,
        pipeline: CouponPipeline,
        store: CouponStore,
        *,
        retry_after_sec: int = RETRY_AFTER_SEC,
    ) -> None:
        self.pipeline = pipeline
        self.store = store
        self.retry_after_sec = retry_after_sec
        self._tasks: dict[str, asyncio.Task] = {}

    async def get_coupons(self, domain: str) -> dict[str, Any]:
        """Return cached coupons, or kick off a scrape and say so."""
        domain = normalize_domain(domain)
        if not domain:
            raise ValueError("Domain parameter is required")

        record = self.store.lookup(domain)
        if record is not None:
            return {
                "coupons": [o.as_dict() for o in record.offers],
                "cached": True,
                "last_updated": record.last_updated.isoformat() if record.last_updated else None,
            }

        self.schedule_scrape(domain)
        return {"coupons": [], "pending": True, "retry_after": self.retry_after_sec}

    def schedule_scrape(self, domain: str) -> asyncio.Task:
        """Start a background scrape of *domain* (fire-and-forget).

        A domain already being scraped is not scheduled twice; the running
        task is returned instead.
        """
        domain = normalize_domain(domain)
        if not domain:
            raise ValueError("Domain parameter is required")

        running = self._tasks.get(domain)
        if running is not None and not running.done():
            logger.info("[%s] Scrape already in progress", domain)
            return running

        task = asyncio.get_running_loop().create_task(
            self._scrape_and_log(domain), name=f"scrape:{domain}",
        )
        self._tasks[domain] = task

        def _forget(t: asyncio.Task) -> None:
            if self._tasks.get(domain) is t:
                del self._tasks[domain]

        task.add_done_callback(_forget)
        logger.info("[%s] Scraping started", domain)
        return task

    async def _scrape_and_log(self, domain: str) -> None:
        result = await self.pipeline.scrape_domain(domain)
        if result.get("error"):
            logger.error("[%s] Background scrape failed: %s", domain, result["error"])
        else:
            logger.info(
                "Successfully scraped and stored %d coupons for %s",
                result["coupons"], domain,
            )

    def store_coupons(self, domain: str, offers: list[dict[str, Any]] | None) -> int:
        """Deduplicate and upsert externally supplied offers.

        Raises ``ValueError`` for a bad request and lets
        ``PersistenceFailure`` through for the router to report.
        """
        domain = normalize_domain(domain)
        if not domain or offers is None:
            raise ValueError("Domain and coupons are required")
        return self.store.save(domain, offers_from_payload(offers))

    async def wait_idle(self) -> None:
        """Wait for every background scrape to finish (shutdown hook)."""
        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)
