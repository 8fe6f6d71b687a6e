"""
Batch resolver for hidden coupon codes.

Many CouponFollow cards hide the code behind a modal; the modal has its
own URL (``data-modal``) that renders the code in an input or a
clipboard button.  Resolving a domain means loading one such page per
pending offer, which is where the time goes.

Scheduling:
  * Pending offers are split into batches of ``batch_size``; batches run
    strictly one after another.
  * Each batch opens ``min(batch_size, concurrency)`` pages and deals the
    offers out round-robin.  Every page works through its share
    sequentially; the pages run concurrently on the event loop.
  * Every page of a batch is closed before the next batch starts.

Failure policy: an offer that errors or exceeds ``item_timeout_sec``
keeps the sentinel code.  Nothing raised while resolving one offer may
reach its siblings.  The only error ``resolve()`` lets through is
``LaunchFailure``: without a browser every offer would degrade, so the
whole domain attempt fails and the orchestrator retries it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from playwright.async_api import Page

from config.couponfollow import (
    CODE_RETRY_DELAY_SEC, CODE_SETTLE_SEC, CODE_WAIT_TIMEOUT_MS,
    ITEM_TIMEOUT_SEC, MODAL_TIMEOUT_MS, RESOLVE_BATCH_SIZE,
    RESOLVE_CONCURRENCY, WAIT_UNTIL,
)
from errors import LaunchFailure, ResolutionTimeout, SelectorNotFound
from handlers.extraction import (
    CODE_STRATEGIES, ExtractionStrategy, await_selector, combined_selector,
    extract_first,
)
from models import OfferCandidate
from .base import BrowserPool

logger = logging.getLogger(__name__)


def _chunks(items: Sequence[OfferCandidate], size: int) -> list[list[OfferCandidate]]:
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


class CodeResolver:
    """Fill in ``code`` for pending offer candidates, in place."""

    def __init__(
        self,
        pool: BrowserPool,
        *,
        concurrency: int = RESOLVE_CONCURRENCY,
        batch_size: int = RESOLVE_BATCH_SIZE,
        item_timeout_sec: float = ITEM_TIMEOUT_SEC,
        navigation_timeout_ms: int = MODAL_TIMEOUT_MS,
        code_wait_timeout_ms: int = CODE_WAIT_TIMEOUT_MS,
        settle_sec: float = CODE_SETTLE_SEC,
        retry_delay_sec: float = CODE_RETRY_DELAY_SEC,
        strategies: Sequence[ExtractionStrategy] = CODE_STRATEGIES,
    ) -> None:
        if concurrency < 1 or batch_size < 1:
            raise ValueError("concurrency and batch_size must be positive")
        self.pool = pool
        self.concurrency = concurrency
        self.batch_size = batch_size
        self.item_timeout_sec = item_timeout_sec
        self.navigation_timeout_ms = navigation_timeout_ms
        self.code_wait_timeout_ms = code_wait_timeout_ms
        self.settle_sec = settle_sec
        self.retry_delay_sec = retry_delay_sec
        self.strategies = tuple(strategies)
        self._wait_selector = combined_selector(self.strategies)

    async def resolve(
        self,
        candidates: list[OfferCandidate],
        *,
        label: str = "",
    ) -> list[OfferCandidate]:
        """Resolve every pending candidate and return the same list."""
        pending = [c for c in candidates if c.is_pending]
        if not pending:
            return candidates

        batches = _chunks(pending, self.batch_size)
        logger.info(
            "[%s] Resolving %d codes (%d bypassed) in %d batch(es)",
            label, len(pending), len(candidates) - len(pending), len(batches),
        )
        for batch_no, batch in enumerate(batches, 1):
            try:
                await self._resolve_batch(batch, label=label)
            except LaunchFailure:
                raise
            except Exception as exc:
                # Batch setup failed (browser gone, context refused); these
                # offers keep the sentinel and the next batch gets a fresh try.
                logger.warning(
                    "[%s] Batch %d/%d failed: %s", label, batch_no, len(batches), exc,
                )

        resolved = sum(1 for c in pending if not c.is_pending)
        logger.info("[%s] Resolved %d/%d hidden codes", label, resolved, len(pending))
        return candidates

    async def _resolve_batch(self, batch: list[OfferCandidate], *, label: str) -> None:
        pool_size = min(self.batch_size, self.concurrency, len(batch))
        pages: list[Page] = []
        async with self.pool.session() as browser:
            try:
                for _ in range(pool_size):
                    pages.append(await self.pool.new_page(browser))

                slots: list[list[OfferCandidate]] = [[] for _ in pages]
                for i, candidate in enumerate(batch):
                    slots[i % len(pages)].append(candidate)

                await asyncio.gather(
                    *(self._work_slot(page, items, label) for page, items in zip(pages, slots)),
                    return_exceptions=True,
                )
            finally:
                for page in pages:
                    await self.pool.close_page(page)

    async def _work_slot(self, page: Page, items: list[OfferCandidate], label: str) -> None:
        for candidate in items:
            await self._resolve_one(page, candidate, label)

    async def _resolve_one(self, page: Page, candidate: OfferCandidate, label: str) -> None:
        try:
            code = await self._fetch_with_timeout(page, candidate)
        except ResolutionTimeout as exc:
            logger.warning("[%s] %s", label, exc)
            return
        except Exception as exc:
            logger.warning(
                "[%s] Error getting code for %s: %s", label, candidate.local_id, exc,
            )
            return

        if code:
            candidate.code = code
            logger.debug("[%s] %s → %s", label, candidate.local_id, code)
        else:
            logger.info("[%s] No code found for %s", label, candidate.local_id)

    async def _fetch_with_timeout(self, page: Page, candidate: OfferCandidate) -> str | None:
        try:
            return await asyncio.wait_for(
                self._fetch_code(page, candidate.detail_ref),
                timeout=self.item_timeout_sec,
            )
        except asyncio.TimeoutError as exc:
            raise ResolutionTimeout(candidate.local_id, self.item_timeout_sec) from exc

    async def _fetch_code(self, page: Page, url: str) -> str | None:
        await page.goto(url, wait_until=WAIT_UNTIL, timeout=self.navigation_timeout_ms)

        try:
            await await_selector(page, self._wait_selector, timeout_ms=self.code_wait_timeout_ms)
        except SelectorNotFound:
            logger.debug("No code element on %s yet", url)

        await asyncio.sleep(self.settle_sec)
        code = await extract_first(page, self.strategies)
        if code:
            return code

        # Some modals render the code after a client-side fetch.
        await asyncio.sleep(self.retry_delay_sec)
        return await extract_first(page, self.strategies)
