"""
Offer-list scraper for CouponFollow merchant pages.

Flow:
  1. Open a hardened page (images/fonts/stylesheets blocked).
  2. Navigate to ``/site/<domain>`` — a navigation timeout is tolerated.
  3. Wait up to ``CARD_WAIT_TIMEOUT_MS`` for offer cards — also tolerated.
  4. Snapshot every card in one ``evaluate()`` call.
  5. Turn the coupon-type snapshots into ``OfferCandidate`` objects in
     DOM order.  Cards whose code is hidden carry a ``detail_ref`` and are
     left for the code resolver.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urljoin

from config.couponfollow import (
    CARD_WAIT_TIMEOUT_MS, COUPON_TYPE, DEFAULT_DISCOUNT, DEFAULT_TERMS,
    INLINE_CODE_SELECTOR, OFFER_CARD_SELECTOR, OFFER_DESCRIPTION_SELECTOR,
    OFFER_TITLE_SELECTOR, SENTINEL_CODE, SITE_BASE_URL, VERIFIED_MARKER,
    listing_url,
)
from errors import SelectorNotFound
from handlers.extraction import await_selector
from models import OfferCandidate
from .base import BaseScraper

logger = logging.getLogger(__name__)

# One round-trip for all cards; missing elements come back as null.
_JS_EXTRACT_CARDS = """(sel) => Array.from(document.querySelectorAll(sel.card)).map(el => {
    const text = (s) => { const n = el.querySelector(s); return n ? n.textContent : null; };
    const codeEl = el.querySelector(sel.code);
    return {
        type: el.getAttribute('data-type'),
        title: text(sel.title),
        description: text(sel.description),
        verified: el.getAttribute('data-is-verified'),
        inline_code: codeEl ? codeEl.textContent : null,
        clipboard: el.getAttribute('data-clipboard-text')
            || (codeEl ? codeEl.getAttribute('data-clipboard-text') : null),
        data_code: el.getAttribute('data-code'),
        modal: el.getAttribute('data-modal'),
    };
})"""

_CARD_SELECTORS = {
    "card": OFFER_CARD_SELECTOR,
    "title": OFFER_TITLE_SELECTOR,
    "description": OFFER_DESCRIPTION_SELECTOR,
    "code": INLINE_CODE_SELECTOR,
}


def _clean(value: str | None) -> str:
    """Collapse whitespace; ``None`` becomes an empty string."""
    return " ".join(value.split()) if value else ""


def build_candidates(raw_cards: list[dict[str, Any]]) -> list[OfferCandidate]:
    """Convert card snapshots into offer candidates.

    Only ``data-type="coupon"`` cards count.  Missing titles/descriptions
    fall back to the listing defaults, ``verified`` is a literal match
    against the site's ``"True"`` marker, and the code comes from the
    inline code element, then the clipboard/code attributes, else the
    sentinel.
    """
    candidates: list[OfferCandidate] = []
    for raw in raw_cards:
        if raw.get("type") != COUPON_TYPE:
            continue
        code = (
            _clean(raw.get("inline_code"))
            or _clean(raw.get("clipboard"))
            or _clean(raw.get("data_code"))
            or SENTINEL_CODE
        )
        modal = _clean(raw.get("modal"))
        candidates.append(
            OfferCandidate(
                sequence_id=len(candidates) + 1,
                discount=_clean(raw.get("title")) or DEFAULT_DISCOUNT,
                terms=_clean(raw.get("description")) or DEFAULT_TERMS,
                verified=raw.get("verified") == VERIFIED_MARKER,
                code=code,
                detail_ref=urljoin(SITE_BASE_URL, modal) if modal else None,
            )
        )
    return candidates


class ListingScraper(BaseScraper):
    """Reads the offer cards for one merchant domain."""

    async def scrape(self, domain: str) -> list[OfferCandidate]:
        async with self.open_page() as page:
            await self.goto(page, listing_url(domain), label=domain)

            try:
                await await_selector(page, OFFER_CARD_SELECTOR, timeout_ms=CARD_WAIT_TIMEOUT_MS)
            except SelectorNotFound:
                logger.info("[%s] Offer cards not found — continuing with extraction", domain)

            raw_cards = await page.evaluate(_JS_EXTRACT_CARDS, _CARD_SELECTORS) or []
            if not raw_cards:
                await self.save_debug_info(page, f"{domain}_no_cards")

        candidates = build_candidates(raw_cards)
        pending = sum(1 for c in candidates if c.is_pending)
        logger.info(
            "[%s] %d cards, %d coupons (%d with inline code, %d pending)",
            domain, len(raw_cards), len(candidates),
            len(candidates) - pending, pending,
        )
        return candidates
