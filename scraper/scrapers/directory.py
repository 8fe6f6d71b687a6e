"""
Merchant directory walker.

CouponFollow lists every merchant under an alphabetic browse index
(``/site/browse/a`` … ``/site/browse/z`` plus a digits/symbols bucket).
Each entry links to ``/site/<domain>``; stripping that prefix yields the
domain.  Duplicates across categories are left alone — the store keys
rows by domain anyway.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable

from config.couponfollow import browse_url
from .base import BaseScraper

logger = logging.getLogger(__name__)

# Absolute or site-relative merchant link: captures the domain slug.
_RE_SITE_LINK = re.compile(
    r"^(?:https?://(?:www\.)?couponfollow\.com)?/site/([^/?#]+)/?(?:[?#].*)?$",
    re.IGNORECASE,
)

# Path segments under /site/ that are index pages, not merchants.
_RESERVED_SLUGS = {"browse"}

_JS_COLLECT_HREFS = """() => Array.from(document.querySelectorAll('a[href]'))
    .map(a => a.getAttribute('href'))"""


def domains_from_hrefs(hrefs: Iterable[str | None]) -> list[str]:
    """Return merchant domains linked from *hrefs*, in page order."""
    domains: list[str] = []
    seen: set[str] = set()
    for href in hrefs:
        if not href:
            continue
        m = _RE_SITE_LINK.match(href.strip())
        if not m:
            continue
        slug = m.group(1).lower()
        if slug in _RESERVED_SLUGS or "." not in slug or slug in seen:
            continue
        seen.add(slug)
        domains.append(slug)
    return domains


class DirectoryScraper(BaseScraper):
    """Enumerates merchant domains for one browse category."""

    async def scrape(self, category: str) -> list[str]:
        label = f"browse:{category}"
        async with self.open_page() as page:
            await self.goto(page, browse_url(category), label=label)
            hrefs = await page.evaluate(_JS_COLLECT_HREFS) or []

        domains = domains_from_hrefs(hrefs)
        logger.info("[%s] %d links → %d merchant domains", label, len(hrefs), len(domains))
        return domains
