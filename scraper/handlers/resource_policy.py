"""
Declarative request filtering for scraper pages.

A ``ResourcePolicy`` says which resource types and URL fragments a page
may fetch.  The browser pool installs it once, at page creation, as a
single catch-all route — scrapers never attach request handlers
themselves.

The default policy drops images, fonts, stylesheets and media (the DOM
renders fine without them and pages load several times faster) plus the
usual analytics hosts that feed bot detection.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from playwright.async_api import Page, Route

from config.couponfollow import BLOCKED_RESOURCE_TYPES, BLOCKED_URL_PATTERNS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourcePolicy:
    blocked_types: frozenset[str] = frozenset(BLOCKED_RESOURCE_TYPES)
    blocked_url_patterns: tuple[str, ...] = BLOCKED_URL_PATTERNS

    @property
    def is_permissive(self) -> bool:
        return not self.blocked_types and not self.blocked_url_patterns

    def allows(self, resource_type: str, url: str = "") -> bool:
        """Return True if a request of *resource_type* to *url* may proceed."""
        if resource_type in self.blocked_types:
            return False
        return not any(pattern in url for pattern in self.blocked_url_patterns)

    async def install(self, page: Page) -> None:
        """Route every request on *page* through this policy."""
        if self.is_permissive:
            return

        async def _filter(route: Route) -> None:
            request = route.request
            if self.allows(request.resource_type, request.url):
                await route.continue_()
            else:
                await route.abort()

        await page.route("**/*", _filter)
        logger.debug(
            "Resource policy installed (blocked types=%s)",
            ",".join(sorted(self.blocked_types)),
        )


DEFAULT_POLICY = ResourcePolicy()
ALLOW_ALL = ResourcePolicy(blocked_types=frozenset(), blocked_url_patterns=())
