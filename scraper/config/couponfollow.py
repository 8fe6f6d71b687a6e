"""
CouponFollow site configuration and pipeline tunables.

Everything the scrapers need to know about the target site lives here:
URLs, card/code selectors, browser launch flags, fingerprint defaults,
timeouts, and the category index walked by bulk runs.

Tunables are read from the environment (``.env`` supported) so CI and
the API deployment can adjust concurrency and politeness without a code
change.  Defaults are the values the pipeline was tuned against.
"""

from __future__ import annotations

import os
import random as _random
import string

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_flag(name: str) -> bool:
    return os.getenv(name, "false").lower() == "true"


# ---------------------------------------------------------------------------
# Site layout
# ---------------------------------------------------------------------------

SITE_BASE_URL = "https://couponfollow.com"
SOURCE_NAME = "CouponFollow"

# Placeholder code for offers whose code is hidden or not found.
SENTINEL_CODE = "AUTOMATIC"


def listing_url(domain: str) -> str:
    """Return the CouponFollow listing page for a merchant domain."""
    return f"{SITE_BASE_URL}/site/{domain}"


def browse_url(category: str) -> str:
    """Return the alphabetic browse page for a category bucket."""
    return f"{SITE_BASE_URL}/site/browse/{category}"


# Letters a-z plus the catch-all bucket for digits/symbols.
CATCH_ALL_CATEGORY = "0-9"
CATEGORIES = list(string.ascii_lowercase) + [CATCH_ALL_CATEGORY]

# Listing page
OFFER_CARD_SELECTOR = ".offer-card.regular-offer"
OFFER_TITLE_SELECTOR = ".offer-title"
OFFER_DESCRIPTION_SELECTOR = ".offer-description"
INLINE_CODE_SELECTOR = ".coupon-code"
COUPON_TYPE = "coupon"
VERIFIED_MARKER = "True"  # data-is-verified is compared literally
DEFAULT_DISCOUNT = "Discount"
DEFAULT_TERMS = "Terms apply"

# ---------------------------------------------------------------------------
# Browser / Playwright defaults — headless server + stealth
# ---------------------------------------------------------------------------

BROWSER_CHANNEL = "chrome"

BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-gpu",
    "--disable-dev-shm-usage",
    "--disable-extensions",
    "--hide-scrollbars",
    "--disable-web-security",
    "--disable-blink-features=AutomationControlled",
]

# Rotated per page context so concurrent pages don't share a fingerprint.
_USER_AGENT_POOL = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/129.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36",
]


def get_user_agent() -> str:
    """Return a randomly selected desktop Chrome User-Agent."""
    return _random.choice(_USER_AGENT_POOL)


_VIEWPORT_BASES = [
    (1920, 1080),
    (1366, 768),
    (1440, 900),
    (1536, 864),
]


def get_viewport() -> dict[str, int]:
    """Return a slightly randomized desktop viewport."""
    w, h = _random.choice(_VIEWPORT_BASES)
    return {
        "width": w + _random.randint(-16, 16),
        "height": h + _random.randint(-8, 8),
    }


EXTRA_HTTP_HEADERS = {
    "Accept-Language": "en-US,en;q=0.9",
}

# Registered on every context before any page script runs.  Complements
# playwright-stealth with the vendor fields CouponFollow's bot check reads.
STEALTH_INIT_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => false });
Object.defineProperty(navigator, 'vendor', { get: () => 'Google Inc.' });
Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en'] });
if (!window.chrome) { window.chrome = {}; }
if (!window.chrome.runtime) { window.chrome.runtime = {}; }
"""

WAIT_UNTIL = "domcontentloaded"

# Resource types that are never fetched; the DOM is all we read.
BLOCKED_RESOURCE_TYPES = ("image", "font", "stylesheet", "media")

BLOCKED_URL_PATTERNS = (
    "google-analytics.com",
    "googletagmanager.com",
    "doubleclick.net",
    "facebook.net",
    "hotjar.com",
    "segment.io",
)

# ---------------------------------------------------------------------------
# Timeouts
# ---------------------------------------------------------------------------

NAVIGATION_TIMEOUT_MS = _env_int("NAVIGATION_TIMEOUT_MS", 12_000)
CARD_WAIT_TIMEOUT_MS = _env_int("CARD_WAIT_TIMEOUT_MS", 5_000)
MODAL_TIMEOUT_MS = _env_int("MODAL_TIMEOUT_MS", 5_000)
CODE_WAIT_TIMEOUT_MS = _env_int("CODE_WAIT_TIMEOUT_MS", 3_000)
CODE_SETTLE_SEC = _env_float("CODE_SETTLE_SEC", 0.5)
CODE_RETRY_DELAY_SEC = _env_float("CODE_RETRY_DELAY_SEC", 1.0)
# Modal load + code wait + settle + retry delay must fit in ITEM_TIMEOUT_SEC.
ITEM_TIMEOUT_SEC = _env_float("ITEM_TIMEOUT_SEC", 10)
DOMAIN_TIMEOUT_SEC = _env_float("DOMAIN_TIMEOUT_SEC", 120)

# ---------------------------------------------------------------------------
# Concurrency, retry and politeness
# ---------------------------------------------------------------------------

RESOLVE_CONCURRENCY = _env_int("RESOLVE_CONCURRENCY", 3)
RESOLVE_BATCH_SIZE = _env_int("RESOLVE_BATCH_SIZE", 5)

DOMAIN_MAX_RETRIES = _env_int("DOMAIN_MAX_RETRIES", 2)
RETRY_DELAY_SEC = _env_float("RETRY_DELAY_SEC", 2)

DOMAIN_BATCH_SIZE = _env_int("DOMAIN_BATCH_SIZE", 3)
BATCH_DELAY_SEC = _env_float("BATCH_DELAY_SEC", 5)
CATEGORY_DELAY_SEC = _env_float("CATEGORY_DELAY_SEC", 30)

# A launched browser is reused while it was touched within this window.
SESSION_REUSE_SEC = _env_float("SESSION_REUSE_SEC", 120)

# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

COUPONS_TABLE = "coupons"
CACHE_TTL_SEC = 24 * 60 * 60
RETENTION_DAYS = 7

# Seconds a caller should wait before asking again for a pending domain.
RETRY_AFTER_SEC = 30

DRY_RUN = _env_flag("DRY_RUN")
FORCE_RUN = _env_flag("FORCE_RUN")
SAVE_DEBUG_ARTIFACTS = _env_flag("SAVE_DEBUG_ARTIFACTS")
