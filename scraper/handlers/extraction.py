"""
Selector-fallback extraction as data.

CouponFollow moves the revealed code around between markup versions:
sometimes it sits in ``<input id="code" class="input code">``, sometimes
in a ``.coupon-code`` element, sometimes only in a clipboard data
attribute.  Instead of hard-coding each fallback, a page is read through
an ordered list of ``ExtractionStrategy`` objects.  Each one names a
selector and the accessors to try on the first matching element:

    ``value``   — the form value, only for input/textarea elements
    ``@name``   — the ``name`` attribute
    ``text``    — trimmed text content

The browser only hands back a plain snapshot dict per element, so
``read_value`` is pure and can be tested without a browser.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Frame, Page, TimeoutError as PlaywrightTimeout

from errors import SelectorNotFound

logger = logging.getLogger(__name__)

VALUE = "value"
TEXT = "text"

_VALUE_TAGS = {"input", "textarea"}

# Element snapshot evaluated in-page; attributes are flattened to a dict.
_JS_SNAPSHOT = """el => ({
    tag: el.tagName.toLowerCase(),
    value: ('value' in el) ? el.value : null,
    text: el.textContent,
    attrs: Object.fromEntries(
        Array.from(el.attributes).map(a => [a.name, a.value])
    ),
})"""


def attr(name: str) -> str:
    """Accessor for the attribute *name*."""
    return f"@{name}"


# Inputs yield their value; anything else prefers the clipboard payload,
# then the code attribute, then visible text.
CODE_ACCESSORS = (VALUE, attr("data-clipboard-text"), attr("data-code"), TEXT)


@dataclass(frozen=True)
class ExtractionStrategy:
    selector: str
    accessors: tuple[str, ...] = CODE_ACCESSORS


# Priority order for the revealed-code view.
CODE_STRATEGIES = (
    ExtractionStrategy("input#code.input.code"),
    ExtractionStrategy("input.input.code"),
    ExtractionStrategy(".coupon-code"),
    ExtractionStrategy("[data-clipboard-text]"),
    ExtractionStrategy("[data-code]"),
)


def read_value(snapshot: dict[str, Any] | None, accessors: Iterable[str]) -> str | None:
    """Apply *accessors* in order to an element snapshot.

    Returns the first non-blank value, stripped, or ``None``.
    """
    if not snapshot:
        return None
    attrs = snapshot.get("attrs") or {}
    for accessor in accessors:
        if accessor == VALUE:
            raw = snapshot.get("value") if snapshot.get("tag") in _VALUE_TAGS else None
        elif accessor == TEXT:
            raw = snapshot.get("text")
        elif accessor.startswith("@"):
            raw = attrs.get(accessor[1:])
        else:
            raise ValueError(f"Unknown accessor {accessor!r}")
        if raw and raw.strip():
            return raw.strip()
    return None


def combined_selector(strategies: Iterable[ExtractionStrategy]) -> str:
    """CSS selector list matching any strategy's element."""
    return ", ".join(s.selector for s in strategies)


async def extract_first(
    target: Page | Frame,
    strategies: Iterable[ExtractionStrategy] = CODE_STRATEGIES,
) -> str | None:
    """Return the value from the first strategy that yields one."""
    for strategy in strategies:
        try:
            element = await target.query_selector(strategy.selector)
            if element is None:
                continue
            snapshot = await element.evaluate(_JS_SNAPSHOT)
        except PlaywrightError as exc:
            # Element detached between query and read.
            logger.debug("Strategy %r failed: %s", strategy.selector, exc)
            continue
        value = read_value(snapshot, strategy.accessors)
        if value:
            return value
    return None


async def await_selector(
    target: Page | Frame,
    selector: str,
    *,
    timeout_ms: int,
) -> None:
    """Wait until *selector* is attached, raising ``SelectorNotFound``."""
    try:
        await target.wait_for_selector(selector, state="attached", timeout=timeout_ms)
    except PlaywrightTimeout as exc:
        raise SelectorNotFound(selector) from exc
