"""
Failure taxonomy for the coupon pipeline.

Only ``LaunchFailure`` and ``PersistenceFailure`` escape their stage and
reach the orchestrator's retry loop.  The timeout/selector errors are
raised and caught at the seam where they happen and degrade a single
field, page or offer instead of the whole domain.
"""

from __future__ import annotations


class ScraperError(Exception):
    """Base class for pipeline errors."""


class LaunchFailure(ScraperError):
    """The browser process could not be started."""


class NavigationTimeout(ScraperError):
    """A page did not finish loading in time; extraction continues."""

    def __init__(self, url: str, timeout_ms: int) -> None:
        super().__init__(f"Navigation to {url} timed out after {timeout_ms}ms")
        self.url = url
        self.timeout_ms = timeout_ms


class SelectorNotFound(ScraperError):
    """None of the expected elements appeared; fields fall back to defaults."""

    def __init__(self, selector: str) -> None:
        super().__init__(f"No element matched {selector!r}")
        self.selector = selector


class ResolutionTimeout(ScraperError):
    """Resolving one offer's code took longer than the per-item budget."""

    def __init__(self, local_id: str, timeout_sec: float) -> None:
        super().__init__(f"Code resolution for {local_id} exceeded {timeout_sec}s")
        self.local_id = local_id
        self.timeout_sec = timeout_sec


class PersistenceFailure(ScraperError):
    """The coupon store rejected a read or write."""
