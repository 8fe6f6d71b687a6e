"""Shared fixtures for the coupon scraper test suite."""

from __future__ import annotations

import asyncio
import sys
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

# Ensure the scraper package is importable from tests/
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from playwright.async_api import TimeoutError as PlaywrightTimeout

from errors import LaunchFailure
from handlers.resource_policy import ALLOW_ALL
from models import OfferCandidate, ResolvedOffer


# ---------------------------------------------------------------------------
# In-memory stand-in for the Supabase query builder
# ---------------------------------------------------------------------------


def _ts(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class _Result:
    def __init__(self, data: list[dict[str, Any]]) -> None:
        self.data = data


class FakeQuery:
    def __init__(self, table: "FakeTable", op: str, payload: Any = None, on_conflict: str = "") -> None:
        self.table = table
        self.op = op
        self.payload = payload
        self.on_conflict = on_conflict
        self.filters: list = []
        self.order_key: str | None = None

    def eq(self, col, val):
        self.filters.append(lambda r: r.get(col) == val)
        return self

    def gt(self, col, val):
        self.filters.append(lambda r: _ts(r[col]) > _ts(val))
        return self

    def lt(self, col, val):
        self.filters.append(lambda r: _ts(r[col]) < _ts(val))
        return self

    def order(self, col, desc=False):
        self.order_key = col
        return self

    def _matches(self, row):
        return all(f(row) for f in self.filters)

    def execute(self):
        return getattr(self.table, f"_{self.op}")(self)


class FakeTable:
    def __init__(self) -> None:
        self.rows: list[dict[str, Any]] = []
        self.upsert_calls = 0
        self._next_id = 1
        self.fail = False

    def select(self, columns="*"):
        return FakeQuery(self, "select")

    def upsert(self, rows, on_conflict=""):
        return FakeQuery(self, "upsert", rows, on_conflict)

    def delete(self):
        return FakeQuery(self, "delete")

    def _select(self, q):
        rows = [dict(r) for r in self.rows if q._matches(r)]
        if q.order_key:
            rows.sort(key=lambda r: r[q.order_key])
        return _Result(rows)

    def _upsert(self, q):
        if self.fail:
            raise RuntimeError("connection reset by peer")
        self.upsert_calls += 1
        payload = q.payload if isinstance(q.payload, list) else [q.payload]
        keys = q.on_conflict.split(",")
        written = []
        for row in payload:
            existing = next(
                (r for r in self.rows if all(r.get(k) == row.get(k) for k in keys)),
                None,
            )
            if existing is not None:
                existing.update(row)
                written.append(dict(existing))
            else:
                new = {"id": self._next_id, **row}
                self._next_id += 1
                self.rows.append(new)
                written.append(dict(new))
        return _Result(written)

    def _delete(self, q):
        if self.fail:
            raise RuntimeError("permission denied")
        gone = [r for r in self.rows if q._matches(r)]
        self.rows = [r for r in self.rows if not q._matches(r)]
        return _Result(gone)


class FakeSupabase:
    def __init__(self) -> None:
        self.tables: dict[str, FakeTable] = defaultdict(FakeTable)

    def table(self, name: str) -> FakeTable:
        return self.tables[name]


@pytest.fixture
def fake_db():
    return FakeSupabase()


# ---------------------------------------------------------------------------
# Fake browser pages
# ---------------------------------------------------------------------------


class FakeElement:
    def __init__(self, snapshot: dict[str, Any]) -> None:
        self.snapshot = snapshot

    async def evaluate(self, js):
        return self.snapshot


class LateDom(dict):
    """DOM whose elements only appear after *hidden_queries* lookups."""

    def __init__(self, elements: dict[str, Any], hidden_queries: int) -> None:
        super().__init__(elements)
        self.hidden_queries = hidden_queries


class FakeSite:
    """Listing pages (url → card snapshots) and modal pages.

    A modal entry is a ``{selector: snapshot}`` dict, an exception to
    raise from ``goto``, or ``"hang"`` to never finish loading.
    """

    def __init__(self, listings=None, modals=None) -> None:
        self.listings: dict[str, list[dict[str, Any]]] = listings or {}
        self.modals: dict[str, Any] = modals or {}
        self.visits: list[str] = []


class FakePage:
    def __init__(self, site: FakeSite) -> None:
        self.site = site
        self.url = "about:blank"
        self.closed = False
        self._queries = 0
        self.context = self

    async def goto(self, url, **kwargs):
        self.site.visits.append(url)
        behaviour = self.site.modals.get(url)
        if isinstance(behaviour, Exception):
            raise behaviour
        if behaviour == "hang":
            await asyncio.sleep(60)
        self.url = url
        self._queries = 0

    async def wait_for_selector(self, selector, **kwargs):
        if not self.site.modals.get(self.url) and not self.site.listings.get(self.url):
            raise PlaywrightTimeout(f"Timeout waiting for {selector}")

    async def query_selector(self, selector):
        dom = self.site.modals.get(self.url) or {}
        self._queries += 1
        if isinstance(dom, LateDom) and self._queries <= dom.hidden_queries:
            return None
        snapshot = dom.get(selector) if isinstance(dom, dict) else None
        return FakeElement(snapshot) if snapshot else None

    async def evaluate(self, js, arg=None):
        return self.site.listings.get(self.url, [])

    async def close(self):
        self.closed = True


class FakePool:
    """Implements the BrowserPool surface the scrapers use."""

    policy = ALLOW_ALL

    def __init__(self, site: FakeSite | None = None) -> None:
        self.site = site or FakeSite()
        self.pages: list[FakePage] = []
        self.sessions = 0
        self.open_pages = 0
        self.max_open_pages = 0
        self.evictions = 0
        self.fail_new_page = False
        self.fail_launch = False

    @asynccontextmanager
    async def session(self):
        if self.fail_launch:
            raise LaunchFailure("Chromium failed to launch: Executable doesn't exist")
        self.sessions += 1
        yield "browser"

    async def new_page(self, browser, policy=None):
        if self.fail_new_page:
            raise RuntimeError("Target page, context or browser has been closed")
        page = FakePage(self.site)
        self.pages.append(page)
        self.open_pages += 1
        self.max_open_pages = max(self.max_open_pages, self.open_pages)
        return page

    async def close_page(self, page):
        await page.close()
        self.open_pages -= 1

    async def evict_idle(self):
        self.evictions += 1
        return False


@pytest.fixture
def fake_site():
    return FakeSite()


@pytest.fixture
def fake_pool(fake_site):
    return FakePool(fake_site)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_card():
    """Factory for raw listing-card snapshots as returned by the page."""

    def _make(
        *,
        type="coupon",
        title="20% Off Sitewide",
        description="Valid on full-price items",
        verified="True",
        inline_code=None,
        clipboard=None,
        data_code=None,
        modal=None,
    ):
        return {
            "type": type,
            "title": title,
            "description": description,
            "verified": verified,
            "inline_code": inline_code,
            "clipboard": clipboard,
            "data_code": data_code,
            "modal": modal,
        }

    return _make


@pytest.fixture
def make_offer():
    def _make(code="SAVE20", *, discount="20% Off", terms="Sitewide", verified=True, sequence_id=1):
        return ResolvedOffer(
            sequence_id=sequence_id,
            code=code,
            discount=discount,
            terms=terms,
            verified=verified,
        )

    return _make


@pytest.fixture
def make_candidate():
    def _make(sequence_id=1, *, code="AUTOMATIC", detail_ref=None):
        return OfferCandidate(
            sequence_id=sequence_id,
            discount=f"Offer {sequence_id}",
            terms="Terms apply",
            code=code,
            detail_ref=detail_ref,
        )

    return _make


def code_snapshot(code: str, *, tag: str = "input") -> dict[str, Any]:
    """Element snapshot for a revealed-code element."""
    if tag == "input":
        return {"tag": "input", "value": code, "text": "", "attrs": {"id": "code"}}
    return {"tag": tag, "value": None, "text": f"  {code}  ", "attrs": {}}
