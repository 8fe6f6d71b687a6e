"""Tests for service.py — cache-or-schedule reads and direct stores."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest

from coupon_store import CouponStore
from errors import PersistenceFailure
from service import CouponService, normalize_domain, offers_from_payload


class StubPipeline:
    def __init__(self, store, *, delay=0.0, error=None):
        self.store = store
        self.delay = delay
        self.error = error
        self.calls: list[str] = []

    async def scrape_domain(self, domain):
        self.calls.append(domain)
        await asyncio.sleep(self.delay)
        if self.error:
            return {"domain": domain, "coupons": 0, "codes": 0, "offers": [], "error": self.error}
        self.store.save(domain, offers_from_payload([{"code": "BG10"}]))
        return {"domain": domain, "coupons": 1, "codes": 1, "offers": [], "error": None}


@pytest.fixture
def store(fake_db):
    return CouponStore(fake_db, dry_run=False)


class TestNormalizeDomain:

    @pytest.mark.parametrize("raw,expected", [
        ("nike.com", "nike.com"),
        ("  Nike.COM ", "nike.com"),
        ("www.nike.com", "nike.com"),
        ("https://www.nike.com/shoes?x=1", "nike.com"),
        ("http://shop.nike.com", "shop.nike.com"),
        ("", ""),
        (None, ""),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_domain(raw) == expected


class TestGetCoupons:

    def test_cached_result(self, store, make_offer):
        store.save("nike.com", [make_offer("SAVE20")])
        pipeline = StubPipeline(store)
        service = CouponService(pipeline, store)

        result = asyncio.run(service.get_coupons("https://www.nike.com"))

        assert result["cached"] is True
        assert result["coupons"][0]["code"] == "SAVE20"
        assert set(result["coupons"][0]) == {"id", "code", "discount", "terms", "verified", "source"}
        assert result["last_updated"]
        assert pipeline.calls == []

    def test_miss_schedules_scrape(self, store):
        pipeline = StubPipeline(store)
        service = CouponService(pipeline, store, retry_after_sec=30)

        async def _run():
            first = await service.get_coupons("nike.com")
            await service.wait_idle()
            second = await service.get_coupons("nike.com")
            return first, second

        first, second = asyncio.run(_run())

        assert first == {"coupons": [], "pending": True, "retry_after": 30}
        assert pipeline.calls == ["nike.com"]
        assert second["cached"] is True
        assert second["coupons"][0]["code"] == "BG10"

    def test_in_flight_scrape_is_not_duplicated(self, store):
        pipeline = StubPipeline(store, delay=0.05)
        service = CouponService(pipeline, store)

        async def _run():
            await service.get_coupons("nike.com")
            await service.get_coupons("nike.com")
            await service.wait_idle()

        asyncio.run(_run())
        assert pipeline.calls == ["nike.com"]

    def test_failed_background_scrape_is_not_raised(self, store):
        pipeline = StubPipeline(store, error="Failed after 2 attempts")
        service = CouponService(pipeline, store)

        async def _run():
            result = await service.get_coupons("down.com")
            await service.wait_idle()
            return result

        assert asyncio.run(_run())["pending"] is True
        assert store.lookup("down.com") is None

    def test_missing_domain(self, store):
        service = CouponService(StubPipeline(store), store)
        with pytest.raises(ValueError):
            asyncio.run(service.get_coupons(""))


class TestStoreCoupons:

    def test_store_dedupes(self, store):
        service = CouponService(MagicMock(), store)
        written = service.store_coupons("nike.com", [
            {"code": "A", "discount": "10%"},
            {"code": "A", "discount": "dup"},
            {"code": "B"},
        ])
        assert written == 2
        offers = store.lookup("nike.com").offers
        assert [(o.code, o.discount) for o in offers] == [("A", "10%"), ("B", "Discount")]

    @pytest.mark.parametrize("domain,offers", [("", []), ("nike.com", None)])
    def test_bad_request(self, store, domain, offers):
        with pytest.raises(ValueError):
            CouponService(MagicMock(), store).store_coupons(domain, offers)

    def test_persistence_failure_propagates(self, fake_db):
        fake_db.table("coupons").fail = True
        service = CouponService(MagicMock(), CouponStore(fake_db, dry_run=False))
        with pytest.raises(PersistenceFailure):
            service.store_coupons("nike.com", [{"code": "A"}])


def test_payload_defaults():
    [offer] = offers_from_payload([{"code": "  ", "verified": 1}])
    assert offer.code == "AUTOMATIC"
    assert offer.discount == "Discount"
    assert offer.terms == "Terms apply"
    assert offer.verified is True
    assert offer.source == "CouponFollow"
