"""Tests for cleanup.py exit codes."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import cleanup
from coupon_store import CouponStore


def test_purge_success(fake_db, make_offer):
    now = datetime.now(timezone.utc)
    CouponStore(fake_db, dry_run=False, now=lambda: now - timedelta(days=10)).save(
        "old.com", [make_offer()],
    )
    store = CouponStore(fake_db, dry_run=False, now=lambda: now)

    assert cleanup.run_cleanup(store) == 0
    assert fake_db.table("coupons").rows == []


def test_purge_failure(fake_db):
    fake_db.table("coupons").fail = True
    assert cleanup.run_cleanup(CouponStore(fake_db, dry_run=False)) == 1


def test_missing_credentials(monkeypatch):
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_SERVICE_KEY", raising=False)
    assert cleanup.main() == 1
