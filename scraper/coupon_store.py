"""
Supabase-backed coupon store.

One row per ``(domain, code)`` in the ``coupons`` table::

    id          bigserial primary key
    domain      text not null
    code        text not null
    discount    text not null
    terms       text not null
    verified    boolean not null default false
    position    integer not null default 0
    updated_at  timestamptz not null default now()
    unique (domain, code)

Every row written by one ``save()`` shares a single ``updated_at`` and
carries its listing ``position``.  A domain's cached result is the rows
of its newest save inside the cache window, in position order; codes that
vanished from the listing keep their older timestamp, drop out of lookups
straight away, and leave the table via ``purge_stale()``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Sequence

from config.couponfollow import (
    CACHE_TTL_SEC, COUPONS_TABLE, DEFAULT_DISCOUNT, DEFAULT_TERMS, DRY_RUN,
    RETENTION_DAYS, SENTINEL_CODE,
)
from errors import PersistenceFailure
from models import DomainRecord, ResolvedOffer

logger = logging.getLogger(__name__)

_UPSERT_CHUNK_SIZE = 500  # max rows per Supabase upsert call
_CONFLICT_KEY = "domain,code"


def _parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def dedupe_rows(
    domain: str,
    offers: Sequence[ResolvedOffer],
    updated_at: str,
) -> list[dict[str, Any]]:
    """Collapse *offers* to one row per ``domain:code``, first seen wins.

    ``position`` follows the order of the surviving rows, so a lookup can
    return them in listing order.

    PostgreSQL rejects an ``INSERT … ON CONFLICT`` that names the same
    conflict key twice, so this must run before every upsert.
    """
    rows: dict[str, dict[str, Any]] = {}
    for offer in offers:
        key = f"{domain}:{offer.code}"
        if key in rows:
            continue
        rows[key] = {
            "domain": domain,
            "code": offer.code,
            "discount": offer.discount,
            "terms": offer.terms,
            "verified": offer.verified,
            "position": len(rows),
            "updated_at": updated_at,
        }
    return list(rows.values())


class CouponStore:
    """Cache reads, deduplicated upserts and retention for coupon rows."""

    def __init__(
        self,
        db: Any,
        *,
        table: str = COUPONS_TABLE,
        cache_ttl_sec: float = CACHE_TTL_SEC,
        retention_days: int = RETENTION_DAYS,
        dry_run: bool = DRY_RUN,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.db = db
        self.table = table
        self.cache_ttl_sec = cache_ttl_sec
        self.retention_days = retention_days
        self.dry_run = dry_run
        self._now = now or (lambda: datetime.now(timezone.utc))

    def lookup(self, domain: str) -> DomainRecord | None:
        """Return the cached record for *domain* if it is still fresh.

        Stale, absent and unreadable data all return ``None`` — the caller
        re-scrapes in every one of those cases.
        """
        cutoff = (self._now() - timedelta(seconds=self.cache_ttl_sec)).isoformat()
        try:
            result = (
                self.db.table(self.table)
                .select("code, discount, terms, verified, position, updated_at")
                .eq("domain", domain)
                .gt("updated_at", cutoff)
                .order("position")
                .execute()
            )
        except Exception as exc:
            logger.warning("[%s] Cache lookup failed: %s", domain, exc)
            return None

        rows = result.data or []
        if not rows:
            return None

        # Rows older than the newest save belong to offers no longer listed.
        last_updated = max(_parse_ts(row["updated_at"]) for row in rows)
        rows = [row for row in rows if _parse_ts(row["updated_at"]) == last_updated]

        offers = [
            ResolvedOffer(
                sequence_id=i,
                code=row.get("code") or SENTINEL_CODE,
                discount=row.get("discount") or DEFAULT_DISCOUNT,
                terms=row.get("terms") or DEFAULT_TERMS,
                verified=bool(row.get("verified")),
            )
            for i, row in enumerate(rows, 1)
        ]
        logger.info("[%s] Cache hit — %d coupons (updated %s)", domain, len(offers), last_updated)
        return DomainRecord(domain=domain, offers=offers, last_updated=last_updated)

    def save(self, domain: str, offers: Sequence[ResolvedOffer]) -> int:
        """Upsert *offers* for *domain*; returns the number of rows written.

        An empty list is a no-op so a failed scrape never wipes good data.
        Repeating a call leaves the table in the same state.
        """
        if not offers:
            logger.info("[%s] No offers to save — keeping existing rows", domain)
            return 0

        rows = dedupe_rows(domain, offers, self._now().isoformat())
        if len(rows) < len(offers):
            logger.info("[%s] Deduped %d → %d coupons", domain, len(offers), len(rows))

        if self.dry_run:
            logger.info("[DRY RUN] Would upsert %d coupons for %s", len(rows), domain)
            return len(rows)

        try:
            for i in range(0, len(rows), _UPSERT_CHUNK_SIZE):
                chunk = rows[i : i + _UPSERT_CHUNK_SIZE]
                self.db.table(self.table).upsert(chunk, on_conflict=_CONFLICT_KEY).execute()
        except Exception as exc:
            logger.error("[%s] Failed to store coupons: %s", domain, exc)
            raise PersistenceFailure(f"Upsert for {domain} failed: {exc}") from exc

        logger.info("[%s] Stored %d coupons", domain, len(rows))
        return len(rows)

    def purge_stale(self) -> int:
        """Delete rows not refreshed within the retention window."""
        cutoff = (self._now() - timedelta(days=self.retention_days)).isoformat()
        if self.dry_run:
            logger.info("[DRY RUN] Would delete coupons updated before %s", cutoff)
            return 0
        try:
            result = self.db.table(self.table).delete().lt("updated_at", cutoff).execute()
        except Exception as exc:
            logger.error("Failed to purge stale coupons: %s", exc)
            raise PersistenceFailure(f"Purge failed: {exc}") from exc

        count = len(result.data) if result.data else 0
        logger.info("Purged %d coupons older than %d days", count, self.retention_days)
        return count
