"""Offer records passed between the pipeline stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from config.couponfollow import SENTINEL_CODE, SOURCE_NAME


@dataclass
class OfferCandidate:
    """One coupon card as read from a listing page.

    ``sequence_id`` and ``local_id`` only correlate a candidate with its
    resolution outcome during a scan; they are never persisted.  ``code``
    is the only field the resolver mutates.
    """

    sequence_id: int
    discount: str
    terms: str
    verified: bool = False
    code: str = SENTINEL_CODE
    source: str = SOURCE_NAME
    detail_ref: str | None = None
    local_id: str = ""

    def __post_init__(self) -> None:
        if not self.local_id:
            self.local_id = f"offer-{self.sequence_id}"

    @property
    def is_pending(self) -> bool:
        """True when the code must be fetched from the detail view."""
        return bool(self.detail_ref) and self.code == SENTINEL_CODE

    def to_resolved(self) -> "ResolvedOffer":
        return ResolvedOffer(
            sequence_id=self.sequence_id,
            code=self.code or SENTINEL_CODE,
            discount=self.discount,
            terms=self.terms,
            verified=self.verified,
            source=self.source,
        )


@dataclass(frozen=True)
class ResolvedOffer:
    sequence_id: int
    code: str
    discount: str
    terms: str
    verified: bool
    source: str = SOURCE_NAME

    @property
    def has_code(self) -> bool:
        return self.code != SENTINEL_CODE

    def as_dict(self) -> dict[str, Any]:
        """Serialize in the shape API clients already consume."""
        return {
            "id": self.sequence_id,
            "code": self.code,
            "discount": self.discount,
            "terms": self.terms,
            "verified": self.verified,
            "source": self.source,
        }


@dataclass
class DomainRecord:
    domain: str
    offers: list[ResolvedOffer] = field(default_factory=list)
    last_updated: datetime | None = None
