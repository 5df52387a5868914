"""Core data models for AstroWatcher."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional


def make_listing_id(page_number: int, ad_number: str) -> str:
    return f"{page_number}_{ad_number}"


@dataclass(frozen=True)
class ListingRecord:
    """One classified ad scraped from a listings page."""

    id: str
    ad_number: str
    ad_type: str
    status: str
    has_photo: bool
    description: str
    price: Optional[Decimal]
    price_text: str
    date: Optional[dt.date]
    date_text: str
    location: str
    is_featured: bool
    listing_url: Optional[str]
    page_number: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "ad_number": self.ad_number,
            "ad_type": self.ad_type,
            "status": self.status,
            "has_photo": self.has_photo,
            "description": self.description,
            "price": str(self.price) if self.price is not None else None,
            "price_text": self.price_text,
            "date": self.date.isoformat() if self.date is not None else None,
            "date_text": self.date_text,
            "location": self.location,
            "is_featured": self.is_featured,
            "listing_url": self.listing_url,
            "page_number": self.page_number,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ListingRecord":
        """Rebuild a record persisted with :meth:`to_dict`."""
        price = None
        if data.get("price") is not None:
            try:
                price = Decimal(str(data["price"]))
            except InvalidOperation:
                price = None
        date = None
        if data.get("date"):
            try:
                date = dt.date.fromisoformat(data["date"])
            except ValueError:
                date = None
        page_number = int(data.get("page_number") or 0)
        ad_number = str(data.get("ad_number") or "")
        return cls(
            id=data.get("id") or make_listing_id(page_number, ad_number),
            ad_number=ad_number,
            ad_type=data.get("ad_type") or "",
            status=data.get("status") or "",
            has_photo=bool(data.get("has_photo")),
            description=data.get("description") or "",
            price=price,
            price_text=data.get("price_text") or "",
            date=date,
            date_text=data.get("date_text") or "",
            location=data.get("location") or "",
            is_featured=bool(data.get("is_featured")),
            listing_url=data.get("listing_url"),
            page_number=page_number,
        )


@dataclass(frozen=True)
class CacheEntry:
    """A fetched page body and the time (epoch seconds) it was stored."""

    key: str
    body: str
    stored_at: float


PROBE_SUCCESS = "success"
PROBE_FAILED = "failed"
PROBE_ALL_FAILED = "all_strategies_failed"


@dataclass
class ProbeResult:
    """Outcome of probing one directory entry."""

    index: int
    template: str
    status: str
    strategy: Optional[str] = None
    response_time: Optional[float] = None
    content_length: int = 0
    is_valid: bool = False
    error: Optional[str] = None

    @property
    def is_working(self) -> bool:
        return self.status == PROBE_SUCCESS and self.is_valid


class SortKey(str, Enum):
    DATE_DESC = "date-desc"
    DATE_ASC = "date-asc"
    PRICE_DESC = "price-desc"
    PRICE_ASC = "price-asc"
    AD_NUMBER = "ad-number"


@dataclass
class FilterCriteria:
    """Active filter constraints; empty values mean "no constraint"."""

    search: str = ""
    ad_type: str = ""
    status: str = ""
    min_price: Any = None
    max_price: Any = None
    location: str = ""
    has_photo: bool = False
    featured_only: bool = False


@dataclass(frozen=True)
class ProgressEvent:
    page: int
    total: int
    status: str
    is_error: bool = False
    is_complete: bool = False


@dataclass(frozen=True)
class BatchEvent:
    new_records: List[ListingRecord]
    total: int
    page: int
    status: str


@dataclass
class FilterStats:
    """Aggregates computed over the full record list."""

    total: int
    filtered: int
    ad_types: Dict[str, int] = field(default_factory=dict)
    statuses: Dict[str, int] = field(default_factory=dict)
    price_min: Optional[Decimal] = None
    price_max: Optional[Decimal] = None
    with_photos: int = 0
    featured: int = 0
    locations: List[str] = field(default_factory=list)


@dataclass
class RunSummary:
    """Aggregated result returned by a scraping cycle."""

    executed_at: str
    mode: str
    pages_processed: int
    records: List[ListingRecord]
    errors: List[str] = field(default_factory=list)
    proxy_index: Optional[int] = None
