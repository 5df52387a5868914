"""In-memory search, filter and sort pipeline over scraped listings."""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict, fields, replace
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from .models import FilterCriteria, FilterStats, ListingRecord, SortKey

logger = logging.getLogger(__name__)

ViewObserver = Callable[[List[ListingRecord]], None]

_FILTER_NAMES = frozenset(item.name for item in fields(FilterCriteria))


def _to_bound(value: Any) -> Optional[Decimal]:
    """Interpret a price bound; blank or non-numeric values impose nothing."""
    if value is None or value == "":
        return None
    try:
        bound = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    return bound if bound.is_finite() else None


def _ad_number_value(record: ListingRecord) -> int:
    try:
        return int(record.ad_number.strip())
    except ValueError:
        return 0


def _sort_with_nulls_last(records: Sequence[ListingRecord], attr: str,
                          descending: bool) -> List[ListingRecord]:
    present = [r for r in records if getattr(r, attr) is not None]
    missing = [r for r in records if getattr(r, attr) is None]
    present = sorted(present,
                     key=lambda r: getattr(r, attr),
                     reverse=descending)
    return present + missing


def sort_records(records: Sequence[ListingRecord],
                 sort_key: SortKey) -> List[ListingRecord]:
    """Stable sort; records lacking the sort field always come last."""
    if sort_key is SortKey.DATE_DESC:
        return _sort_with_nulls_last(records, "date", descending=True)
    if sort_key is SortKey.DATE_ASC:
        return _sort_with_nulls_last(records, "date", descending=False)
    if sort_key is SortKey.PRICE_DESC:
        return _sort_with_nulls_last(records, "price", descending=True)
    if sort_key is SortKey.PRICE_ASC:
        return _sort_with_nulls_last(records, "price", descending=False)
    if sort_key is SortKey.AD_NUMBER:
        return sorted(records, key=_ad_number_value, reverse=True)
    return list(records)


def matches(record: ListingRecord, criteria: FilterCriteria) -> bool:
    """Return True when the record satisfies every active constraint."""
    if criteria.search:
        term = criteria.search.lower()
        if not (term in record.description.lower()
                or term in record.location.lower()
                or term in record.ad_number.lower()):
            return False
    if criteria.ad_type and record.ad_type != criteria.ad_type:
        return False
    if criteria.status and record.status != criteria.status:
        return False

    min_price = _to_bound(criteria.min_price)
    if min_price is not None and (record.price is None
                                  or record.price < min_price):
        return False
    max_price = _to_bound(criteria.max_price)
    if max_price is not None and (record.price is None
                                  or record.price > max_price):
        return False

    if criteria.location and criteria.location.lower(
    ) not in record.location.lower():
        return False
    if criteria.has_photo and not record.has_photo:
        return False
    if criteria.featured_only and not record.is_featured:
        return False
    return True


class ListingFilter:
    """Holds the full record list and a derived, filtered and sorted view.

    Every mutation recomputes the view and notifies the single observer while
    holding the lock, so an observer never sees criteria and view out of sync.
    """

    def __init__(self, on_change: Optional[ViewObserver] = None):
        self.on_change = on_change
        self._lock = threading.RLock()
        self._records: List[ListingRecord] = []
        self._view: List[ListingRecord] = []
        self._criteria = FilterCriteria()
        self._sort_key = SortKey.DATE_DESC

    @property
    def records(self) -> List[ListingRecord]:
        return list(self._records)

    @property
    def view(self) -> List[ListingRecord]:
        return list(self._view)

    @property
    def criteria(self) -> FilterCriteria:
        return replace(self._criteria)

    @property
    def sort_key(self) -> SortKey:
        return self._sort_key

    def set_records(self, records: Iterable[ListingRecord]) -> None:
        with self._lock:
            self._apply(records=list(records))

    def set_filter(self, name: str, value: Any) -> None:
        if name not in _FILTER_NAMES:
            raise KeyError(f"Unknown filter: {name}")
        with self._lock:
            self._apply(criteria=replace(self._criteria, **{name: value}))

    def set_filters(self, **values: Any) -> None:
        unknown = set(values) - _FILTER_NAMES
        if unknown:
            raise KeyError(f"Unknown filter(s): {', '.join(sorted(unknown))}")
        with self._lock:
            self._apply(criteria=replace(self._criteria, **values))

    def clear_filters(self) -> None:
        with self._lock:
            self._apply(criteria=FilterCriteria())

    clear = clear_filters

    def set_sort_key(self, sort_key: SortKey | str) -> None:
        with self._lock:
            self._apply(sort_key=SortKey(sort_key))

    def _apply(self,
               records: Optional[List[ListingRecord]] = None,
               criteria: Optional[FilterCriteria] = None,
               sort_key: Optional[SortKey] = None) -> None:
        """Recompute the view, then commit it together with its inputs."""
        records = self._records if records is None else records
        criteria = self._criteria if criteria is None else criteria
        sort_key = self._sort_key if sort_key is None else sort_key
        filtered = [r for r in records if matches(r, criteria)]
        view = sort_records(filtered, sort_key)
        self._records, self._criteria, self._sort_key = records, criteria, sort_key
        self._view = view
        logger.debug("Filter view recomputed: %d of %d listings",
                     len(self._view), len(self._records))
        if self.on_change:
            self.on_change(list(self._view))

    def get_stats(self) -> FilterStats:
        """Aggregate counts over the full record list, not the view."""
        with self._lock:
            stats = FilterStats(total=len(self._records),
                                filtered=len(self._view))
            locations = set()
            for record in self._records:
                stats.ad_types[record.ad_type] = stats.ad_types.get(
                    record.ad_type, 0) + 1
                stats.statuses[record.status] = stats.statuses.get(
                    record.status, 0) + 1
                if record.price is not None:
                    if stats.price_min is None or record.price < stats.price_min:
                        stats.price_min = record.price
                    if stats.price_max is None or record.price > stats.price_max:
                        stats.price_max = record.price
                if record.has_photo:
                    stats.with_photos += 1
                if record.is_featured:
                    stats.featured += 1
                if record.location:
                    locations.add(record.location)
            stats.locations = sorted(locations)
            return stats

    def get_unique_values(self) -> Dict[str, List[str]]:
        with self._lock:
            return {
                "ad_types":
                sorted({r.ad_type for r in self._records if r.ad_type}),
                "statuses":
                sorted({r.status for r in self._records if r.status}),
                "locations":
                sorted({r.location for r in self._records if r.location}),
            }

    def get_state(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "filters": asdict(self._criteria),
                "sort_by": self._sort_key.value,
                "total_listings": len(self._records),
                "filtered_count": len(self._view),
            }

    def restore_state(self, state: Dict[str, Any]) -> None:
        with self._lock:
            filters = state.get("filters") or {}
            known = {k: v for k, v in filters.items() if k in _FILTER_NAMES}
            sort_key = SortKey(state["sort_by"]) if state.get("sort_by") else None
            self._apply(criteria=replace(FilterCriteria(), **known),
                        sort_key=sort_key)
