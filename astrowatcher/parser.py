"""HTML parser turning a listings page into :class:`ListingRecord` objects."""

from __future__ import annotations

import datetime as dt
import logging
import re
from decimal import Decimal, InvalidOperation
from typing import List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from bs4.element import Tag

from .errors import ParseError
from .models import ListingRecord, make_listing_id

logger = logging.getLogger(__name__)

SITE_ROOT = "https://www.astrobuysell.com"
SITE_BASE = "https://www.astrobuysell.com/uk/"

LISTING_MARKER = "<table"
FEATURED_COLOR = "#FFF87A"
REGULAR_COLOR = "#EBEBEB"
CONTAINER_ATTRS = {"border": "1", "cellspacing": "1", "cellpadding": "2"}
PHOTO_INDICATOR = "camera.gif"
MIN_CELLS = 8

_PRICE_PATTERN = re.compile(r"\d[\d,]*(?:\.\d+)?")
_NO_PRICE_TOKENS = ("poa", "contact")

# (pattern, order of the captured groups)
_NUMERIC_DATE_FORMATS = (
    (re.compile(r"(\d{2})/(\d{2})/(\d{4})"), ("day", "month", "year")),
    (re.compile(r"(\d{1,2})/(\d{1,2})/(\d{4})"), ("day", "month", "year")),
    (re.compile(r"(\d{4})-(\d{2})-(\d{2})"), ("year", "month", "day")),
)
_TEXTUAL_DATE_FORMATS = (
    "%d %B %Y",
    "%d %b %Y",
    "%B %d, %Y",
    "%b %d, %Y",
    "%B %d %Y",
    "%b %d %Y",
    "%d-%m-%Y",
    "%d.%m.%Y",
    "%Y/%m/%d",
    "%a, %d %b %Y",
    "%A, %d %B %Y",
)


def parse_listings(html_text: str, page_number: int) -> List[ListingRecord]:
    """Extract every listing on one page, skipping malformed containers."""
    soup = BeautifulSoup(html_text, "html.parser")
    containers = _find_listing_tables(soup)
    logger.debug("Found %d listing table(s) on page %d", len(containers),
                 page_number)
    if not containers:
        logger.info("No listing tables found on page %d", page_number)
        return []

    records: List[ListingRecord] = []
    for idx, table in enumerate(containers):
        row = table.find("tr")
        if row is None:
            continue
        try:
            records.append(_parse_listing_table(table, row, page_number, idx))
        except ParseError as exc:
            logger.warning("Skipping table %d on page %d: %s", idx + 1,
                           page_number, exc)
        except Exception:  # noqa: BLE001
            logger.exception("Error parsing listing table %d on page %d",
                             idx + 1, page_number)

    logger.info("Parsed %d listings from page %d", len(records), page_number)
    return records


def has_listing_marker(html_text: str) -> bool:
    return LISTING_MARKER in html_text


def _find_listing_tables(soup: BeautifulSoup) -> List[Tag]:
    tables = []
    for table in soup.find_all("table", attrs=CONTAINER_ATTRS):
        style = table.get("style") or ""
        if "border-collapse: collapse" not in style:
            continue
        if _table_color(table) not in (FEATURED_COLOR, REGULAR_COLOR):
            continue
        tables.append(table)
    return tables


def _table_color(table: Tag) -> str:
    return (table.get("bgcolor") or "").strip().upper()


def _parse_listing_table(table: Tag, row: Tag, page_number: int,
                         table_index: int) -> ListingRecord:
    cells = row.find_all("td")
    if len(cells) < MIN_CELLS:
        raise ParseError(
            f"table {table_index + 1} has only {len(cells)} columns")

    ad_number_cell = cells[0]
    ad_number = _cell_text(ad_number_cell)
    link = ad_number_cell.find("a", href=True)
    listing_url = resolve_url(link["href"]) if link else None

    ad_type_cell = cells[1]
    ad_type = _cell_text(ad_type_cell.find("a") or ad_type_cell)

    photo = cells[3].find(
        "img", src=lambda src: bool(src) and PHOTO_INDICATOR in src)

    price_text = _cell_text(cells[5])
    date_text = _cell_text(cells[6])

    return ListingRecord(
        id=make_listing_id(page_number, ad_number),
        ad_number=ad_number,
        ad_type=ad_type,
        status=_cell_text(cells[2]),
        has_photo=photo is not None,
        description=_cell_text(cells[4]),
        price=parse_price(price_text),
        price_text=price_text,
        date=parse_date(date_text),
        date_text=date_text,
        location=_cell_text(cells[7]),
        is_featured=_table_color(table) == FEATURED_COLOR,
        listing_url=listing_url,
        page_number=page_number,
    )


def _cell_text(node: Tag) -> str:
    return node.get_text().strip()


def parse_price(price_text: str) -> Optional[Decimal]:
    """Return the numeric price, or ``None`` for POA/contact/unparsable text."""
    if not price_text:
        return None
    lowered = price_text.lower()
    if any(token in lowered for token in _NO_PRICE_TOKENS):
        return None

    match = _PRICE_PATTERN.search(price_text)
    if not match:
        return None
    try:
        return Decimal(match.group(0).replace(",", ""))
    except InvalidOperation:
        return None


def parse_date(date_text: str) -> Optional[dt.date]:
    """Parse a listing date using a fixed priority of known formats."""
    if not date_text:
        return None

    for pattern, order in _NUMERIC_DATE_FORMATS:
        match = pattern.search(date_text)
        if not match:
            continue
        parts = dict(zip(order, (int(group) for group in match.groups())))
        try:
            return dt.date(parts["year"], parts["month"], parts["day"])
        except ValueError:
            continue

    candidate = " ".join(date_text.split())
    for fmt in _TEXTUAL_DATE_FORMATS:
        try:
            return dt.datetime.strptime(candidate, fmt).date()
        except ValueError:
            continue

    logger.debug("Unrecognised date text %r", date_text)
    return None


def resolve_url(href: Optional[str]) -> Optional[str]:
    """Resolve a listing link against the site root or base path."""
    if not href:
        return None
    if href.startswith("http"):
        return href
    if href.startswith("/"):
        return f"{SITE_ROOT}{href}"
    return urljoin(SITE_BASE, href)
