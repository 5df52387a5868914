"""Export listings as delimited text or an Excel workbook."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Sequence

from openpyxl import Workbook

from .models import ListingRecord

logger = logging.getLogger(__name__)

EXPORT_HEADERS = [
    "Ad Number",
    "Ad Type",
    "Status",
    "Description",
    "Price",
    "Date",
    "Location",
    "Has Photo",
    "Featured",
    "URL",
]
UNQUOTED_COLUMNS = {"Has Photo", "Featured"}


def _quote(value: Optional[str]) -> str:
    text = (value or "").replace('"', '""')
    return f'"{text}"'


def _yes_no(flag: bool) -> str:
    return "Yes" if flag else "No"


def _row_values(record: ListingRecord) -> List[str]:
    return [
        record.ad_number,
        record.ad_type,
        record.status,
        record.description,
        record.price_text,
        record.date_text,
        record.location,
        _yes_no(record.has_photo),
        _yes_no(record.is_featured),
        record.listing_url or "",
    ]


def export_csv(records: Sequence[ListingRecord]) -> Optional[str]:
    """Render records as CSV text; ``None`` when there is nothing to export."""
    if not records:
        return None
    lines = [",".join(EXPORT_HEADERS)]
    for record in records:
        values = _row_values(record)
        cells = [
            value if header in UNQUOTED_COLUMNS else _quote(value)
            for header, value in zip(EXPORT_HEADERS, values)
        ]
        lines.append(",".join(cells))
    return "\n".join(lines)


def write_csv(records: Sequence[ListingRecord], path: Path) -> bool:
    content = export_csv(records)
    if content is None:
        logger.info("No listings to export")
        return False
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    logger.info("Exported %d listings to %s", len(records), path)
    return True


def export_xlsx(records: Sequence[ListingRecord], path: Path) -> None:
    """Write records to a single-sheet workbook with the CSV column order."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    workbook = Workbook()
    worksheet = workbook.active
    worksheet.title = "listings"
    worksheet.append(EXPORT_HEADERS)
    for record in records:
        worksheet.append(_row_values(record))
    workbook.save(path)
    logger.info("Exported %d listings to %s", len(records), path)
