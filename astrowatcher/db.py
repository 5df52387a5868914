"""SQLite-backed persistence for run history and session freshness data."""

from __future__ import annotations

import sqlite3
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from .models import ListingRecord
from .proxies import ProxyDescriptor, classify_template
from .session import SELECTION_TTL, ProxySelection

SQLITE_PREFIX = "sqlite://"
LISTINGS_TTL = 30 * 60

_LISTING_COLUMNS = (
    "listing_id",
    "ad_number",
    "ad_type",
    "status",
    "has_photo",
    "description",
    "price",
    "price_text",
    "listing_date",
    "date_text",
    "location",
    "is_featured",
    "listing_url",
    "page_number",
)


def resolve_sqlite_path(database_url: str) -> Path:
    """Translate a DATABASE_URL into a filesystem path."""
    if not database_url:
        raise ValueError("DATABASE_URL must not be empty")

    if database_url.startswith(SQLITE_PREFIX):
        raw_path = database_url[len(SQLITE_PREFIX) :]
        # Allow sqlite:///path/to/file and sqlite://path/to/file styles.
        if raw_path.startswith("/"):
            raw_path = raw_path[1:]
        path = Path(raw_path)
    else:
        path = Path(database_url)

    if not path.is_absolute():
        path = Path.cwd() / path

    return path.expanduser().resolve()


@dataclass
class Database:
    """Thin wrapper around sqlite3 for run history, proxy and listing caches."""

    path: Path
    clock: Callable[[], float] = field(default=time.time, repr=False)

    def connect(self) -> sqlite3.Connection:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        return sqlite3.connect(self.path)

    def initialize(self) -> None:
        with self.connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS runs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    executed_at TEXT NOT NULL,
                    status TEXT NOT NULL,
                    notes TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS proxy_selection (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    proxy_index INTEGER NOT NULL,
                    template TEXT NOT NULL,
                    response_time REAL NOT NULL,
                    saved_at REAL NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS listings (
                    position INTEGER PRIMARY KEY,
                    listing_id TEXT NOT NULL,
                    ad_number TEXT NOT NULL,
                    ad_type TEXT,
                    status TEXT,
                    has_photo INTEGER NOT NULL DEFAULT 0,
                    description TEXT,
                    price TEXT,
                    price_text TEXT,
                    listing_date TEXT,
                    date_text TEXT,
                    location TEXT,
                    is_featured INTEGER NOT NULL DEFAULT 0,
                    listing_url TEXT,
                    page_number INTEGER NOT NULL,
                    saved_at REAL NOT NULL
                )
                """
            )
            conn.commit()

    def add_run(self, executed_at: str, status: str, notes: str | None) -> None:
        with self.connect() as conn:
            conn.execute(
                "INSERT INTO runs (executed_at, status, notes) VALUES (?, ?, ?)",
                (executed_at, status, notes),
            )
            conn.commit()

    def recent_runs(self, limit: int = 10) -> Iterable[Tuple[str, str, str | None]]:
        with self.connect() as conn:
            cursor = conn.execute(
                "SELECT executed_at, status, notes FROM runs ORDER BY id DESC LIMIT ?",
                (limit,),
            )
            yield from cursor.fetchall()

    def save_proxy_selection(self, selection: ProxySelection) -> None:
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO proxy_selection (id, proxy_index, template, response_time, saved_at)
                VALUES (1, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    proxy_index=excluded.proxy_index,
                    template=excluded.template,
                    response_time=excluded.response_time,
                    saved_at=excluded.saved_at
                """,
                (
                    selection.index,
                    selection.descriptor.template,
                    selection.measured_latency,
                    selection.confirmed_at,
                ),
            )
            conn.commit()

    def load_proxy_selection(
        self, max_age: float = SELECTION_TTL
    ) -> Optional[ProxySelection]:
        """Return the saved selection while fresh; stale rows are removed."""
        with self.connect() as conn:
            row = conn.execute(
                "SELECT proxy_index, template, response_time, saved_at FROM proxy_selection WHERE id = 1"
            ).fetchone()
        if not row:
            return None
        index, template, response_time, saved_at = row
        selection = ProxySelection(
            index=index,
            descriptor=ProxyDescriptor(
                index=index, template=template, family=classify_template(template)
            ),
            measured_latency=response_time,
            confirmed_at=saved_at,
        )
        if not selection.is_fresh(self.clock(), max_age):
            self.clear_proxy_selection()
            return None
        return selection

    def clear_proxy_selection(self) -> None:
        with self.connect() as conn:
            conn.execute("DELETE FROM proxy_selection")
            conn.commit()

    def save_listings(self, records: Sequence[ListingRecord]) -> None:
        """Replace the cached listing set with ``records``."""
        saved_at = self.clock()
        placeholders = ", ".join("?" for _ in range(len(_LISTING_COLUMNS) + 2))
        with self.connect() as conn:
            conn.execute("DELETE FROM listings")
            conn.executemany(
                f"""
                INSERT INTO listings (position, {", ".join(_LISTING_COLUMNS)}, saved_at)
                VALUES ({placeholders})
                """,
                [
                    (position, *_listing_row(record), saved_at)
                    for position, record in enumerate(records)
                ],
            )
            conn.commit()

    def load_listings(
        self, max_age: float = LISTINGS_TTL
    ) -> Optional[List[ListingRecord]]:
        """Return cached listings in saved order, or ``None`` when stale/empty."""
        with self.connect() as conn:
            rows = conn.execute(
                f"""
                SELECT {", ".join(_LISTING_COLUMNS)}, saved_at
                FROM listings ORDER BY position
                """
            ).fetchall()
        if not rows:
            return None
        saved_at = min(row[-1] for row in rows)
        if self.clock() - saved_at >= max_age:
            return None
        return [
            ListingRecord.from_dict(_row_to_dict(row[:-1])) for row in rows
        ]


def _listing_row(record: ListingRecord) -> tuple:
    data = record.to_dict()
    return (
        data["id"],
        data["ad_number"],
        data["ad_type"],
        data["status"],
        int(data["has_photo"]),
        data["description"],
        data["price"],
        data["price_text"],
        data["date"],
        data["date_text"],
        data["location"],
        int(data["is_featured"]),
        data["listing_url"],
        data["page_number"],
    )


def _row_to_dict(row: Sequence) -> dict:
    values = dict(zip(_LISTING_COLUMNS, row))
    values["id"] = values.pop("listing_id")
    values["date"] = values.pop("listing_date")
    return values
