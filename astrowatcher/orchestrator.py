"""Drive the fetcher across listing pages, sequentially or in batches."""

from __future__ import annotations

import logging
import random
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Protocol, Sequence

from .errors import AstroWatcherError
from .fetcher import ResilientFetcher
from .models import BatchEvent, ListingRecord, ProgressEvent
from .parser import parse_listings

logger = logging.getLogger(__name__)

DEFAULT_MAX_PAGES = 50
DEFAULT_CONCURRENCY = 3
MAX_EMPTY_PAGES = 3

Parser = Callable[[str, int], List[ListingRecord]]


class RunMode(str, Enum):
    SEQUENTIAL = "sequential"
    CONCURRENT = "concurrent"


class RunObserver(Protocol):
    """Receives progress and partial-result events from a run."""

    def on_progress(self, event: ProgressEvent) -> None:
        ...

    def on_batch(self, event: BatchEvent) -> None:
        ...


class NullObserver:

    def on_progress(self, event: ProgressEvent) -> None:
        pass

    def on_batch(self, event: BatchEvent) -> None:
        pass


@dataclass
class CallbackObserver:
    """Adapt two plain callables to :class:`RunObserver`."""

    progress: Optional[Callable[[ProgressEvent], None]] = None
    batch: Optional[Callable[[BatchEvent], None]] = None

    def on_progress(self, event: ProgressEvent) -> None:
        if self.progress:
            self.progress(event)

    def on_batch(self, event: BatchEvent) -> None:
        if self.batch:
            self.batch(event)


@dataclass
class PageOutcome:
    page_number: int
    records: List[ListingRecord] = field(default_factory=list)
    error: Optional[AstroWatcherError] = None


@dataclass
class RunStats:
    """Tally of the most recent run."""

    mode: RunMode = RunMode.CONCURRENT
    pages_processed: int = 0
    empty_pages: List[int] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


class PaginationOrchestrator:
    """Fetch pages 0..N until ``max_pages`` or an empty-page streak."""

    def __init__(
        self,
        fetcher: ResilientFetcher,
        parser: Parser = parse_listings,
        observer: Optional[RunObserver] = None,
        max_empty_pages: int = MAX_EMPTY_PAGES,
        page_delay: float = 0.5,
        batch_delay: float = 0.3,
        jitter: float = 0.2,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.fetcher = fetcher
        self.parser = parser
        self.observer = observer or NullObserver()
        self.max_empty_pages = max_empty_pages
        self.page_delay = page_delay
        self.batch_delay = batch_delay
        self.jitter = jitter
        self.sleep = sleep
        self.rng = rng or random.Random()
        self.last_run = RunStats()
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        """Stop after the page or batch currently in flight."""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def run(
        self,
        mode: RunMode | str = RunMode.CONCURRENT,
        max_pages: int = DEFAULT_MAX_PAGES,
        concurrency: int = DEFAULT_CONCURRENCY,
    ) -> List[ListingRecord]:
        mode = RunMode(mode)
        self._cancelled.clear()
        self.last_run = RunStats(mode=mode)
        logger.info("Starting %s scraping (max %d pages)", mode.value,
                    max_pages)
        if mode is RunMode.SEQUENTIAL:
            return self._run_sequential(max_pages)
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        return self._run_concurrent(max_pages, concurrency)

    def _fetch_one(self, page_number: int) -> PageOutcome:
        try:
            html_text = self.fetcher.fetch(page_number)
        except AstroWatcherError as exc:
            logger.error("Error fetching page %d: %s", page_number, exc)
            return PageOutcome(page_number=page_number, error=exc)
        return PageOutcome(page_number=page_number,
                           records=self.parser(html_text, page_number))

    def _should_continue(self, processed: int, max_pages: int,
                         streak: int) -> bool:
        return (processed < max_pages and streak < self.max_empty_pages
                and not self.cancelled)

    def _run_sequential(self, max_pages: int) -> List[ListingRecord]:
        records: List[ListingRecord] = []
        stats = self.last_run
        page = 0
        streak = 0

        while self._should_continue(page, max_pages, streak):
            self.observer.on_progress(
                ProgressEvent(page=page + 1,
                              total=len(records),
                              status=f"Loading page {page + 1}..."))
            outcome = self._fetch_one(page)
            stats.pages_processed += 1

            if outcome.error is not None:
                stats.errors.append(str(outcome.error))
                self.observer.on_progress(
                    ProgressEvent(
                        page=page + 1,
                        total=len(records),
                        status=f"Error loading page {page + 1}: {outcome.error}",
                        is_error=True,
                    ))
                if not records:
                    raise outcome.error
                streak += 1
                page += 1
                continue

            if outcome.records:
                streak = 0
                records.extend(outcome.records)
                logger.info("Added %d listings from page %d. Total: %d",
                            len(outcome.records), page, len(records))
                self.observer.on_batch(
                    BatchEvent(
                        new_records=list(outcome.records),
                        total=len(records),
                        page=page + 1,
                        status=(f"Loaded page {page + 1} - "
                                f"{len(outcome.records)} new listings"),
                    ))
            else:
                streak += 1
                stats.empty_pages.append(page)
                logger.info("Page %d is empty (%d/%d consecutive empty pages)",
                            page, streak, self.max_empty_pages)

            page += 1
            if self._should_continue(page, max_pages, streak):
                self.sleep(self.page_delay)

        return self._complete(records, page)

    def _run_concurrent(self, max_pages: int,
                        concurrency: int) -> List[ListingRecord]:
        records: List[ListingRecord] = []
        stats = self.last_run
        batch_index = 0
        processed = 0
        streak = 0

        with ThreadPoolExecutor(max_workers=concurrency) as executor:
            while self._should_continue(processed, max_pages, streak):
                batch_start = batch_index * concurrency
                batch_end = min(batch_start + concurrency, max_pages)
                pages = list(range(batch_start, batch_end))
                if not pages:
                    break

                self.observer.on_progress(
                    ProgressEvent(
                        page=batch_start + 1,
                        total=len(records),
                        status=(f"Loading batch {batch_index + 1} - pages "
                                f"{batch_start + 1} to {batch_end}..."),
                    ))

                outcomes = self._fetch_batch(executor, pages)
                batch_records: List[ListingRecord] = []
                first_error: Optional[AstroWatcherError] = None
                for outcome in outcomes:
                    # Pages past the empty-page limit are not consumed.
                    if streak >= self.max_empty_pages:
                        break
                    processed += 1
                    if outcome.error is not None:
                        first_error = first_error or outcome.error
                        stats.errors.append(str(outcome.error))
                        streak += 1
                        self.observer.on_progress(
                            ProgressEvent(
                                page=outcome.page_number + 1,
                                total=len(records) + len(batch_records),
                                status=(f"Error loading page "
                                        f"{outcome.page_number + 1}: "
                                        f"{outcome.error}"),
                                is_error=True,
                            ))
                    elif outcome.records:
                        streak = 0
                        batch_records.extend(outcome.records)
                        logger.info("Page %d: %d listings",
                                    outcome.page_number, len(outcome.records))
                    else:
                        streak += 1
                        stats.empty_pages.append(outcome.page_number)
                        logger.info("Page %d: empty", outcome.page_number)
                stats.pages_processed = processed

                records.extend(batch_records)
                if first_error is not None and not records:
                    raise first_error

                if batch_records:
                    self.observer.on_batch(
                        BatchEvent(
                            new_records=batch_records,
                            total=len(records),
                            page=batch_end,
                            status=(f"Batch {batch_index + 1} complete - "
                                    f"{len(batch_records)} new listings"),
                        ))

                batch_index += 1
                if self._should_continue(processed, max_pages, streak):
                    self.sleep(self.batch_delay)

        return self._complete(records, processed)

    def _fetch_batch(self, executor: ThreadPoolExecutor,
                     pages: Sequence[int]) -> List[PageOutcome]:
        delays = [self.rng.uniform(0, self.jitter) for _ in pages]
        futures = [
            executor.submit(self._fetch_staggered, page, delay)
            for page, delay in zip(pages, delays)
        ]
        outcomes = [future.result() for future in futures]
        return sorted(outcomes, key=lambda outcome: outcome.page_number)

    def _fetch_staggered(self, page_number: int, delay: float) -> PageOutcome:
        if delay > 0:
            self.sleep(delay)
        return self._fetch_one(page_number)

    def _complete(self, records: List[ListingRecord],
                  pages: int) -> List[ListingRecord]:
        self.observer.on_progress(
            ProgressEvent(
                page=pages,
                total=len(records),
                status=(f"Completed loading {len(records)} listings "
                        f"from {pages} pages"),
                is_complete=True,
            ))
        logger.info("Fetching completed. Total listings: %d from %d pages",
                    len(records), pages)
        return records
