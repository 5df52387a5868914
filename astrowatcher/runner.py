"""Core execution workflow for AstroWatcher."""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import List, Optional

import requests

from .cache import ContentCache
from .db import Database
from .fetcher import ResilientFetcher
from .filtering import ListingFilter
from .models import BatchEvent, ListingRecord, ProgressEvent, RunSummary
from .orchestrator import (
    DEFAULT_CONCURRENCY,
    DEFAULT_MAX_PAGES,
    CallbackObserver,
    PaginationOrchestrator,
    RunMode,
    RunObserver,
)
from .prober import ProxyProber, select_best
from .proxies import ProxyDirectory
from .session import ProxySelection, SessionState

logger = logging.getLogger(__name__)


@dataclass
class AstroWatcherRunner:
    """Coordinates proxy selection, page scraping, filtering and persistence."""

    database: Database
    prober: ProxyProber
    orchestrator: PaginationOrchestrator
    listing_filter: ListingFilter = field(default_factory=ListingFilter)
    observer: Optional[RunObserver] = None

    @property
    def session(self):
        return self.prober.session

    def init(self) -> None:
        """Initialize required persistence structures."""
        logger.info("Initializing database at %s", self.database.path)
        self.database.initialize()

    def ensure_proxy(self, force: bool = False) -> Optional[ProxySelection]:
        """Reuse a fresh saved proxy selection or probe for a new one."""
        if force:
            self.database.clear_proxy_selection()
            self.session.clear()
        else:
            saved = self.database.load_proxy_selection()
            if saved is not None and self._matches_directory(saved):
                logger.info("Using saved working proxy %d: %s",
                            saved.index + 1, saved.descriptor.name)
                self.session.restore(saved)
                return saved

        results = self.prober.probe_all()
        best = select_best(results)
        if best is None:
            logger.warning("No working proxies found")
            return None

        descriptor = self.prober.directory[best.index]
        selection = self.session.current
        if selection is None or selection.index != best.index:
            selection = self.session.confirm(descriptor, best.response_time
                                             or 0.0)
        self.database.save_proxy_selection(selection)
        return selection

    def _matches_directory(self, saved: ProxySelection) -> bool:
        directory = self.prober.directory
        if saved.index >= len(directory):
            return False
        return directory[saved.index].template == saved.descriptor.template

    def load_cached(self) -> bool:
        """Feed a fresh persisted listing set into the filter."""
        records = self.database.load_listings()
        if not records:
            return False
        logger.info("Loaded %d cached listings", len(records))
        self.listing_filter.set_records(records)
        return True

    def run(
        self,
        mode: RunMode | str = RunMode.CONCURRENT,
        max_pages: int = DEFAULT_MAX_PAGES,
        concurrency: int = DEFAULT_CONCURRENCY,
    ) -> RunSummary:
        """Execute a single scraping cycle."""
        mode = RunMode(mode)
        executed_at = dt.datetime.now(dt.timezone.utc).isoformat()
        logger.info("Starting %s run (max %d pages)", mode.value, max_pages)

        self.listing_filter.set_records([])
        accumulated: List[ListingRecord] = []

        def on_batch(event: BatchEvent) -> None:
            accumulated.extend(event.new_records)
            self.listing_filter.set_records(accumulated)
            if self.observer:
                self.observer.on_batch(event)

        def on_progress(event: ProgressEvent) -> None:
            if self.observer:
                self.observer.on_progress(event)

        self.orchestrator.observer = CallbackObserver(progress=on_progress,
                                                      batch=on_batch)
        try:
            records = self.orchestrator.run(mode=mode,
                                            max_pages=max_pages,
                                            concurrency=concurrency)
        except Exception as exc:
            logger.exception("Scraping failed: %s", exc)
            self.database.add_run(
                executed_at=executed_at,
                status="error",
                notes=f"scrape_failed: {exc}",
            )
            raise

        stats = self.orchestrator.last_run
        self.listing_filter.set_records(records)
        self.database.save_listings(records)
        note = (f"{mode.value} listings={len(records)} "
                f"pages={stats.pages_processed} errors={len(stats.errors)}")
        self.database.add_run(executed_at=executed_at,
                              status="success",
                              notes=note)
        logger.info("Successfully loaded %d listings", len(records))
        return RunSummary(
            executed_at=executed_at,
            mode=mode.value,
            pages_processed=stats.pages_processed,
            records=records,
            errors=list(stats.errors),
            proxy_index=self.session.current_index,
        )


def build_runner(
    database: Database,
    directory: Optional[ProxyDirectory] = None,
    http: Optional[requests.Session] = None,
    observer: Optional[RunObserver] = None,
) -> AstroWatcherRunner:
    """Wire the default fetcher, prober and orchestrator around one session."""
    directory = directory or ProxyDirectory.default()
    http = http or requests.Session()
    session = SessionState()
    fetcher = ResilientFetcher(directory=directory,
                               cache=ContentCache(),
                               session=session,
                               http=http)
    prober = ProxyProber(directory=directory,
                         session=session,
                         target_url=fetcher.build_page_url(0),
                         http=http)
    return AstroWatcherRunner(
        database=database,
        prober=prober,
        orchestrator=PaginationOrchestrator(fetcher=fetcher),
        observer=observer,
    )
