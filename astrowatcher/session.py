"""Explicit per-session state shared by the fetcher and the prober."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .proxies import ProxyDescriptor

logger = logging.getLogger(__name__)

SELECTION_TTL = 30 * 60


@dataclass(frozen=True)
class ProxySelection:
    """The proxy confirmed as working, with its measured latency."""

    index: int
    descriptor: ProxyDescriptor
    measured_latency: float
    confirmed_at: float

    def is_fresh(self, now: float, ttl: float = SELECTION_TTL) -> bool:
        return now - self.confirmed_at < ttl


class SessionState:
    """Holds at most one current proxy selection; it expires after ``ttl``."""

    def __init__(self,
                 ttl: float = SELECTION_TTL,
                 clock: Callable[[], float] = time.time):
        self.ttl = ttl
        self.clock = clock
        self._selection: Optional[ProxySelection] = None

    @property
    def current(self) -> Optional[ProxySelection]:
        selection = self._selection
        if selection is None:
            return None
        if not selection.is_fresh(self.clock(), self.ttl):
            logger.info("Proxy selection %d expired; a fresh probe is required",
                        selection.index)
            self._selection = None
            return None
        return selection

    @property
    def current_index(self) -> Optional[int]:
        selection = self.current
        return selection.index if selection else None

    def confirm(self, descriptor: ProxyDescriptor,
                latency: float) -> ProxySelection:
        selection = ProxySelection(index=descriptor.index,
                                   descriptor=descriptor,
                                   measured_latency=latency,
                                   confirmed_at=self.clock())
        self._selection = selection
        logger.info("Using proxy %d: %s (%.0fms)", descriptor.index + 1,
                    descriptor.name, latency * 1000)
        return selection

    def restore(self, selection: ProxySelection) -> None:
        self._selection = selection

    def clear(self) -> None:
        self._selection = None
