"""In-memory page cache with a fixed time-to-live."""

from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from .models import CacheEntry

logger = logging.getLogger(__name__)

DEFAULT_TTL = 30 * 60
URL_KEY_LENGTH = 20


def cache_key_for_page(page_number: int) -> str:
    return f"page_{page_number}"


def cache_key_for_url(url: str) -> str:
    """Derive a bounded-length key for an arbitrary URL."""
    digest = hashlib.sha256(url.encode("utf-8")).hexdigest()
    return f"custom_{digest[:URL_KEY_LENGTH]}"


@dataclass
class ContentCache:
    """Key/value store of page bodies; stale entries are ignored, never purged."""

    ttl: float = DEFAULT_TTL
    clock: Callable[[], float] = time.time
    _entries: Dict[str, CacheEntry] = field(default_factory=dict, repr=False)

    def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self.clock() - entry.stored_at >= self.ttl:
            logger.debug("Cache entry %s expired", key)
            return None
        return entry.body

    def put(self, key: str, body: str) -> None:
        self._entries[key] = CacheEntry(key=key,
                                        body=body,
                                        stored_at=self.clock())

    def clear(self) -> None:
        self._entries.clear()
        logger.info("Cache cleared")

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def stats(self) -> Dict[str, int]:
        now = self.clock()
        live = sum(1 for entry in self._entries.values()
                   if now - entry.stored_at < self.ttl)
        return {"entries": len(self._entries), "live": live}
