"""Exception hierarchy for fetch, validation and parsing failures."""

from __future__ import annotations

from typing import Optional

BOT_WALL_SIGNATURES = ("cloudflare", "cf_chl_opt", "Just a moment")


class AstroWatcherError(Exception):
    """Base class for all AstroWatcher errors."""


class NetworkError(AstroWatcherError):
    """Transport-level failure: DNS, connection reset, timeout."""


class HttpError(AstroWatcherError):
    """The server answered with a non-2xx status."""

    def __init__(self, status_code: int, url: str, body_excerpt: str = ""):
        self.status_code = status_code
        self.url = url
        self.body_excerpt = body_excerpt
        message = f"HTTP {status_code} from {url}"
        if self.is_forbidden:
            message += " (forbidden, likely bot interdiction)"
        if body_excerpt:
            message += f": {body_excerpt}"
        super().__init__(message)

    @property
    def is_forbidden(self) -> bool:
        return self.status_code == 403

    @property
    def is_bot_wall(self) -> bool:
        return self.is_forbidden and looks_like_bot_wall(self.body_excerpt)


class ContentInvalid(AstroWatcherError):
    """A 2xx response whose body is not a genuine listings page."""

    def __init__(self, length: int, has_marker: bool):
        self.length = length
        self.has_marker = has_marker
        super().__init__(
            f"Invalid page content: length={length}, has_table={has_marker}")


class ParseError(AstroWatcherError):
    """A single listing row could not be parsed."""


class FetchExhausted(AstroWatcherError):
    """Every fetch strategy failed for a page."""

    def __init__(self, identifier: str, last_error: Optional[BaseException]):
        self.identifier = identifier
        self.last_error = last_error
        detail = str(last_error) if last_error else "no strategy produced content"
        super().__init__(
            f"Failed to fetch {identifier} after all retry attempts: {detail}")


def looks_like_bot_wall(body: str) -> bool:
    return any(signature in body for signature in BOT_WALL_SIGNATURES)
