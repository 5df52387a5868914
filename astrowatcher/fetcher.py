"""Page fetcher with cache, direct, confirmed-proxy and fallback strategies."""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict, Optional, Tuple, Union
from urllib.parse import urlencode

import requests

from .cache import ContentCache, cache_key_for_page, cache_key_for_url
from .errors import AstroWatcherError, FetchExhausted, HttpError, NetworkError
from .proxies import ProxyDescriptor, ProxyDirectory, validate_page
from .session import SessionState

logger = logging.getLogger(__name__)

LISTINGS_URL = "https://www.astrobuysell.com/uk/propview.php"
LISTING_PARAMS = {
    "minprice": "0",
    "maxprice": "1000000000000000",
    "sort": "id DESC",
}

USER_AGENT = ("Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
              "(KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36")

SELECTED_PROXY_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "User-Agent": USER_AGENT,
    "Referer": "https://www.google.com/",
    "X-Requested-With": "XMLHttpRequest",
}
FALLBACK_PROXY_HEADERS = {
    "Accept": ("text/html,application/xhtml+xml,application/xml;q=0.9,"
               "image/webp,*/*;q=0.8"),
    "Accept-Language": "en-US,en;q=0.9",
    "User-Agent": USER_AGENT,
    "Referer": "https://www.astrobuysell.com/",
    "X-Requested-With": "XMLHttpRequest",
}

FALLBACK_WITH_SELECTION = 6
FALLBACK_WITHOUT_SELECTION = 10
ERROR_EXCERPT = 200


def build_page_url(page_number: int, base_url: str = LISTINGS_URL) -> str:
    params = dict(LISTING_PARAMS, cur_page=str(page_number))
    return f"{base_url}?{urlencode(params)}"


def is_success(status_code: int) -> bool:
    return 200 <= status_code < 300


class ResilientFetcher:
    """Fetch listing pages, falling back across proxies until one succeeds."""

    def __init__(
        self,
        directory: ProxyDirectory,
        cache: ContentCache,
        session: SessionState,
        http: requests.Session | None = None,
        max_retries: int = 3,
        proxy_retries: int = 3,
        proxy_retry_delay: float = 2.0,
        backoff_unit: float = 1.0,
        timeout: int = 20,
        base_url: str = LISTINGS_URL,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.directory = directory
        self.cache = cache
        self.session = session
        self.http = http or requests.Session()
        self.max_retries = max_retries
        self.proxy_retries = proxy_retries
        self.proxy_retry_delay = proxy_retry_delay
        self.backoff_unit = backoff_unit
        self.timeout = timeout
        self.base_url = base_url
        self.sleep = sleep

    def build_page_url(self, page_number: int) -> str:
        return build_page_url(page_number, self.base_url)

    def fetch_page(self, page_number: int) -> str:
        return self.fetch(page_number)

    def fetch(self, page_or_url: Union[int, str]) -> str:
        """Return validated page content or raise :class:`FetchExhausted`."""
        url, cache_key, identifier = self._resolve_target(page_or_url)

        cached = self.cache.get(cache_key)
        if cached is not None:
            logger.debug("Using cached data for %s", identifier)
            return cached

        last_error: Optional[BaseException] = None

        try:
            body = self._fetch_direct(url)
        except (NetworkError, HttpError) as exc:
            logger.info("Direct fetch failed for %s: %s", identifier, exc)
            last_error = exc
        else:
            self.cache.put(cache_key, body)
            return body

        selection = self.session.current
        if selection is not None:
            body, error = self._try_selected(selection.descriptor, url,
                                             identifier)
            if body is not None:
                self.cache.put(cache_key, body)
                return body
            last_error = error or last_error
            logger.warning(
                "Selected proxy %d failed after %d attempts for %s; "
                "searching for an alternative",
                selection.index + 1,
                self.proxy_retries,
                identifier,
            )

        limit = (FALLBACK_WITH_SELECTION
                 if selection is not None else FALLBACK_WITHOUT_SELECTION)
        skip_index = selection.index if selection is not None else None
        logger.info("Trying up to %d fallback proxies for %s", limit,
                    identifier)
        for index in range(min(limit, len(self.directory))):
            if index == skip_index:
                continue
            descriptor = self.directory[index]
            body, error = self._try_fallback(descriptor, url, identifier)
            if body is not None:
                self.cache.put(cache_key, body)
                logger.info("Fetched %s using fallback proxy %d (%s)",
                            identifier, index + 1, descriptor.name)
                return body
            last_error = error or last_error

        raise FetchExhausted(identifier, last_error)

    def _resolve_target(self,
                        page_or_url: Union[int, str]) -> Tuple[str, str, str]:
        if isinstance(page_or_url, str) and page_or_url.startswith("http"):
            return page_or_url, cache_key_for_url(page_or_url), page_or_url
        page_number = int(page_or_url)
        return (
            self.build_page_url(page_number),
            cache_key_for_page(page_number),
            f"page {page_number}",
        )

    def _fetch_direct(self, url: str) -> str:
        logger.debug("Fetching %s directly", url)
        response = self._get(url)
        if not is_success(response.status_code):
            raise HttpError(response.status_code, url)
        return response.text

    def _try_selected(
        self, descriptor: ProxyDescriptor, url: str, identifier: str
    ) -> Tuple[Optional[str], Optional[BaseException]]:
        last_error = None
        for attempt in range(self.proxy_retries):
            logger.debug("Using selected proxy %d for %s, attempt %d/%d",
                         descriptor.index + 1, identifier, attempt + 1,
                         self.proxy_retries)
            try:
                return self._attempt(descriptor, url,
                                     SELECTED_PROXY_HEADERS), None
            except AstroWatcherError as exc:
                last_error = exc
                logger.warning("Selected proxy %d attempt %d failed for %s: %s",
                               descriptor.index + 1, attempt + 1, identifier,
                               exc)
            if attempt < self.proxy_retries - 1:
                self.sleep(self.proxy_retry_delay)
        return None, last_error

    def _try_fallback(
        self, descriptor: ProxyDescriptor, url: str, identifier: str
    ) -> Tuple[Optional[str], Optional[BaseException]]:
        last_error = None
        for attempt in range(self.max_retries):
            try:
                return self._attempt(descriptor, url,
                                     FALLBACK_PROXY_HEADERS), None
            except AstroWatcherError as exc:
                last_error = exc
                logger.info("Fallback proxy %d attempt %d failed for %s: %s",
                            descriptor.index + 1, attempt + 1, identifier,
                            exc)
            if attempt < self.max_retries - 1:
                self.sleep((attempt + 1) * self.backoff_unit)
        return None, last_error

    def _attempt(self, descriptor: ProxyDescriptor, url: str,
                 headers: Dict[str, str]) -> str:
        proxy_url = descriptor.build_url(url)
        response = self._get(proxy_url, headers=headers)
        if response.status_code == 403:
            raise HttpError(403, proxy_url, response.text[:ERROR_EXCERPT])
        if not is_success(response.status_code):
            raise HttpError(response.status_code, proxy_url)
        return validate_page(descriptor.unwrap(response))

    def _get(self, url: str, headers: Dict[str, str] | None = None):
        try:
            return self.http.get(url, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            raise NetworkError(f"Request to {url} failed: {exc}") from exc

    def clear_cache(self) -> None:
        self.cache.clear()

    def cache_stats(self) -> Dict[str, Optional[int]]:
        return {
            "entries": len(self.cache),
            "proxies": len(self.directory),
            "current_proxy": self.session.current_index,
        }
