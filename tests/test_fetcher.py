from typing import Callable, Dict, List, Optional, Tuple

import pytest
import requests

from astrowatcher.cache import ContentCache, cache_key_for_url
from astrowatcher.errors import ContentInvalid, FetchExhausted, HttpError, NetworkError
from astrowatcher.fetcher import ResilientFetcher, build_page_url
from astrowatcher.proxies import ProxyDirectory
from astrowatcher.session import SessionState

VALID_PAGE = "<html><table>" + "listing " * 200 + "</table></html>"
CAPTCHA_PAGE = "<html><body>Please verify you are human</body></html>"


class DummyResponse:
    def __init__(self, text: str, status_code: int = 200):
        self.text = text
        self.status_code = status_code

    def json(self):
        raise ValueError("not json")


Handler = Callable[[str], DummyResponse]


class FakeHttp:
    """Route requests by URL prefix; the longest matching prefix wins."""

    def __init__(self, routes: Dict[str, Handler]):
        self.routes = routes
        self.calls: List[Tuple[str, Optional[dict]]] = []

    def get(self, url, headers=None, timeout=None):
        self.calls.append((url, headers))
        matches = [prefix for prefix in self.routes if url.startswith(prefix)]
        if not matches:
            raise requests.ConnectionError(f"no route to {url}")
        return self.routes[max(matches, key=len)](url)

    def count(self, prefix: str) -> int:
        return sum(1 for url, _ in self.calls if url.startswith(prefix))


def unreachable(url: str) -> DummyResponse:
    raise requests.ConnectionError("connection refused")


def respond(text: str, status_code: int = 200) -> Handler:
    return lambda url: DummyResponse(text, status_code)


def make_fetcher(templates, routes, selected: Optional[int] = None):
    directory = ProxyDirectory.from_templates(templates)
    session = SessionState()
    if selected is not None:
        session.confirm(directory[selected], 0.25)
    sleeps: List[float] = []
    fetcher = ResilientFetcher(
        directory=directory,
        cache=ContentCache(),
        session=session,
        http=FakeHttp(routes),
        sleep=sleeps.append,
    )
    return fetcher, sleeps


def test_build_page_url_encodes_listing_params():
    url = build_page_url(3)
    assert url.startswith("https://www.astrobuysell.com/uk/propview.php?")
    assert "minprice=0" in url
    assert "maxprice=1000000000000000" in url
    assert "sort=id+DESC" in url
    assert url.endswith("cur_page=3")


def test_cached_page_skips_network():
    fetcher, _ = make_fetcher([""], {})
    fetcher.cache.put("page_0", VALID_PAGE)

    assert fetcher.fetch(0) == VALID_PAGE
    assert fetcher.http.calls == []


def test_direct_success_is_cached():
    fetcher, _ = make_fetcher([""], {"https://www.astrobuysell.com/": respond(VALID_PAGE)})

    assert fetcher.fetch(1) == VALID_PAGE
    assert fetcher.fetch_page(1) == VALID_PAGE
    assert len(fetcher.http.calls) == 1
    assert fetcher.cache.get("page_1") == VALID_PAGE


def test_custom_url_uses_hashed_cache_key():
    target = "https://www.astrobuysell.com/uk/adview.php?id=42"
    fetcher, _ = make_fetcher([""], {"https://www.astrobuysell.com/": respond(VALID_PAGE)})

    fetcher.fetch(target)

    assert fetcher.cache.get(cache_key_for_url(target)) == VALID_PAGE


def test_falls_back_after_selected_proxy_serves_invalid_content():
    routes = {
        "https://www.astrobuysell.com/": unreachable,
        "https://p1.example/": respond(CAPTCHA_PAGE),
        "https://p2.example/": respond(VALID_PAGE),
    }
    fetcher, sleeps = make_fetcher(
        ["", "https://p1.example/?u=", "https://p2.example/?u="],
        routes,
        selected=1,
    )

    assert fetcher.fetch(5) == VALID_PAGE

    http = fetcher.http
    assert http.count("https://p1.example/") == 3
    assert http.count("https://p2.example/") == 1
    # one direct attempt, then the direct entry as fallback with three retries
    assert http.count("https://www.astrobuysell.com/") == 4
    assert sleeps == [2.0, 2.0, 1.0, 2.0]
    assert fetcher.cache.get("page_5") == VALID_PAGE


def test_exhausted_fetch_reports_last_error():
    routes = {
        "https://www.astrobuysell.com/": unreachable,
        "https://p1.example/": respond(CAPTCHA_PAGE),
        "https://p2.example/": respond("<html>Just a moment...</html>", status_code=403),
    }
    fetcher, _ = make_fetcher(
        ["", "https://p1.example/?u=", "https://p2.example/?u="], routes
    )

    with pytest.raises(FetchExhausted) as excinfo:
        fetcher.fetch(0)

    last_error = excinfo.value.last_error
    assert isinstance(last_error, HttpError)
    assert last_error.is_bot_wall
    assert "page 0" in str(excinfo.value)
    assert "HTTP 403" in str(excinfo.value)
    assert fetcher.cache.get("page_0") is None


def test_selected_proxy_is_not_retried_during_fallback():
    routes = {
        "https://www.astrobuysell.com/": unreachable,
        "https://p1.example/": respond(CAPTCHA_PAGE),
    }
    fetcher, _ = make_fetcher(["", "https://p1.example/?u="], routes, selected=1)
    fetcher.max_retries = 1

    with pytest.raises(FetchExhausted) as excinfo:
        fetcher.fetch(0)

    assert fetcher.http.count("https://p1.example/") == 3
    assert fetcher.http.count("https://www.astrobuysell.com/") == 2
    assert isinstance(excinfo.value.last_error, NetworkError)


def test_fallback_sweep_is_bounded_when_a_proxy_is_selected():
    templates = [""] + [f"https://p{i}.example/?u=" for i in range(1, 9)]
    routes = {"https://www.astrobuysell.com/": unreachable}
    routes.update({f"https://p{i}.example/": respond(CAPTCHA_PAGE) for i in range(1, 9)})
    fetcher, _ = make_fetcher(templates, routes, selected=3)
    fetcher.max_retries = 1

    with pytest.raises(FetchExhausted):
        fetcher.fetch(0)

    http = fetcher.http
    assert http.count("https://p3.example/") == 3
    for index in (1, 2, 4, 5):
        assert http.count(f"https://p{index}.example/") == 1
    for index in (6, 7, 8):
        assert http.count(f"https://p{index}.example/") == 0


def test_fallback_sweep_without_selection_tries_ten_entries():
    templates = [""] + [f"https://p{i}.example/?u=" for i in range(1, 12)]
    routes = {"https://www.astrobuysell.com/": unreachable}
    routes.update({f"https://p{i}.example/": respond(CAPTCHA_PAGE) for i in range(1, 12)})
    fetcher, _ = make_fetcher(templates, routes)
    fetcher.max_retries = 1

    with pytest.raises(FetchExhausted) as excinfo:
        fetcher.fetch(0)

    assert isinstance(excinfo.value.last_error, ContentInvalid)
    assert fetcher.http.count("https://p9.example/") == 1
    assert fetcher.http.count("https://p10.example/") == 0


def test_cache_stats_and_clear():
    fetcher, _ = make_fetcher(["", "https://p1.example/?u="], {}, selected=1)
    fetcher.cache.put("page_0", VALID_PAGE)

    assert fetcher.cache_stats() == {"entries": 1, "proxies": 2, "current_proxy": 1}
    fetcher.clear_cache()
    assert fetcher.cache_stats()["entries"] == 0


class EnvelopeResponse(DummyResponse):
    def __init__(self, payload):
        super().__init__(text=str(payload))
        self.payload = payload

    def json(self):
        return self.payload


def test_non_string_envelope_is_rejected_as_invalid_content():
    routes = {
        "https://www.astrobuysell.com/": unreachable,
        "https://api.allorigins.win/": lambda url: EnvelopeResponse({"contents": 12345}),
    }
    fetcher, _ = make_fetcher(["", "https://api.allorigins.win/get?url="], routes)
    fetcher.max_retries = 1

    with pytest.raises(FetchExhausted) as excinfo:
        fetcher.fetch(0)

    assert fetcher.http.count("https://api.allorigins.win/") == 1
    assert isinstance(excinfo.value.last_error, ContentInvalid)
