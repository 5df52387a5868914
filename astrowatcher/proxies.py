"""Proxy catalog, URL construction and response unwrapping."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, Iterator, List, Sequence
from urllib.parse import quote

import requests

from .errors import ContentInvalid
from .parser import has_listing_marker

logger = logging.getLogger(__name__)

MIN_PAGE_LENGTH = 1000
URL_PLACEHOLDER = "{url}"
DIRECT_NAME = "Direct (no proxy)"

DEFAULT_PROXY_TEMPLATES = [
    "",
    "https://cors-anywhere-wrwp.onrender.com/",
    "https://cors-anywhere.herokuapp.com/",
    "https://thingproxy.freeboard.io/fetch/",
    "https://crossorigin.me/",
    "https://api.allorigins.win/get?url=",
    "https://api.allorigins.win/raw?url=",
    "https://api.codetabs.com/v1/proxy?quest=",
    "https://corsproxy.io/?",
    "https://cors-proxy.htmldriven.com/?url=",
    "https://yacdn.org/proxy/",
    "https://cors.bridged.cc/",
    "https://api.jsonbin.io/b/cors/",
    "https://jsonp.afeld.me/?url=",
    "https://cors-anywhere.azurewebsites.net/",
    "https://cors-escape.herokuapp.com/",
    "https://cors-container.herokuapp.com/",
    "https://proxy.webshare.io/proxy/",
    "https://app.scrapingbee.com/api/v1/?api_key=FREE&url=",
    "https://api.proxycrawl.com/?token=FREE&url=",
    "https://api.scrapestack.com/scrape?access_key=FREE&url=",
    "https://cors-proxy.fringe.zone/",
    "https://proxy-server.herokuapp.com/proxy?url=",
    "https://galvanize-cors-proxy.herokuapp.com/",
    "https://cors-anywhere-eosin.vercel.app/",
    "https://cors-anywhere-sandy.vercel.app/",
    "https://cors-proxy-server.herokuapp.com/",
    "https://cors-anywhere-proxy.glitch.me/",
    "https://api.rss2json.com/v1/api.json?rss_url={url}",
    "https://cors-proxy-nu.vercel.app/",
    "https://cors-anywhere-beta.vercel.app/",
    "https://simple-cors-proxy.vercel.app/",
    "https://cors-proxy.netlify.app/.netlify/functions/proxy?url=",
    "https://cors-anywhere-production.up.railway.app/",
]

# Substring of the template -> family. Checked in order; unmatched templates
# fall back to ENCODED_APPEND.
_FAMILY_HINTS = (
    ("allorigins.win/get", "json-envelope"),
    ("jsonbin.io", "json-envelope"),
    ("jsonp.afeld.me", "json-envelope"),
    ("rss2json.com", "rss-envelope"),
    ("cors-anywhere", "raw-append"),
    ("thingproxy.freeboard.io", "raw-append"),
    ("crossorigin.me", "raw-append"),
)


def _encode(url: str) -> str:
    return quote(url, safe="")


def _json_or_none(response: requests.Response):
    try:
        return response.json()
    except ValueError:
        logger.warning("Failed to decode JSON envelope, using raw text")
        return None


class ProxyFamily(Enum):
    """URL-construction and unwrapping rules shared by a group of proxies."""

    DIRECT = "direct"
    RAW_APPEND = "raw-append"
    ENCODED_APPEND = "encoded-append"
    QUERY_SUBSTITUTION = "query-substitution"
    JSON_ENVELOPE = "json-envelope"
    RSS_ENVELOPE = "rss-envelope"

    def build_url(self, template: str, target_url: str) -> str:
        if self is ProxyFamily.DIRECT:
            return target_url
        if self is ProxyFamily.RAW_APPEND:
            # Some relays reject percent-encoded targets.
            return f"{template}{target_url}"
        if self in (ProxyFamily.QUERY_SUBSTITUTION, ProxyFamily.RSS_ENVELOPE):
            if URL_PLACEHOLDER in template:
                return template.replace(URL_PLACEHOLDER, _encode(target_url))
        return f"{template}{_encode(target_url)}"

    def unwrap(self, response: requests.Response) -> str:
        """Return the target page body carried by a proxy response."""
        if self is ProxyFamily.JSON_ENVELOPE:
            payload = _json_or_none(response)
            if isinstance(payload, dict):
                for key in ("contents", "data", "content"):
                    if isinstance(payload.get(key), str):
                        return payload[key]
        elif self is ProxyFamily.RSS_ENVELOPE:
            payload = _json_or_none(response)
            if isinstance(payload, dict):
                items = payload.get("items") or []
                if isinstance(items, list) and items and isinstance(
                        items[0], dict):
                    description = items[0].get("description")
                    if isinstance(description, str):
                        return description
        return response.text or ""


def classify_template(template: str) -> ProxyFamily:
    """Map a raw catalog template to its family."""
    if not template:
        return ProxyFamily.DIRECT
    for hint, family in _FAMILY_HINTS:
        if hint in template:
            return ProxyFamily(family)
    if URL_PLACEHOLDER in template:
        return ProxyFamily.QUERY_SUBSTITUTION
    return ProxyFamily.ENCODED_APPEND


@dataclass(frozen=True)
class ProxyDescriptor:
    """One catalog entry; the empty template means a direct connection."""

    index: int
    template: str
    family: ProxyFamily

    @property
    def is_direct(self) -> bool:
        return self.family is ProxyFamily.DIRECT

    @property
    def name(self) -> str:
        return self.template or DIRECT_NAME

    def build_url(self, target_url: str) -> str:
        return self.family.build_url(self.template, target_url)

    def unwrap(self, response: requests.Response) -> str:
        return self.family.unwrap(response)


class ProxyDirectory:
    """Ordered, read-only list of proxy descriptors."""

    def __init__(self, descriptors: Sequence[ProxyDescriptor]):
        self._descriptors: List[ProxyDescriptor] = list(descriptors)

    @classmethod
    def from_templates(cls, templates: Iterable[str]) -> "ProxyDirectory":
        unique: List[str] = []
        for template in templates:
            template = template.strip()
            if template not in unique:
                unique.append(template)
        # The direct entry is always probed first.
        if "" in unique:
            unique.remove("")
            unique.insert(0, "")
        return cls([
            ProxyDescriptor(index=idx,
                            template=template,
                            family=classify_template(template))
            for idx, template in enumerate(unique)
        ])

    @classmethod
    def default(cls) -> "ProxyDirectory":
        return cls.from_templates(DEFAULT_PROXY_TEMPLATES)

    @classmethod
    def from_file(cls, path: Path) -> "ProxyDirectory":
        """Load templates from a text file, one per line; ``direct`` marks
        the no-proxy entry and lines starting with ``#`` are skipped."""
        templates = []
        for line in Path(path).read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            templates.append("" if line.lower() == "direct" else line)
        logger.info("Loaded %d proxy template(s) from %s", len(templates), path)
        return cls.from_templates(templates)

    def __len__(self) -> int:
        return len(self._descriptors)

    def __getitem__(self, index: int) -> ProxyDescriptor:
        return self._descriptors[index]

    def __iter__(self) -> Iterator[ProxyDescriptor]:
        return iter(self._descriptors)

    def build_proxy_url(self, target_url: str, index: int) -> str:
        return self[index].build_url(target_url)

    def unwrap_response(self, response: requests.Response, index: int) -> str:
        return self[index].unwrap(response)


def is_valid_page(body: str | None) -> bool:
    """Heuristic check that a body is a real listings page, not a captcha."""
    if not isinstance(body, str) or not body:
        return False
    return has_listing_marker(body) and len(body) > MIN_PAGE_LENGTH


def validate_page(body: str | None) -> str:
    if not is_valid_page(body):
        text = body if isinstance(body, str) else ""
        raise ContentInvalid(length=len(text),
                             has_marker=bool(text) and has_listing_marker(text))
    return body
