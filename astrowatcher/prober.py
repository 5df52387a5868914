"""Proxy probing: find the first catalog entry that can reach the target."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

import requests

from .errors import looks_like_bot_wall
from .fetcher import USER_AGENT, is_success
from .models import (
    PROBE_ALL_FAILED,
    PROBE_FAILED,
    PROBE_SUCCESS,
    ProbeResult,
)
from .proxies import ProxyDescriptor, ProxyDirectory, is_valid_page
from .session import SessionState

logger = logging.getLogger(__name__)

ECHO_URL = "https://httpbin.org/ip"


@dataclass(frozen=True)
class HeaderStrategy:
    """A named client fingerprint used when probing the target."""

    name: str
    headers: Dict[str, str]


DEFAULT_STRATEGIES = (
    HeaderStrategy(
        name="Minimal Headers",
        headers={
            "User-Agent": USER_AGENT,
            "X-Requested-With": "XMLHttpRequest",
        },
    ),
    HeaderStrategy(
        name="Browser-like",
        headers={
            "Accept":
            "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
            "User-Agent": USER_AGENT,
            "Referer": "https://www.google.com/",
            "X-Requested-With": "XMLHttpRequest",
        },
    ),
    HeaderStrategy(
        name="Old User-Agent",
        headers={
            "Accept":
            "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "User-Agent": ("Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:91.0) "
                           "Gecko/20100101 Firefox/91.0"),
            "X-Requested-With": "XMLHttpRequest",
        },
    ),
)


class ProxyProber:
    """Probe directory entries in order and confirm the first working one.

    Probing stops at the first proxy that returns valid content; it does not
    explore the rest of the catalog looking for a faster one.
    """

    def __init__(
        self,
        directory: ProxyDirectory,
        session: SessionState,
        target_url: str,
        http: requests.Session | None = None,
        echo_url: str = ECHO_URL,
        strategies: Sequence[HeaderStrategy] = DEFAULT_STRATEGIES,
        strategy_delay: float = 1.0,
        timeout: int = 15,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.directory = directory
        self.session = session
        self.target_url = target_url
        self.http = http or requests.Session()
        self.echo_url = echo_url
        self.strategies = list(strategies)
        self.strategy_delay = strategy_delay
        self.timeout = timeout
        self.sleep = sleep
        self.clock = clock

    def probe_all(self) -> List[ProbeResult]:
        results: List[ProbeResult] = []
        logger.info("Testing %d proxies (stopping at the first working one)",
                    len(self.directory))

        for descriptor in self.directory:
            logger.info("Testing proxy %d/%d: %s", descriptor.index + 1,
                        len(self.directory), descriptor.name)
            if not descriptor.is_direct:
                error = self._check_connectivity(descriptor)
                if error is not None:
                    results.append(
                        ProbeResult(index=descriptor.index,
                                    template=descriptor.template,
                                    status=PROBE_FAILED,
                                    error=error))
                    continue

            outcomes = self._probe_target(descriptor)
            results.extend(outcomes)
            working = next((r for r in outcomes if r.is_working), None)
            if working is not None:
                self.session.confirm(descriptor, working.response_time or 0.0)
                logger.info("Found working proxy %d with strategy %s",
                            descriptor.index + 1, working.strategy)
                break
            if not outcomes:
                results.append(
                    ProbeResult(
                        index=descriptor.index,
                        template=descriptor.template,
                        status=PROBE_ALL_FAILED,
                        error="All strategies failed - likely bot protection",
                    ))
        else:
            logger.warning("No working proxies found")

        return results

    def _check_connectivity(self,
                            descriptor: ProxyDescriptor) -> Optional[str]:
        probe_url = descriptor.build_url(self.echo_url)
        try:
            response = self.http.get(probe_url, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.info("Proxy %d failed connectivity test: %s",
                        descriptor.index + 1, exc)
            return str(exc)
        if not is_success(response.status_code):
            logger.info("Proxy %d failed connectivity test: HTTP %d",
                        descriptor.index + 1, response.status_code)
            return f"HTTP {response.status_code}"
        return None

    def _probe_target(self, descriptor: ProxyDescriptor) -> List[ProbeResult]:
        outcomes: List[ProbeResult] = []
        proxy_url = descriptor.build_url(self.target_url)

        for position, strategy in enumerate(self.strategies):
            if position:
                self.sleep(self.strategy_delay)
            started = self.clock()
            try:
                response = self.http.get(proxy_url,
                                         headers=strategy.headers,
                                         timeout=self.timeout)
            except requests.RequestException as exc:
                logger.info("%s: error - %s", strategy.name, exc)
                continue
            elapsed = self.clock() - started

            if response.status_code == 403:
                body = response.text or ""
                if looks_like_bot_wall(body):
                    logger.info("Bot protection detected with %s",
                                strategy.name)
                else:
                    logger.info("%s: 403 Forbidden - %s", strategy.name,
                                body[:200])
                continue
            if not is_success(response.status_code):
                logger.info("%s: HTTP %d", strategy.name, response.status_code)
                continue

            content = descriptor.unwrap(response)
            result = ProbeResult(
                index=descriptor.index,
                template=descriptor.template,
                status=PROBE_SUCCESS,
                strategy=strategy.name,
                response_time=elapsed,
                content_length=len(content),
                is_valid=is_valid_page(content),
            )
            outcomes.append(result)
            logger.info("%s responded in %.0fms (%d chars, valid: %s)",
                        strategy.name, elapsed * 1000, len(content),
                        result.is_valid)
            if result.is_valid:
                break
        return outcomes


def working_results(results: Sequence[ProbeResult]) -> List[ProbeResult]:
    return [result for result in results if result.is_working]


def select_best(results: Sequence[ProbeResult]) -> Optional[ProbeResult]:
    """Pick the lowest-latency working result, if any."""
    working = working_results(results)
    if not working:
        return None
    return min(working, key=lambda result: result.response_time or 0.0)
