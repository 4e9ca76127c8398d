from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Union

import requests

from .proxies import ProxyPool

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.0 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64; rv:120.0) Gecko/20100101 Firefox/120.0",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
]

# statuses an upstream proxy answers with when it is the broken hop
PROXY_FAULT_STATUSES = {407, 502, 503, 504}


@dataclass
class FetchSuccess:
    url: str
    text: str
    latency_ms: float
    proxy: str | None = None


@dataclass
class RateLimited:
    url: str
    proxy: str | None = None


@dataclass
class FetchFailure:
    url: str
    reason: str
    proxy: str | None = None
    proxy_fault: bool = False


FetchOutcome = Union[FetchSuccess, RateLimited, FetchFailure]


class Fetcher:
    def __init__(
        self,
        timeout: float = 10.0,
        user_agents: Optional[Sequence[str]] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.timeout = timeout
        self.user_agents = list(user_agents or DEFAULT_USER_AGENTS)
        self._rng = rng or random.Random()

    @classmethod
    def from_config(cls, config: Dict) -> "Fetcher":
        fetch_cfg = config.get("fetch", {}) or {}
        return cls(
            timeout=float(fetch_cfg.get("timeout_seconds", 10)),
            user_agents=fetch_cfg.get("user_agents"),
        )

    def _build_headers(self) -> Dict[str, str]:
        return {
            "User-Agent": self._rng.choice(self.user_agents),
            "Accept-Language": "en-US,en;q=0.9",
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Connection": "close",
        }

    def fetch(
        self,
        url: str,
        pool: ProxyPool,
        timeout: float | None = None,
        rate_limit_marker: str | None = None,
    ) -> FetchOutcome:
        proxy = pool.pick()
        # no proxies argument lets requests use HTTP(S)_PROXY or go direct
        proxies = {"http": proxy, "https": proxy} if proxy else None
        start = time.monotonic()
        try:
            resp = requests.get(
                url,
                headers=self._build_headers(),
                proxies=proxies,
                timeout=timeout or self.timeout,
            )
        except requests.RequestException as exc:
            return self._fail(pool, FetchFailure(url=url, reason=str(exc), proxy=proxy, proxy_fault=True))

        latency_ms = (time.monotonic() - start) * 1000
        if resp.status_code == 429:
            return RateLimited(url=url, proxy=proxy)
        if not resp.ok:
            failure = FetchFailure(
                url=url,
                reason=f"HTTP {resp.status_code} {resp.reason or ''}".strip(),
                proxy=proxy,
                proxy_fault=resp.status_code in PROXY_FAULT_STATUSES,
            )
            return self._fail(pool, failure)
        text = resp.text
        if rate_limit_marker and rate_limit_marker in text:
            return RateLimited(url=url, proxy=proxy)
        return FetchSuccess(url=url, text=text, latency_ms=latency_ms, proxy=proxy)

    @staticmethod
    def _fail(pool: ProxyPool, failure: FetchFailure) -> FetchFailure:
        logger.warning(
            "fetch-failed",
            extra={"url": failure.url, "error": failure.reason, "proxy": failure.proxy},
        )
        if failure.proxy and failure.proxy_fault:
            pool.discard(failure.proxy)
        return failure


__all__ = [
    "DEFAULT_USER_AGENTS",
    "Fetcher",
    "FetchFailure",
    "FetchOutcome",
    "FetchSuccess",
    "RateLimited",
]
