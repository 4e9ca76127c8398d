from __future__ import annotations

import logging
import random
import threading
from pathlib import Path
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)


class ProxyLoadError(RuntimeError):
    """Proxy source could not be read or held no endpoints."""


def normalize_proxy(entry: str) -> str:
    entry = entry.strip()
    if "://" not in entry:
        entry = f"http://{entry}"
    return entry


def load_proxies(path: str | Path) -> List[str]:
    """Read one proxy per line; blank lines and ``#`` comments are skipped."""
    path = Path(path)
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except (OSError, UnicodeDecodeError) as exc:
        raise ProxyLoadError(f"Cannot read proxy list {path}: {exc}") from exc
    proxies: List[str] = []
    for line in lines:
        line = line.split("#", 1)[0].strip()
        if line:
            proxies.append(normalize_proxy(line))
    if not proxies:
        raise ProxyLoadError(f"No proxies read from {path}")
    logger.info("proxies-loaded", extra={"path": str(path), "count": len(proxies)})
    return proxies


class ProxyPool:
    """Live egress proxies. Dead ones are dropped, never flagged."""

    def __init__(self, endpoints: Iterable[str] = (), rng: Optional[random.Random] = None) -> None:
        self._endpoints: List[str] = list(dict.fromkeys(endpoints))
        self._configured = bool(self._endpoints)
        self._lock = threading.Lock()
        self._rng = rng or random.Random()
        self._exhaustion_logged = False

    def pick(self) -> Optional[str]:
        with self._lock:
            if not self._endpoints:
                if self._configured and not self._exhaustion_logged:
                    self._exhaustion_logged = True
                    logger.warning("proxy-pool-exhausted")
                return None
            return self._rng.choice(self._endpoints)

    def discard(self, endpoint: str) -> bool:
        with self._lock:
            try:
                self._endpoints.remove(endpoint)
            except ValueError:
                # another worker already removed it
                return False
            remaining = len(self._endpoints)
        logger.warning("proxy-disabled", extra={"proxy": endpoint, "active_proxies": remaining})
        return True

    def endpoints(self) -> List[str]:
        with self._lock:
            return list(self._endpoints)

    def __len__(self) -> int:
        with self._lock:
            return len(self._endpoints)

    def __contains__(self, endpoint: object) -> bool:
        with self._lock:
            return endpoint in self._endpoints


__all__ = ["ProxyPool", "ProxyLoadError", "load_proxies", "normalize_proxy"]
