from __future__ import annotations

import enum
import logging
import signal
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..detectors.rules import RuleLoadError, RuleSet, load_rules
from ..utils.proxies import ProxyLoadError, ProxyPool, load_proxies

logger = logging.getLogger(__name__)


class PollerState(enum.Enum):
    IDLE = "idle"
    LISTING = "listing"
    PROCESSING = "processing"
    SLEEPING = "sleeping"
    STOPPED = "stopped"


@dataclass(frozen=True)
class Snapshot:
    """Rules and proxies a paste is processed with, start to finish."""

    rules: RuleSet
    proxies: ProxyPool


class RuntimeState:
    def __init__(
        self,
        rules_path: str | Path,
        proxies_path: str | Path | None = None,
        ignore_case: bool = False,
    ) -> None:
        self.rules_path = Path(rules_path)
        self.proxies_path = Path(proxies_path) if proxies_path else None
        self.ignore_case = ignore_case
        self._snapshot: Optional[Snapshot] = None
        self._lock = threading.Lock()
        self.generation = 0

    @classmethod
    def from_snapshot(cls, snapshot: Snapshot) -> "RuntimeState":
        state = cls(rules_path=snapshot.rules.source or "", ignore_case=snapshot.rules.ignore_case)
        state.swap(snapshot)
        return state

    def _load_proxies(self) -> ProxyPool:
        if self.proxies_path is None:
            return ProxyPool()
        return ProxyPool(load_proxies(self.proxies_path))

    def load(self) -> Snapshot:
        """Startup load; any error propagates and the monitor does not start."""
        snapshot = Snapshot(
            rules=load_rules(self.rules_path, ignore_case=self.ignore_case),
            proxies=self._load_proxies(),
        )
        self.swap(snapshot)
        return snapshot

    def reload(self) -> Snapshot:
        """Re-read both sources; a half that fails to load keeps its previous value."""
        current = self.snapshot()
        rules = current.rules
        proxies = current.proxies
        try:
            rules = load_rules(self.rules_path, ignore_case=self.ignore_case)
        except RuleLoadError as exc:
            logger.error("reload-failed", extra={"source": str(self.rules_path), "error": str(exc)})
        try:
            proxies = self._load_proxies()
        except ProxyLoadError as exc:
            logger.error("reload-failed", extra={"source": str(self.proxies_path), "error": str(exc)})
        snapshot = Snapshot(rules=rules, proxies=proxies)
        self.swap(snapshot)
        logger.info(
            "reload-complete",
            extra={"generation": self.generation, "rules": len(rules), "proxies": len(proxies)},
        )
        return snapshot

    def swap(self, snapshot: Snapshot) -> None:
        with self._lock:
            self._snapshot = snapshot
            self.generation += 1

    def snapshot(self) -> Snapshot:
        with self._lock:
            if self._snapshot is None:
                raise RuntimeError("runtime state used before load()")
            return self._snapshot


class ControlPlane:
    """Stop and reload requests, set from signal handlers or tests.

    Handlers only flip flags; workers look at them between steps.
    """

    def __init__(self) -> None:
        self.stop_event = threading.Event()
        self.reload_event = threading.Event()
        self.wakeup = threading.Event()

    @property
    def stopped(self) -> bool:
        return self.stop_event.is_set()

    def request_stop(self, *_: object) -> None:
        self.stop_event.set()
        self.wakeup.set()

    def request_reload(self, *_: object) -> None:
        self.reload_event.set()
        self.wakeup.set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; returns True when a stop cut the wait short."""
        if seconds <= 0:
            return self.stopped
        return self.stop_event.wait(seconds)

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGINT, self.request_stop)
        signal.signal(signal.SIGTERM, self.request_stop)
        if hasattr(signal, "SIGUSR1"):
            signal.signal(signal.SIGUSR1, self.request_reload)


__all__ = ["ControlPlane", "PollerState", "RuntimeState", "Snapshot"]
