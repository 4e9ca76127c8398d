from __future__ import annotations

import logging
import random
import threading
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .state import ControlPlane, PollerState, RuntimeState
from ..detectors.dedup import DedupFilter, DedupIndex
from ..detectors.rules_engine import RulesEngine
from ..parsers.base import SiteAdapter
from ..utils.checkpoint import SeenRegistry
from ..utils.http import Fetcher, FetchFailure, RateLimited
from ..utils.time import format_ts, utcnow
from ..writers import AlertDispatcher, Incident

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    """Collaborators shared by every site poller."""

    runtime: RuntimeState
    fetcher: Fetcher
    engine: RulesEngine
    dedup: DedupFilter
    dedup_index: DedupIndex
    dispatcher: AlertDispatcher
    seen: SeenRegistry
    control: ControlPlane
    checkpoint_path: Optional[Path] = None

    def save_checkpoint(self) -> None:
        if self.checkpoint_path is None:
            return
        try:
            self.seen.save(self.checkpoint_path)
        except OSError as exc:
            logger.warning("checkpoint-save-error", extra={"path": str(self.checkpoint_path), "error": str(exc)})


class SitePoller(threading.Thread):
    def __init__(
        self,
        adapter: SiteAdapter,
        pipeline: Pipeline,
        poll_interval: float = 60.0,
        rate_limit_pause: float = 5.0,
        jitter_max: float = 5.0,
        rng: Optional[random.Random] = None,
    ) -> None:
        super().__init__(name=f"poller-{adapter.name}", daemon=True)
        self.adapter = adapter
        self.pipeline = pipeline
        self.poll_interval = poll_interval
        self.rate_limit_pause = rate_limit_pause
        self.jitter_max = jitter_max
        self._rng = rng or random.Random()
        self.state = PollerState.IDLE

    @property
    def control(self) -> ControlPlane:
        return self.pipeline.control

    def seen_key(self, identifier: str) -> str:
        return f"{self.adapter.name}:{identifier}"

    def run(self) -> None:
        logger.info("poller-started", extra={"site": self.adapter.name, "interval": self.poll_interval})
        while not self.control.stopped:
            self.state = PollerState.IDLE
            try:
                self.run_once()
            except Exception as exc:  # pylint: disable=broad-except
                logger.exception("poller-error", extra={"site": self.adapter.name, "error": str(exc)})
            if self.control.stopped:
                break
            self.state = PollerState.SLEEPING
            if self.control.wait(self.poll_interval):
                break
        self.state = PollerState.STOPPED
        logger.info("poller-stopped", extra={"site": self.adapter.name})

    def run_once(self) -> Dict[str, int]:
        """One listing fetch and the processing of every new paste on it."""
        metrics: Counter = Counter()
        if self.control.stopped:
            return dict(metrics)
        started = utcnow()
        self.state = PollerState.LISTING
        identifiers = self._fetch_listing()
        if identifiers is None:
            metrics["listing_failed"] += 1
            return dict(metrics)
        metrics["listed"] = len(identifiers)

        self.state = PollerState.PROCESSING
        first = True
        for identifier in identifiers:
            if self.control.stopped:
                break
            if self.pipeline.seen.contains(self.seen_key(identifier)):
                continue
            if not first and self.jitter_max > 0:
                if self.control.wait(self._rng.uniform(0, self.jitter_max)):
                    break
            first = False
            metrics[self.process_paste(identifier)] += 1

        self.pipeline.save_checkpoint()
        logger.info(
            "site-cycle",
            extra={
                "site": self.adapter.name,
                "started_at": format_ts(started),
                "elapsed": (utcnow() - started).total_seconds(),
                **metrics,
            },
        )
        return dict(metrics)

    def _fetch_listing(self) -> Optional[List[str]]:
        snapshot = self.pipeline.runtime.snapshot()
        outcome = self.pipeline.fetcher.fetch(
            self.adapter.listing_url,
            snapshot.proxies,
            rate_limit_marker=self.adapter.rate_limit_marker,
        )
        if isinstance(outcome, RateLimited):
            logger.info("rate-limited", extra={"site": self.adapter.name, "url": outcome.url})
            self.control.wait(self.rate_limit_pause)
            return None
        if isinstance(outcome, FetchFailure):
            logger.warning("listing-failed", extra={"site": self.adapter.name, "error": outcome.reason})
            return None
        return self.adapter.list_pastes(outcome.text)

    def process_paste(self, identifier: str) -> str:
        """Fetch, match, dedup and dispatch one paste. Returns what happened to it."""
        # rules and proxies stay fixed for this paste even if a reload lands meanwhile
        snapshot = self.pipeline.runtime.snapshot()
        key = self.seen_key(identifier)
        outcome = self.pipeline.fetcher.fetch(
            self.adapter.build_content_url(identifier),
            snapshot.proxies,
            rate_limit_marker=self.adapter.rate_limit_marker,
        )
        if isinstance(outcome, RateLimited):
            # left unseen so the next cycle retries it
            logger.info("rate-limited", extra={"site": self.adapter.name, "paste_id": identifier})
            self.control.wait(self.rate_limit_pause)
            return "rate_limited"
        if isinstance(outcome, FetchFailure):
            self.pipeline.seen.add(key)
            return "failed"

        result = "clean"
        try:
            content = self.adapter.extract_content(outcome.text)
            matches = self.pipeline.engine.evaluate(content, snapshot.rules)
            if matches:
                verdict = self.pipeline.dedup.check(content, self.pipeline.dedup_index.samples())
                if verdict.duplicate:
                    result = "duplicate"
                    logger.info(
                        "duplicate-suppressed",
                        extra={
                            "site": self.adapter.name,
                            "paste_id": identifier,
                            "similar_to": verdict.matched_id,
                            "score": round(verdict.score, 4),
                        },
                    )
                else:
                    result = "alerted"
                    incident = Incident(
                        site=self.adapter.name,
                        identifier=identifier,
                        url=self.adapter.paste_url(identifier),
                        host=self.adapter.host,
                        matches=matches,
                        content=content,
                    )
                    self.pipeline.dispatcher.dispatch(incident)
                    if self.pipeline.dedup.enabled:
                        self.pipeline.dedup_index.remember(key, content)
        except Exception as exc:  # pylint: disable=broad-except
            result = "error"
            logger.exception("paste-error", extra={"site": self.adapter.name, "paste_id": identifier, "error": str(exc)})
        finally:
            self.pipeline.seen.add(key)
        return result


class Supervisor:
    """Owns the poller threads and applies reload and stop requests."""

    def __init__(self, pipeline: Pipeline, pollers: Sequence[SitePoller], join_timeout: float | None = None) -> None:
        self.pipeline = pipeline
        self.pollers = list(pollers)
        self.join_timeout = join_timeout if join_timeout is not None else pipeline.fetcher.timeout + 5

    def start(self) -> None:
        for poller in self.pollers:
            poller.start()

    def run(self, tick: float = 1.0) -> None:
        control = self.pipeline.control
        self.start()
        try:
            while not control.stopped:
                control.wakeup.wait(tick)
                control.wakeup.clear()
                if control.reload_event.is_set():
                    control.reload_event.clear()
                    self.pipeline.runtime.reload()
                if self.pollers and not any(poller.is_alive() for poller in self.pollers):
                    logger.error("all-pollers-exited")
                    control.request_stop()
        finally:
            self.shutdown()

    def shutdown(self) -> None:
        self.pipeline.control.request_stop()
        for poller in self.pollers:
            if poller.is_alive():
                poller.join(self.join_timeout)
        self.pipeline.save_checkpoint()
        self.pipeline.dispatcher.close()
        logger.info("supervisor-stopped", extra={"pollers": len(self.pollers)})


__all__ = ["Pipeline", "SitePoller", "Supervisor"]
