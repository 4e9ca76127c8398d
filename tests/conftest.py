from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict, List, Union

import pytest

from pastewatch.detectors.dedup import DedupFilter, DedupIndex
from pastewatch.detectors.rules import RuleSet, build_rule_set
from pastewatch.detectors.rules_engine import RulesEngine
from pastewatch.scheduler.loop import Pipeline
from pastewatch.scheduler.state import ControlPlane, RuntimeState, Snapshot
from pastewatch.utils.checkpoint import SeenRegistry
from pastewatch.utils.http import FetchFailure, FetchOutcome, FetchSuccess, RateLimited
from pastewatch.utils.proxies import ProxyPool
from pastewatch.writers import AlertDispatcher, AlertSink, Incident

PACKAGE_DIR = Path(__file__).resolve().parent.parent / "pastewatch"
FIXTURES = PACKAGE_DIR / "fixtures"


def load_fixture(source: str, name: str = "sample.html") -> str:
    return (FIXTURES / source / name).read_text(encoding="utf-8")


class FakeFetcher:
    """Serves canned outcomes by URL and records every call."""

    timeout = 1.0

    def __init__(self, responses: Dict[str, Union[str, FetchOutcome, Callable[[], FetchOutcome]]]) -> None:
        self.responses = responses
        self.calls: List[str] = []

    def fetch(self, url, pool, timeout=None, rate_limit_marker=None):
        self.calls.append(url)
        response = self.responses.get(url)
        if callable(response):
            response = response()
        if response is None:
            return FetchFailure(url=url, reason="HTTP 404 Not Found")
        if isinstance(response, (FetchSuccess, RateLimited, FetchFailure)):
            return response
        return FetchSuccess(url=url, text=response, latency_ms=1.0)


class RecordingSink(AlertSink):
    name = "recording"

    def __init__(self) -> None:
        self.incidents: List[Incident] = []

    def deliver(self, incident: Incident) -> None:
        self.incidents.append(incident)


def rules(*records: Dict, ignore_case: bool = False) -> RuleSet:
    return build_rule_set(records, ignore_case=ignore_case)


def make_pipeline(
    fetcher,
    rule_set: RuleSet,
    sinks=(),
    threshold: float | None = None,
    max_pasties: int = 500,
    sample_size: int | None = None,
) -> Pipeline:
    return Pipeline(
        runtime=RuntimeState.from_snapshot(Snapshot(rules=rule_set, proxies=ProxyPool())),
        fetcher=fetcher,
        engine=RulesEngine(sample_size),
        dedup=DedupFilter(threshold=threshold, max_size=20000),
        dedup_index=DedupIndex(50),
        dispatcher=AlertDispatcher(sinks),
        seen=SeenRegistry(max_pasties),
        control=ControlPlane(),
    )


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()
