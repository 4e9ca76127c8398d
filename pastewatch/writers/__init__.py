from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Sequence

from ..detectors.rules_engine import MatchSet
from ..utils.time import format_ts

logger = logging.getLogger(__name__)


@dataclass
class Incident:
    site: str
    identifier: str
    url: str
    host: str
    matches: MatchSet
    content: str | None = None
    detected_at: str = field(default_factory=format_ts)

    @property
    def title(self) -> str:
        first = self.matches[0] if self.matches else None
        label = first.rule.label if first else "unknown"
        return f"Potential leak of data: {label}"


class AlertSink:
    name = "sink"

    def deliver(self, incident: Incident) -> None:
        raise NotImplementedError


class AlertDispatcher:
    """Hands an incident to every sink; one failing sink never stops the others."""

    def __init__(self, sinks: Sequence[AlertSink] = ()) -> None:
        self.sinks: List[AlertSink] = list(sinks)

    def dispatch(self, incident: Incident) -> int:
        delivered = 0
        for sink in self.sinks:
            try:
                sink.deliver(incident)
                delivered += 1
            except Exception as exc:  # pylint: disable=broad-except
                logger.warning(
                    "sink-failed",
                    extra={
                        "sink": sink.name,
                        "site": incident.site,
                        "paste_id": incident.identifier,
                        "error": str(exc),
                    },
                )
        return delivered

    def close(self) -> None:
        for sink in self.sinks:
            close = getattr(sink, "close", None)
            if close is not None:
                close()


__all__ = ["AlertDispatcher", "AlertSink", "Incident"]
