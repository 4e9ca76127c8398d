from __future__ import annotations

import logging

from . import AlertSink, Incident
from ..detectors.rules_engine import summarize

logger = logging.getLogger("pastewatch.alerts")


def format_alert_line(incident: Incident) -> str:
    line = f"Found in {incident.url} : {summarize(incident.matches)}"
    sample = next((match.sample for match in incident.matches if match.sample), None)
    if sample:
        line += f" | Sample: {sample}"
    return line


class LogSink(AlertSink):
    name = "log"

    def deliver(self, incident: Incident) -> None:
        logger.info(
            format_alert_line(incident),
            extra={
                "event": "paste-match",
                "site": incident.site,
                "paste_id": incident.identifier,
                "url": incident.url,
                "matches": [
                    {"rule": match.pattern, "description": match.description, "count": match.count}
                    for match in incident.matches
                ],
            },
        )


__all__ = ["LogSink", "format_alert_line"]
