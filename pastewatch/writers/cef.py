from __future__ import annotations

import logging
import socket
from typing import Dict

from . import AlertSink, Incident
from .. import __version__
from ..utils.time import syslog_ts

logger = logging.getLogger(__name__)

# <29> = facility daemon (3) * 8 + severity notice (5)
SYSLOG_PRIORITY = 29
MAX_CEF_MATCHES = 6


def _escape_header(value: str) -> str:
    return value.replace("\\", "\\\\").replace("|", "\\|")


def _escape_extension(value: str) -> str:
    return value.replace("\\", "\\\\").replace("=", "\\=").replace("\n", " ").replace("\r", " ")


def build_cef_event(
    incident: Incident,
    severity: int = 3,
    vendor: str = "pastewatch",
    product: str = "pastewatch",
    version: str = __version__,
    timestamp: str | None = None,
) -> str:
    header = "|".join(
        _escape_header(part)
        for part in (
            "CEF:0",
            vendor,
            product,
            version,
            "regex-match",
            "One or more regex matched",
            str(severity),
        )
    )
    extension = (
        f"request={_escape_extension(incident.url)} "
        f"destinationDnsDomain={incident.host} "
        f"msg=Interesting data has been found on {incident.host}. "
    )
    for index, match in enumerate(incident.matches, start=1):
        if index > MAX_CEF_MATCHES:
            logger.info(
                "cef-matches-truncated",
                extra={"paste_id": incident.identifier, "logged": MAX_CEF_MATCHES, "total": len(incident.matches)},
            )
            break
        extension += (
            f"cs{index}={_escape_extension(match.pattern)} cs{index}Label=Regex{index}Name "
            f"cn{index}={match.count} cn{index}Label=Regex{index}Count "
        )
    return f"<{SYSLOG_PRIORITY}>{timestamp or syslog_ts()} {header}|{extension.rstrip()}"


class CefSink(AlertSink):
    name = "cef"

    def __init__(self, host: str, port: int = 514, severity: int = 3, vendor: str = "pastewatch") -> None:
        self.host = host
        self.port = port
        self.severity = severity
        self.vendor = vendor

    @classmethod
    def from_config(cls, cfg: Dict) -> "CefSink":
        return cls(
            host=cfg["host"],
            port=int(cfg.get("port", 514)),
            severity=int(cfg.get("severity", 3)),
            vendor=cfg.get("vendor", "pastewatch"),
        )

    def deliver(self, incident: Incident) -> None:
        event = build_cef_event(incident, severity=self.severity, vendor=self.vendor)
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.settimeout(1.0)
            sock.sendto(event.encode("utf-8"), (self.host, self.port))
        logger.debug("cef-sent", extra={"destination": f"{self.host}:{self.port}", "paste_id": incident.identifier})


__all__ = ["CefSink", "build_cef_event", "MAX_CEF_MATCHES"]
