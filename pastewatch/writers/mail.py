from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Dict, List, Sequence

from . import AlertSink, Incident

logger = logging.getLogger(__name__)


def build_message(incident: Incident, sender: str, recipients: Sequence[str], include_content: bool = True) -> EmailMessage:
    lines: List[str] = [
        f"Interesting data has been found on {incident.host}.",
        "",
        f"Paste: {incident.url}",
        f"Detected at: {incident.detected_at}",
        "",
        "Matched rules:",
    ]
    for match in incident.matches:
        label = f" [{match.description}]" if match.description else ""
        lines.append(f"  - {match.pattern}{label}: {match.count} time(s)")
        if match.sample:
            lines.append(f"    sample: {match.sample}")
    if include_content and incident.content:
        lines.extend(["", "-" * 72, incident.content])

    msg = EmailMessage()
    msg["Subject"] = f"[pastewatch] {incident.title} ({incident.site}/{incident.identifier})"
    msg["From"] = sender
    msg["To"] = ", ".join(recipients)
    msg.set_content("\n".join(lines))
    return msg


class MailSink(AlertSink):
    name = "mail"

    def __init__(
        self,
        host: str,
        sender: str,
        recipients: Sequence[str],
        port: int = 25,
        starttls: bool = False,
        username: str | None = None,
        password: str | None = None,
        include_content: bool = True,
        timeout: float = 30.0,
    ) -> None:
        self.host = host
        self.port = port
        self.sender = sender
        self.recipients = list(recipients)
        self.starttls = starttls
        self.username = username
        self.password = password
        self.include_content = include_content
        self.timeout = timeout

    @classmethod
    def from_config(cls, cfg: Dict) -> "MailSink":
        recipients = cfg.get("recipients") or []
        if isinstance(recipients, str):
            recipients = [addr.strip() for addr in recipients.split(",") if addr.strip()]
        return cls(
            host=cfg["host"],
            port=int(cfg.get("port", 25)),
            sender=cfg["sender"],
            recipients=recipients,
            starttls=bool(cfg.get("starttls", False)),
            username=cfg.get("username"),
            password=cfg.get("password"),
            include_content=bool(cfg.get("include_content", True)),
        )

    def deliver(self, incident: Incident) -> None:
        msg = build_message(incident, self.sender, self.recipients, self.include_content)
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            if self.starttls:
                server.starttls()
            if self.username and self.password:
                server.login(self.username, self.password)
            server.send_message(msg)
        logger.info("mail-sent", extra={"paste_id": incident.identifier, "recipients": len(self.recipients)})


__all__ = ["MailSink", "build_message"]
