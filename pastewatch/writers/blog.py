from __future__ import annotations

import html
import logging
import xmlrpc.client
from typing import Any, Dict, List, Sequence

from . import AlertSink, Incident

logger = logging.getLogger(__name__)


def build_post(incident: Incident, category: str, extra_tags: Sequence[str] = ()) -> Dict[str, Any]:
    body: List[str] = []
    tags: List[str] = [incident.site, *extra_tags]
    for match in incident.matches:
        body.append(f"Detected {match.count} occurrence(s) of '{html.escape(match.pattern)}':<br>")
        body.append(f"<pre>{html.escape(match.sample or '')}</pre><p>")
        if match.description and match.description not in tags:
            tags.append(match.description)
    body.append(
        f'Source: <a href="{html.escape(incident.url)}">{html.escape(incident.url)}</a><br>'
    )
    return {
        "title": incident.title,
        "categories": [category],
        "description": "".join(body),
        "mt_keywords": ",".join(tags),
        "mt_allow_comments": 0,
    }


class BlogSink(AlertSink):
    """Publishes a summary post through the WordPress XML-RPC endpoint."""

    name = "blog"

    def __init__(
        self,
        site: str,
        username: str,
        password: str,
        category: str,
        tags: Sequence[str] = (),
        blog_id: int = 1,
        publish: bool = True,
    ) -> None:
        self.site = site.rstrip("/")
        self.username = username
        self.password = password
        self.category = category
        self.tags = list(tags)
        self.blog_id = blog_id
        self.publish = publish

    @classmethod
    def from_config(cls, cfg: Dict) -> "BlogSink":
        tags = cfg.get("tags") or []
        if isinstance(tags, str):
            tags = [tag.strip() for tag in tags.split(",") if tag.strip()]
        return cls(
            site=cfg["site"],
            username=cfg["username"],
            password=cfg["password"],
            category=cfg["category"],
            tags=tags,
        )

    @property
    def endpoint(self) -> str:
        if "://" in self.site:
            return f"{self.site}/xmlrpc.php"
        return f"https://{self.site}/xmlrpc.php"

    def _server(self) -> Any:
        return xmlrpc.client.ServerProxy(self.endpoint, allow_none=True)

    def deliver(self, incident: Incident) -> None:
        post = build_post(incident, self.category, self.tags)
        server = self._server()
        post_id = server.metaWeblog.newPost(self.blog_id, self.username, self.password, post, self.publish)
        logger.info("blog-post-created", extra={"paste_id": incident.identifier, "post_id": post_id})


__all__ = ["BlogSink", "build_post"]
