from __future__ import annotations

import re

from .base import SiteAdapter


class GhostbinAdapter(SiteAdapter):
    name = "ghostbin"
    base_url = "https://ghostbin.me"
    listing_path = "/browse"
    listing_pattern = re.compile(r"<a[^>]*href=\"/paste/(\w+)\"[^>]*>", re.IGNORECASE)

    def build_content_url(self, identifier: str) -> str:
        return f"{self.base_url}/paste/{identifier}/raw"

    def paste_url(self, identifier: str) -> str:
        return f"{self.base_url}/paste/{identifier}"


__all__ = ["GhostbinAdapter"]
