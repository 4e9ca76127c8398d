from __future__ import annotations

import re

from .base import SiteAdapter


class PastebinAdapter(SiteAdapter):
    name = "pastebin"
    base_url = "https://pastebin.com"
    listing_path = "/archive"
    # archive rows: <td><a href="/AbCd1234">title</a></td>
    listing_pattern = re.compile(r"<a href=\"/(\w{8})\">.+?</a>\s*</td>", re.IGNORECASE)
    rate_limit_marker = "Please slow down"

    def build_content_url(self, identifier: str) -> str:
        return f"{self.base_url}/raw/{identifier}"


__all__ = ["PastebinAdapter"]
