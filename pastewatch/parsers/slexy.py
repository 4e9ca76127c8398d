from __future__ import annotations

import re

from .base import SiteAdapter
from ..utils.html import extract_pre_text


class SlexyAdapter(SiteAdapter):
    name = "slexy"
    base_url = "https://slexy.org"
    listing_path = "/recent"
    listing_pattern = re.compile(r"<a href=\"/view/(\w+)\">", re.IGNORECASE)
    rate_limit_marker = "You are requesting pages too quickly"

    def build_content_url(self, identifier: str) -> str:
        return f"{self.base_url}/view/{identifier}"

    def paste_url(self, identifier: str) -> str:
        return self.build_content_url(identifier)

    def extract_content(self, body: str) -> str:
        # no raw endpoint: the paste sits in a <pre> on the view page
        return extract_pre_text(body)


__all__ = ["SlexyAdapter"]
